"""Database package exports."""

from digging.db.base import Base
from digging.db.session import (
    dispose_engine,
    get_db_session,
    get_engine,
    get_session_factory,
    session_scope,
)

__all__ = [
    "Base",
    "dispose_engine",
    "get_db_session",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
