"""ORM model exports."""

from digging.models.session import RefreshSession
from digging.models.user import Authority, User, user_authority

__all__ = [
    "Authority",
    "RefreshSession",
    "User",
    "user_authority",
]
