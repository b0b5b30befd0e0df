"""CLI entrypoints for session operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence

from digging.core.sessions import get_session_store
from digging.db.session import session_scope


async def _run_revoke_session(username: str) -> int:
    """Delete a user's refresh session, forcing a new login."""
    session_store = get_session_store()

    async with session_scope() as db_session:
        deleted = await session_store.delete_by_username(db_session=db_session, username=username)

    print(json.dumps({"username": username, "revoked": deleted}))
    return 0 if deleted else 1


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m digging.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    revoke_parser = subcommands.add_parser("revoke-session")
    revoke_parser.add_argument("--username", required=True, help="Account to log out.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "revoke-session":
        return asyncio.run(_run_revoke_session(username=args.username))
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
