#!/usr/bin/env python3
"""
AuthGate -- admin command line.

Operates directly on the configured database (DATABASE_URL), so it works
whether or not the API server is running.

Usage:
  python main.py unlock ada@example.com
  python main.py disable ada
  python main.py enable +15551234567
  python main.py purge-revocations

The identity argument is matched against email, then username, then phone.
"""

import argparse
from typing import Optional

from auth.models import User, UserStatus
from auth.revocation import RevocationRegistry
from auth.store import UserStore


def _find_user(store: UserStore, identity: str) -> Optional[User]:
    identity = identity.strip()
    return (
        store.get_by_email(identity.lower())
        or store.get_by_username(identity)
        or store.get_by_phone(identity)
    )


def _cmd_unlock(args: argparse.Namespace) -> int:
    store = UserStore(db_url=args.db_url)
    try:
        user = _find_user(store, args.identity)
        if user is None:
            print(f"  [!] No account matches '{args.identity}'.")
            return 1
        store.unlock(user.id)
        print(f"  Unlocked account {user.id} ({user.username}).")
        return 0
    finally:
        store.close()


def _cmd_set_status(args: argparse.Namespace) -> int:
    status = UserStatus.active if args.command == "enable" else UserStatus.disabled
    store = UserStore(db_url=args.db_url)
    try:
        user = _find_user(store, args.identity)
        if user is None:
            print(f"  [!] No account matches '{args.identity}'.")
            return 1
        store.set_status(user.id, status)
        print(f"  Account {user.id} ({user.username}) is now {status.value}.")
        return 0
    finally:
        store.close()


def _cmd_purge(args: argparse.Namespace) -> int:
    registry = RevocationRegistry(db_url=args.db_url)
    try:
        removed = registry.purge_expired()
        print(f"  Purged {removed} expired revocation entr{'y' if removed == 1 else 'ies'}.")
        return 0
    finally:
        registry.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="AuthGate account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py unlock ada@example.com
  python main.py disable ada
  python main.py purge-revocations
  DATABASE_URL=postgresql://... python main.py unlock ada
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="Database URL (default: DATABASE_URL from the environment or .env)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    unlock = commands.add_parser("unlock", help="Clear failed attempts and any active lock")
    unlock.add_argument("identity", help="Email, username or phone of the account")
    unlock.set_defaults(handler=_cmd_unlock)

    for name, text in (("disable", "Block logins and token refresh for the account"), ("enable", "Re-enable a disabled account")):
        sub = commands.add_parser(name, help=text)
        sub.add_argument("identity", help="Email, username or phone of the account")
        sub.set_defaults(handler=_cmd_set_status)

    purge = commands.add_parser("purge-revocations", help="Delete revocation entries for tokens that have expired")
    purge.set_defaults(handler=_cmd_purge)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
