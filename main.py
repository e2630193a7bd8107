#!/usr/bin/env python3
"""
gatekeeper -- Admin CLI for the authentication store.

Usage:
  python main.py create-user alice@example.com --name "Alice"
  python main.py create-user ops@example.com --admin
  python main.py purge
  python main.py unlock alice@example.com
  python main.py deactivate alice@example.com

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth store (default: SQLite file beside the package).
  CACHE_URL     Denylist cache; purge also trims expired cache entries.
  SECRET_KEY    Required unless DEBUG=true (read by the shared settings).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from api.models import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH, check_password_strength
from auth.guard import LoginAttemptGuard
from auth.models import Identity
from auth.passwords import set_password
from auth.refresh import RefreshTokenStore
from auth.retention import run_retention
from auth.store import AuthStore
from cache.store import open_cache
from core.config import get_settings


def _read_password(from_stdin: bool) -> Optional[str]:
    """Prompt twice (or read one line from stdin) and validate strength.

    Returns None after printing the reason when the password is rejected.
    """
    if from_stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("Password: ")
        if getpass.getpass("Repeat password: ") != password:
            print("  [!] Passwords do not match.")
            return None
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        print(f"  [!] Password must be {PASSWORD_MIN_LENGTH}-{PASSWORD_MAX_LENGTH} characters.")
        return None
    try:
        return check_password_strength(password)
    except ValueError as e:
        print(f"  [!] {e}")
        return None


def _create_user(store: AuthStore, args: argparse.Namespace) -> int:
    email = args.email.strip().lower()
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    identity = set_password(
        Identity(email=email, name=args.name, user_type="admin" if args.admin else "user"),
        password,
    )
    try:
        user_id = store.create_identity(identity, actor="cli")
    except IntegrityError:
        print(f"  [!] An account for {email} already exists.")
        return 1
    print(f"  Created {identity.user_type} {email} ({user_id})")
    return 0


def _purge(store: AuthStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    cache = open_cache(settings.cache_url)
    try:
        counts = run_retention(store, cache)
    finally:
        cache.close()
    for table, count in counts.items():
        print(f"  {table:<22} {count} removed")
    return 0


def _unlock(store: AuthStore, args: argparse.Namespace) -> int:
    email = args.email.strip().lower()
    cleared = LoginAttemptGuard(store).clear(email)
    print(f"  Cleared {cleared} failed attempt(s) for {email}")
    return 0


def _deactivate(store: AuthStore, args: argparse.Namespace) -> int:
    """Disable an identity and revoke every refresh token it holds."""
    email = args.email.strip().lower()
    identity = store.get_identity_by_email(email)
    if identity is None:
        print(f"  [!] No active account for {email}.")
        return 1
    store.set_active(identity.id, False, actor="cli")
    revoked = RefreshTokenStore(store).revoke_all(identity.id)
    print(f"  Deactivated {email}, revoked {revoked} session(s)")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gatekeeper",
        description="Administer the gatekeeper authentication store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user alice@example.com --name "Alice"
  echo 'S3cure!pass' | python main.py create-user ci@example.com --password-stdin
  python main.py purge
  python main.py unlock alice@example.com
  python main.py deactivate alice@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create an identity with a local password")
    create.add_argument("email", help="Login email (stored lowercased)")
    create.add_argument("--name", default=None, help="Display name")
    create.add_argument("--admin", action="store_true", help="Create with user type 'admin'")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(handler=_create_user)

    purge = sub.add_parser("purge", help="Delete tokens, attempts and cache entries past retention")
    purge.set_defaults(handler=_purge)

    unlock = sub.add_parser("unlock", help="Clear failed login attempts for an email")
    unlock.add_argument("email")
    unlock.set_defaults(handler=_unlock)

    deactivate = sub.add_parser("deactivate", help="Disable an account and revoke its sessions")
    deactivate.add_argument("email")
    deactivate.set_defaults(handler=_deactivate)

    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 2

    store = AuthStore()
    try:
        return args.handler(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
