#!/usr/bin/env python3
"""
Supplier portal operator CLI.

Usage:
  python main.py create-admin admin@example.com
  python main.py setup-link buyer@example.com
  python main.py purge-tokens

Every command reads DATABASE_URL (and the other settings) from the
environment or .env, the same way the API server does. --database-url
overrides it for a single run.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.magic_link import MagicLinkService
from auth.models import User
from auth.store import CredentialStore
from auth.tokens import hash_password, normalize_email, password_complexity_error
from core.clock import to_iso, utc_now
from core.config import get_settings
from notify.email import EmailDeliveryError, build_sender
from notify.messages import EmailNotifier


def _prompt_password() -> str:
    """Prompt twice and return the password once both entries match and pass complexity."""
    while True:
        password = getpass.getpass("Password: ")
        problem = password_complexity_error(password)
        if problem:
            print(f"  {problem}.", file=sys.stderr)
            continue
        if getpass.getpass("Confirm password: ") != password:
            print("  Passwords do not match.", file=sys.stderr)
            continue
        return password


def _create_admin(store: CredentialStore, email: str) -> int:
    email = normalize_email(email)
    if store.get_by_email(email) is not None:
        print(f"A user with email {email} already exists.", file=sys.stderr)
        return 1

    password = _prompt_password()
    try:
        user_id = store.create_user(
            User(
                email=email,
                role="admin",
                password_hash=hash_password(password),
                password_set_at=to_iso(utc_now()),
            )
        )
    except IntegrityError:
        print(f"A user with email {email} already exists.", file=sys.stderr)
        return 1
    print(f"Created admin {email} (id {user_id}).")
    return 0


def _setup_link(store: CredentialStore, email: str) -> int:
    user = store.get_by_email(email)
    if user is None:
        print(f"No user with email {normalize_email(email)}.", file=sys.stderr)
        return 1

    settings = get_settings()
    service = MagicLinkService(store, EmailNotifier(build_sender(settings)), settings.base_url)
    try:
        link = service.issue_password_setup(user)
    except EmailDeliveryError as e:
        # The token is stored before delivery is attempted; the failure only
        # means the email did not go out.
        print(f"Warning: {e}", file=sys.stderr)
        return 1
    print(link)
    return 0


def _purge_tokens(store: CredentialStore) -> int:
    removed = store.purge_expired_link_tokens()
    print(f"Removed {removed} expired or used link token(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="supplier-portal",
        description="Operator commands for the supplier portal.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py setup-link buyer@example.com
  DATABASE_URL=sqlite:////srv/portal.db python main.py purge-tokens
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    create_admin = commands.add_parser("create-admin", help="Create an active admin with a password")
    create_admin.add_argument("email", metavar="EMAIL")

    setup_link = commands.add_parser("setup-link", help="Issue a password-setup link and print it")
    setup_link.add_argument("email", metavar="EMAIL")

    commands.add_parser("purge-tokens", help="Delete expired or used magic-link and setup tokens")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    store = CredentialStore(args.database_url)
    try:
        if args.command == "create-admin":
            return _create_admin(store, args.email)
        if args.command == "setup-link":
            return _setup_link(store, args.email)
        return _purge_tokens(store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
