#!/usr/bin/env python3
"""
quotegate -- operator commands for the auth database.

Usage:
  python main.py create-admin --username admin --display-name "Administrator"
  python main.py create-admin              # uses FIRST_ADMIN_USERNAME / FIRST_ADMIN_PASSWORD
  python main.py issue-code --created-by admin
  python main.py issue-code --count 5
  python main.py purge-codes

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default sqlite:///quotegate_auth.db)
  SECRET_KEY     Required unless DEBUG=true. Not used by these commands, but
                 settings are validated on load.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.credentials import CredentialStore
from auth.errors import AuthError
from auth.models import ROLE_ADMIN
from auth.registration import RegistrationCodeIssuer
from auth.store import AuthStore
from core.config import get_settings


def _create_admin(args: argparse.Namespace, credentials: CredentialStore) -> int:
    settings = get_settings()
    username = args.username or settings.first_admin_username
    if not username:
        print("  [!] No username given and FIRST_ADMIN_USERNAME is not set.")
        return 2
    password = args.password or settings.first_admin_password
    if not password:
        password = getpass.getpass(f"  Password for {username}: ")
    user = credentials.create(username, password, args.display_name or username, ROLE_ADMIN, created_by="cli")
    print(f"  Admin '{user.username}' created (id={user.id}).")
    return 0


def _issue_code(args: argparse.Namespace, issuer: RegistrationCodeIssuer) -> int:
    for _ in range(args.count):
        code = issuer.generate(args.created_by)
        print(f"  {code.code}  expires {code.expires_at.isoformat(timespec='seconds')}")
    return 0


def _purge_codes(args: argparse.Namespace, issuer: RegistrationCodeIssuer) -> int:
    removed = issuer.purge_expired()
    print(f"  {removed} expired registration code(s) removed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quotegate",
        description="Operator commands for the quotegate auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username admin
  python main.py issue-code --created-by admin --count 3
  DATABASE_URL=sqlite:///prod.db python main.py purge-codes
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Auth database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    admin = sub.add_parser("create-admin", help="Create an administrator account")
    admin.add_argument("--username", default=None, help="Login name (default: FIRST_ADMIN_USERNAME)")
    admin.add_argument("--password", default=None, help="Password (default: FIRST_ADMIN_PASSWORD, else prompt)")
    admin.add_argument("--display-name", default=None, help="Display name (default: the username)")

    code = sub.add_parser("issue-code", help="Mint single-use registration codes")
    code.add_argument("--created-by", default="cli", help="Recorded as the inviting admin (default: cli)")
    code.add_argument("--count", type=int, default=1, help="Number of codes to mint (default: 1)")

    sub.add_parser("purge-codes", help="Delete expired registration codes")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    store = AuthStore(args.database_url or get_settings().database_url)
    credentials = CredentialStore(store)
    issuer = RegistrationCodeIssuer(store, credentials)
    try:
        if args.command == "create-admin":
            return _create_admin(args, credentials)
        if args.command == "issue-code":
            return _issue_code(args, issuer)
        return _purge_codes(args, issuer)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        credentials.close()
        store.close()


if __name__ == "__main__":
    sys.exit(main())
