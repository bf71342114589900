#!/usr/bin/env python3
"""
Orbit Auth -- administrative command line.

Usage:
  python main.py seed
  python main.py create-user alice@example.com --name "Alice Smith" --role sales_agent
  python main.py create-user bob@example.com --name "Bob" --role admin --password-stdin < pw.txt
  python main.py purge-tokens
  python main.py --database-url sqlite:///other.db seed

Environment variables:
  DATABASE_URL   Target database (default: orbitauth.db beside the package).
  SECRET_KEY     Required unless DEBUG=true. See core/config.py for the full list.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from core.config import get_settings

logger = logging.getLogger("orbitauth.cli")


def _open_store(database_url: Optional[str]):
    # Imported lazily so `--help` works without a valid SECRET_KEY.
    from auth.store import CredentialStore

    return CredentialStore(database_url or get_settings().database_url)


def _cmd_seed(args: argparse.Namespace) -> int:
    from auth.seed import seed_auth_data

    store = _open_store(args.database_url)
    try:
        result = seed_auth_data(store, get_settings())
    finally:
        store.close()
    print(f"  Roles created:       {result.roles_created}")
    print(f"  Permissions created: {result.permissions_created}")
    if result.admin_email:
        print(f"  Admin user:          {result.admin_email}")
    if result.generated_password:
        print(f"  Generated password:  {result.generated_password}")
        print("  Change it after first login; it is not shown again.")
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    from auth.users import UserService
    from core.errors import AppError

    if args.password_stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("  [!] Passwords do not match.")
            return 1

    store = _open_store(args.database_url)
    try:
        role = store.get_role_by_key(args.role)
        if role is None:
            print(f"  [!] No role with key '{args.role}'. Run `python main.py seed` first?")
            return 1
        user = UserService(store, get_settings()).create_user(
            email=args.email,
            password=password,
            full_name=args.name,
            role_id=role.id,
        )
    except AppError as exc:
        print(f"  [!] {exc.message}")
        for field, message in getattr(exc, "fields", {}).items():
            print(f"      {field}: {message}")
        return 1
    finally:
        store.close()
    print(f"  Created {user.email} ({user.role_name}) id={user.id}")
    return 0


def _cmd_purge_tokens(args: argparse.Namespace) -> int:
    store = _open_store(args.database_url)
    try:
        removed = store.purge_refresh_tokens()
    finally:
        store.close()
    print(f"  Purged {removed} expired or revoked refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orbit-auth",
        description="Administrative tasks for the Orbit Auth credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user alice@example.com --name "Alice Smith" --role sales_agent
  python main.py purge-tokens
        """,
    )
    parser.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed", help="Create built-in roles, permissions and the bootstrap admin")
    seed.set_defaults(func=_cmd_seed)

    create = sub.add_parser("create-user", help="Create a user with the given role key")
    create.add_argument("email")
    create.add_argument("--name", required=True, help="Full name")
    create.add_argument("--role", default="sales_agent", help="Role key (default: sales_agent)")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(func=_cmd_create_user)

    purge = sub.add_parser("purge-tokens", help="Delete expired and revoked refresh tokens")
    purge.set_defaults(func=_cmd_purge_tokens)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
