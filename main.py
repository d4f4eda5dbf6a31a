#!/usr/bin/env python3
"""
Tourbook admin CLI.

Usage:
  python main.py create-user --name "Ada Lovelace" --email ada@example.com --role admin
  python main.py create-user --name Guide --email guide@example.com --role lead-guide --password s3cretpass
  python main.py reactivate <user-id>
  python main.py serve --host 0.0.0.0 --port 8000

create-user prompts for the password (twice) unless --password is given. It
runs the same validation, hashing, and welcome email as the signup endpoint,
but may assign any role -- this is how the first admin account is made.

Environment variables are read through core.config (SECRET_KEY, DATABASE_URL,
SMTP_*, ...). See core/config.py for the full list.
"""

import argparse
import asyncio
import getpass
import logging
import sys

from auth.delivery import SmtpMailer
from auth.errors import AuthError
from auth.models import Role
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("tourbook.cli")


def _read_password(args: argparse.Namespace) -> tuple[str, str]:
    if args.password:
        return args.password, args.password
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    return password, confirm


def cmd_create_user(args: argparse.Namespace, store: UserStore) -> int:
    settings = get_settings()
    service = AuthService(store, SmtpMailer(settings), settings)
    password, confirm = _read_password(args)
    try:
        user, _token = asyncio.run(
            service.signup(
                name=args.name,
                email=args.email,
                password=password,
                password_confirm=confirm,
                welcome_url=f"{settings.public_base_url.rstrip('/')}/me",
                role=Role(args.role),
            )
        )
    except AuthError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    print(f"Created {user.role.value} {user.email} (id {user.id})")
    return 0


def cmd_reactivate(args: argparse.Namespace, store: UserStore) -> int:
    if not store.reactivate_user(args.user_id):
        print(f"Error: no user with id {args.user_id}", file=sys.stderr)
        return 1
    print(f"Reactivated {args.user_id}")
    return 0


def cmd_serve(args: argparse.Namespace, store: UserStore) -> int:
    import uvicorn

    store.close()
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tourbook account administration")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create an account with any role")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.USER.value)
    create.add_argument("--password", help="Password (prompted if omitted)")
    create.set_defaults(func=cmd_create_user)

    reactivate = sub.add_parser("reactivate", help="Restore a deactivated account")
    reactivate.add_argument("user_id")
    reactivate.set_defaults(func=cmd_reactivate)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None, store: UserStore | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    owns_store = store is None
    store = store or UserStore()
    try:
        return args.func(args, store)
    finally:
        if owns_store:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
