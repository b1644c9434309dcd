#!/usr/bin/env python3
"""
Wheel of Time CCG API -- operator command line.

Usage:
  python main.py serve
  python main.py create-user egwene
  python main.py resolve 02-131_the_prophet
  python main.py resolve 02-131_the_prophet --small

Commands:
  serve         Run the API under uvicorn on APP_HOST:APP_PORT.
  create-user   Create an API user. The password is prompted for (never
                passed on the command line, where it would land in shell
                history) and stored as a bcrypt digest.
  resolve       Show where a card id resolves to under IMAGE_DIR, or why it
                was rejected. Useful when a client reports 400/404 on images.

Environment variables: see core/config.py (DATABASE_URL, IMAGE_DIR,
SECRET_KEY, BCRYPT_ROUNDS, ...).
"""

import argparse
import getpass
import logging
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import BCRYPT_MAX_PASSWORD_BYTES, PasswordHasher
from core.config import get_settings
from core.errors import MalformedIdentifierError, ResourceNotFoundError
from core.resolver import ImageResolver

logger = logging.getLogger("wotapi.cli")


def _prompt_password() -> str | None:
    password = getpass.getpass("Password: ")
    if not password:
        print("  [!] Password must not be empty.")
        return None
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes.")
        return None
    if getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def create_user(username: str, password: str, store: UserStore, hasher: PasswordHasher) -> int | None:
    """Store a new user. Returns the new id, or None if the username is taken."""
    try:
        user_id = store.create_user(User(username=username, hashed_password=hasher.hash(password)))
    except IntegrityError:
        return None
    logger.info("Created user %r (id=%d)", username, user_id)
    return user_id


def cmd_create_user(args: argparse.Namespace) -> int:
    username = args.username.strip()
    if not username:
        print("  [!] Username must not be empty.")
        return 2
    password = _prompt_password()
    if password is None:
        return 2
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        user_id = create_user(username, password, store, PasswordHasher(rounds=settings.bcrypt_rounds))
    finally:
        store.close()
    if user_id is None:
        print(f"  [!] User '{username}' already exists.")
        return 1
    print(f"  Created user '{username}'.")
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    resolver = ImageResolver(get_settings().image_dir)
    variant = "small" if args.small else "full"
    try:
        resolved = resolver.resolve(args.card_id, variant)
    except MalformedIdentifierError as exc:
        print(f"  [!] malformed: {exc.reason}")
        return 1
    except ResourceNotFoundError:
        print(f"  [!] not found under {resolver.root}")
        return 1
    print(f"  {resolved.path}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run("asgi:app", host=settings.app_host, port=settings.app_port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Wheel of Time CCG API operator tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=cmd_serve)

    create = sub.add_parser("create-user", help="Create an API user (password is prompted)")
    create.add_argument("username")
    create.set_defaults(func=cmd_create_user)

    resolve = sub.add_parser("resolve", help="Resolve a card id to its image path")
    resolve.add_argument("card_id")
    resolve.add_argument("--small", action="store_true", help="Resolve the half size image")
    resolve.set_defaults(func=cmd_resolve)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
