#!/usr/bin/env python3
"""
GTD auth -- operator command line.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 3001
  python main.py seed
  python main.py seed --password 'something-better'
  python main.py purge-sessions

Environment variables:
  Read through core.config.Settings (JWT_SECRET, JWT_REFRESH_SECRET,
  DATABASE_URL, BCRYPT_ROUNDS, DEBUG, ...). An optional .env file in the
  working directory is honoured.
"""

import argparse
import logging

from auth.exceptions import DuplicateEmail
from auth.passwords import PasswordHasher
from auth.store import SessionStore, UserStore, create_auth_engine
from core.config import get_settings

logger = logging.getLogger("gtdauth.cli")

DEMO_EMAILS = ("alice@mail.com", "bob@mail.com")


def seed_users(store: UserStore, hasher: PasswordHasher, password: str) -> list[str]:
    """Create the demo accounts that do not exist yet. Returns the emails created.

    Safe to run repeatedly: existing emails are skipped, never overwritten.
    """
    created: list[str] = []
    for email in DEMO_EMAILS:
        try:
            store.create_user(email, hasher.hash(password))
        except DuplicateEmail:
            continue
        created.append(email)
    return created


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def _seed(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = create_auth_engine(settings.database_url)
    try:
        created = seed_users(UserStore(engine), PasswordHasher(settings.bcrypt_rounds), args.password)
    finally:
        engine.dispose()
    if created:
        logger.info("Created %d user(s): %s", len(created), ", ".join(created))
    else:
        logger.info("Demo users already present -- nothing to do.")


def _purge_sessions(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = create_auth_engine(settings.database_url)
    try:
        removed = SessionStore(engine).purge_expired()
    finally:
        engine.dispose()
    logger.info("Removed %d expired session(s).", removed)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    parser = argparse.ArgumentParser(
        prog="gtd-auth",
        description="Operator commands for the GTD authentication backend.",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=3001, help="Bind port (default: 3001)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_serve)

    seed = sub.add_parser("seed", help="Create demo users alice@mail.com and bob@mail.com")
    seed.add_argument("--password", default="pw123", help="Password for the demo users (default: pw123)")
    seed.set_defaults(func=_seed)

    purge = sub.add_parser("purge-sessions", help="Delete expired refresh-token sessions")
    purge.set_defaults(func=_purge_sessions)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
