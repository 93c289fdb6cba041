#!/usr/bin/env python3
"""
authgate -- application scaffold with session-gated routes.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py create-user "Ada Lovelace" ada@example.com
  python main.py purge-sessions

Configuration comes from the environment (or .env), see core/config.py:
  SECRET_KEY    Required unless DEBUG=true. At least 32 characters.
  BASE_URL      Public origin of the app (default http://localhost:8000).
  DATABASE_URL  SQLAlchemy URL (default sqlite:///authgate.db).
"""

import argparse
import getpass
import sys
from typing import Optional

_MIN_PASSWORD = 8
_MAX_PASSWORD_BYTES = 72


def _prompt_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("  [!] Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < _MIN_PASSWORD:
            print(f"  [!] Password must be at least {_MIN_PASSWORD} characters long.", file=sys.stderr)
            continue
        if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            print(f"  [!] Password must be at most {_MAX_PASSWORD_BYTES} bytes.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _open_provider():
    from auth.provider import StoreSessionProvider
    from auth.store import UserStore
    from core.config import get_settings

    settings = get_settings()
    return StoreSessionProvider(UserStore(settings.database_url), settings)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_user(args: argparse.Namespace, password: Optional[str] = None) -> int:
    """Create a user with an email/password account. Prompts for the password."""
    from auth.provider import PasswordTooLong, UserAlreadyExists

    password = password if password is not None else _prompt_password()
    provider = _open_provider()
    try:
        data, _token = provider.sign_up(args.name.strip(), args.email, password)
    except UserAlreadyExists:
        print(f"  [!] A user with email {args.email.strip().lower()} already exists.", file=sys.stderr)
        return 1
    except PasswordTooLong as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        provider.store.close()

    print(f"Created user {data.user.id}: {data.user.name} <{data.user.email}>")
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    provider = _open_provider()
    try:
        removed = provider.purge_expired()
    finally:
        provider.store.close()
    print(f"Removed {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Application scaffold with session-gated routes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-user "Ada Lovelace" ada@example.com
  DATABASE_URL=postgresql+psycopg://app@db/app python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the web server (uvicorn)")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    create = sub.add_parser("create-user", help="Create a user with an email/password account")
    create.add_argument("name", help="Display name")
    create.add_argument("email", help="Unique email address (stored lower-cased)")
    create.set_defaults(func=cmd_create_user)

    purge = sub.add_parser("purge-sessions", help="Delete expired sessions now")
    purge.set_defaults(func=cmd_purge_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
