#!/usr/bin/env python3
"""
Atomic Systems -- identity-based habit tracking API.

Usage:
  python main.py                          # same as "serve"
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload
  python main.py purge-tokens

Environment variables (or .env):
  SECRET_KEY     JWT signing key, at least 32 characters. Required unless DEBUG=true.
  DEBUG          true for development: auto-generated key, relaxed rate limit, /docs.
  DATABASE_URL   SQLAlchemy URL. Defaults to sqlite:///./atomic_systems.db
"""

import argparse
import sys

from core.config import APP_NAME, get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    """Delete expired refresh tokens once and report how many were removed."""
    from auth.service import AuthService
    from auth.store import UserStore

    store = UserStore(get_settings().database_url)
    try:
        removed = AuthService(store).purge_expired_tokens()
    finally:
        store.close()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="atomic-systems",
        description=f"{APP_NAME} API server and maintenance commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 3001
  DEBUG=true python main.py serve --reload
  python main.py purge-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn (default).")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1).")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000).")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only).")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens and exit.")
    purge.set_defaults(func=_purge_tokens)

    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(["serve", *(argv or [])])
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
