"""Command-line interface for the InvoiceDesk dashboard."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from getpass import getpass
from typing import Sequence

from invoicedesk.config import AppConfig, config_from_env
from invoicedesk.credentials import CredentialStore
from invoicedesk.database import SupabaseStore
from invoicedesk.errors import DatabaseError
from invoicedesk.forms import PASSWORD_LENGTH_MESSAGE, PASSWORD_MIN_LENGTH
from invoicedesk.seed import seed_database

logger = logging.getLogger("invoicedesk.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="InvoiceDesk dashboard utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP dashboard")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the dashboard")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the dashboard (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile-password",
        default=None,
        help="Password for the TLS private key, if encrypted",
    )

    subparsers.add_parser("seed", help="Load the fixture customers, invoices and revenue")

    user_parser = subparsers.add_parser("create-user", help="Create a credential login")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "seed", "create-user"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _serve(
    *,
    config: AppConfig,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
    ssl_keyfile_password: str | None,
) -> None:
    from invoicedesk.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting dashboard on %s://%s:%s", protocol, host, port)

    app = create_app(config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
        ssl_keyfile_password=ssl_keyfile_password,
    )


async def _seed(config: AppConfig) -> int:
    store = await SupabaseStore.connect(config.supabase_url, config.supabase_key)
    try:
        counts = await seed_database(store)
    except DatabaseError as exc:
        print(f"Seeding failed: {exc.message}", file=sys.stderr)
        return 1
    for table, count in counts.items():
        print(f"Seeded {count} row(s) into {table}")
    return 0


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print(PASSWORD_LENGTH_MESSAGE)
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


async def _create_user(config: AppConfig, name: str, email: str, password: str) -> int:
    store = await SupabaseStore.connect(config.supabase_url, config.supabase_key)
    try:
        user = await CredentialStore(store).create_user(name.strip(), email, password)
    except ValueError as exc:  # duplicates, empty email
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1
    except DatabaseError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1
    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    try:
        config = config_from_env()
        config.require_backend()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "serve":
        _serve(
            config=config,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
            ssl_keyfile_password=args.ssl_keyfile_password,
        )
        return 0
    if args.command == "seed":
        return asyncio.run(_seed(config))
    if args.command == "create-user":
        password = _prompt_for_password()
        if password is None:
            print("Aborted creating user.")
            return 1
        return asyncio.run(_create_user(config, args.name, args.email, password))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
