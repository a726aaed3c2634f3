"""Command-line interface for the users service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

import httpx

from userapi.config import ConfigError, ServiceConfig, load_config, with_overrides
from userapi.database import PersistenceError, UserStore

logger = logging.getLogger("userapi.main")

_DEFAULT_SERVICE_URL = "http://localhost:8080"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Users service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP users service")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port (default: 8080)")
    serve_parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: USERAPI_CONFIG or config/service.yaml)",
    )
    serve_parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL, overriding the configuration file",
    )

    list_parser = subparsers.add_parser("list-users", help="List users from a running service")
    create_parser = subparsers.add_parser("create-user", help="Create a user via a running service")
    create_parser.add_argument("name", help="Username to create (3-20 characters)")
    for client_parser in (list_parser, create_parser):
        client_parser.add_argument(
            "--service-url",
            default=None,
            help="Base URL of the running service (default: USERAPI_SERVICE_URL or http://localhost:8080)",
        )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "list-users", "create-user"}

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


def _service_url(value: str | None) -> str:
    return (value or os.getenv("USERAPI_SERVICE_URL") or _DEFAULT_SERVICE_URL).rstrip("/")


def _decode_envelope(response: httpx.Response) -> dict | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _list_users(service_url: str) -> int:
    try:
        response = httpx.get(f"{service_url}/users", timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact users service: {exc}")
        return 1

    payload = _decode_envelope(response)
    if payload is None:
        print("Service returned an unexpected response format.")
        return 1
    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {payload.get('error', 'unknown error')}")
        return 1

    users = payload.get("users") or []
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>6}  Name")
    print("-" * 30)
    for user in users:
        print(f"{user.get('id', '?'):>6}  {user.get('name', '')}")
    return 0


def _create_user(service_url: str, name: str) -> int:
    try:
        response = httpx.post(f"{service_url}/create", data={"name": name}, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact users service: {exc}")
        return 1

    payload = _decode_envelope(response)
    if payload is None:
        print("Service returned an unexpected response format.")
        return 1
    if response.status_code != 201:
        print(f"Failed to create user: {payload.get('error', 'unknown error')}")
        return 1

    print(payload.get("message", f"User {name} created"))
    return 0


def _load_service_config(args: argparse.Namespace) -> ServiceConfig:
    try:
        config = load_config(Path(args.config).expanduser() if args.config else None)
        return with_overrides(
            config,
            host=args.host,
            port=args.port,
            database_url=args.database_url,
        )
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc


def _open_store(config: ServiceConfig) -> UserStore:
    """Build the pool and verify the database is reachable, or exit."""

    try:
        store = UserStore(config.database_url, pool=config.pool)
        store.ping()
    except PersistenceError as exc:
        logger.critical("%s: %s", exc, exc.__cause__ or exc)
        raise SystemExit(1) from exc

    logger.info(
        "Connected to %s (max open %d, max idle %d, max lifetime %ds)",
        store.display_url,
        config.pool.max_open,
        config.pool.max_idle,
        config.pool.max_lifetime,
    )
    return store


def _serve(config: ServiceConfig, store: UserStore) -> None:
    from userapi.service import create_app
    import uvicorn

    app = create_app(store=store)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level=config.log_level.lower(),
            timeout_graceful_shutdown=config.shutdown_grace_period,
        )
    )

    logger.info("Server is running on %s:%s", config.host, config.port)
    try:
        # uvicorn installs the SIGINT/SIGTERM handlers and drains in-flight
        # requests for at most timeout_graceful_shutdown seconds.
        server.run()
    except Exception:
        logger.critical("Server shutdown failed", exc_info=True)
        return
    logger.info("Server gracefully stopped")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)

    if args.command == "list-users":
        logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)
        raise SystemExit(_list_users(_service_url(args.service_url)))
    if args.command == "create-user":
        logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)
        raise SystemExit(_create_user(_service_url(args.service_url), args.name))

    config = _load_service_config(args)
    logging.basicConfig(level=config.log_level, format=_LOG_FORMAT)

    with _open_store(config) as store:
        _serve(config, store)


if __name__ == "__main__":
    main()
