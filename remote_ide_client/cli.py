"""Command line entry point: ``remote-ide``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import aiohttp

from .app import ChatApp
from .config import (
    DEFAULT_SERVER_NAME,
    ClientConfig,
    default_config_path,
    load_config,
    mask_token,
    save_config,
)
from .errors import ConfigError, RemoteIdeClientError
from .http import RemoteIdeHttpClient
from .transport import open_channel

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="remote-ide",
        description="Terminal client for Remote IDE servers.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=default_config_path(),
        help="config file path (default: %(default)s)",
    )
    parser.add_argument(
        "--server",
        default=DEFAULT_SERVER_NAME,
        help="server name from config (default: %(default)s)",
    )
    parser.add_argument("--log-file", type=Path, help="write logs to this file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable debug logging"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    connect = sub.add_parser("connect", help="connect to a server and start chatting")
    connect.add_argument("--project", help="project path (defaults to cwd)")
    connect.set_defaults(func=cmd_connect)

    servers = sub.add_parser("servers", help="manage server profiles")
    servers_sub = servers.add_subparsers(dest="servers_command", required=True)

    list_cmd = servers_sub.add_parser("list", help="list saved servers")
    list_cmd.set_defaults(func=cmd_servers_list)

    add_cmd = servers_sub.add_parser("add", help="add a server profile")
    add_cmd.add_argument("--name", required=True, help="server name")
    add_cmd.add_argument(
        "--url", required=True, help="server URL (e.g. http://localhost:3002)"
    )
    add_cmd.add_argument("--token", required=True, help="auth token")
    add_cmd.set_defaults(func=cmd_servers_add)

    remove_cmd = servers_sub.add_parser("remove", help="remove a server profile")
    remove_cmd.add_argument("name", help="server name")
    remove_cmd.set_defaults(func=cmd_servers_remove)

    test_cmd = servers_sub.add_parser("test", help="test server connectivity")
    test_cmd.add_argument("name", nargs="?", help="server name (default: all)")
    test_cmd.set_defaults(func=cmd_servers_test)

    return parser


def configure_logging(args: argparse.Namespace) -> None:
    """Route logs to ``--log-file``; the interactive screen never gets them."""
    level = logging.DEBUG if args.verbose else logging.INFO
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    if args.log_file is not None:
        logging.basicConfig(filename=args.log_file, level=level, format=fmt)
    elif args.command == "connect":
        logging.getLogger().addHandler(logging.NullHandler())
    else:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING, format=fmt
        )


# -------------------------------------------------------------------------
# connect
# -------------------------------------------------------------------------


def cmd_connect(args: argparse.Namespace, config: ClientConfig) -> int:
    server = config.find_server(args.server)
    project = args.project or os.getcwd()
    return asyncio.run(_connect(server.name, server.url, server.token, project))


async def _connect(name: str, url: str, token: str, project: str) -> int:
    print(f"Connecting to {name} ({url})...", file=sys.stderr)
    async with aiohttp.ClientSession() as http_session:
        rest = RemoteIdeHttpClient(http_session, url, token=token)
        try:
            health = await rest.health()
        except RemoteIdeClientError as err:
            print(f"Error: server unreachable: {err}", file=sys.stderr)
            return 1
        print(
            f"Server OK: {health.status}, {health.active_sessions} active sessions",
            file=sys.stderr,
        )

        print(f"Creating session for {project}...", file=sys.stderr)
        try:
            session = await rest.create_session(project)
        except RemoteIdeClientError as err:
            print(f"Error: create session: {err}", file=sys.stderr)
            return 1
        print(f"Session: {session.id}", file=sys.stderr)

    try:
        transport = await open_channel(url, token)
    except (RemoteIdeClientError, ValueError) as err:
        print(f"Error: websocket: {err}", file=sys.stderr)
        return 1

    try:
        app = ChatApp(transport, session.id, server_name=name)
        await app.run()
    finally:
        await transport.close()
    print("Goodbye!", file=sys.stderr)
    return 0


# -------------------------------------------------------------------------
# servers
# -------------------------------------------------------------------------


def cmd_servers_list(args: argparse.Namespace, config: ClientConfig) -> int:
    if not config.servers:
        print("No servers configured. Add one with: remote-ide servers add")
        return 0
    rows = [("NAME", "URL", "TOKEN"), ("----", "---", "-----")]
    rows += [(s.name, s.url, mask_token(s.token)) for s in config.servers]
    name_width = max(len(r[0]) for r in rows) + 2
    url_width = max(len(r[1]) for r in rows) + 2
    for name, url, token in rows:
        print(f"{name:<{name_width}}{url:<{url_width}}{token}")
    return 0


def cmd_servers_add(args: argparse.Namespace, config: ClientConfig) -> int:
    config.add_server(args.name, args.url, args.token)
    save_config(args.config, config)
    print(f"Added server {args.name!r} ({args.url})")
    return 0


def cmd_servers_remove(args: argparse.Namespace, config: ClientConfig) -> int:
    config.remove_server(args.name)
    save_config(args.config, config)
    print(f"Removed server {args.name!r}")
    return 0


def cmd_servers_test(args: argparse.Namespace, config: ClientConfig) -> int:
    servers = [config.find_server(args.name)] if args.name else config.servers
    if not servers:
        print("No servers configured.")
        return 0
    return asyncio.run(_test_servers(servers))


async def _test_servers(servers: list) -> int:
    async with aiohttp.ClientSession() as http_session:
        for server in servers:
            rest = RemoteIdeHttpClient(http_session, server.url, token=server.token)
            try:
                health = await rest.health()
            except RemoteIdeClientError as err:
                print(f"  {server.name} ({server.url}): FAILED - {err}")
                continue
            print(
                f"  {server.name} ({server.url}): OK - "
                f"{health.active_sessions} active sessions"
            )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args)

    try:
        config = load_config(args.config)
        return args.func(args, config)
    except ConfigError as err:
        _LOGGER.debug("Config error", exc_info=True)
        print(f"Error: {err}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
