"""Command-line entry point: serve the panel or control a running instance."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Sequence

import httpx

LOG_LEVEL_ENV_VAR = "WIFI_PANEL_LOG_LEVEL"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

_COMMANDS = ("toggle", "show", "hide", "reload")


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the panel CLI."""

    parser = argparse.ArgumentParser(
        prog="python -m wifi_panel",
        description="Connectivity panel service for NetworkManager and BlueZ",
    )
    commands = parser.add_mutually_exclusive_group()
    for command in _COMMANDS:
        commands.add_argument(
            f"--{command}",
            dest="command",
            action="store_const",
            const=command,
            help=f"Ask the running panel to {command} and exit.",
        )
    parser.add_argument("--host", default=DEFAULT_HOST, help="Address to bind or contact.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to bind or contact.")
    parser.add_argument("--config", default=None, help="Path to the JSON configuration file.")
    parser.add_argument(
        "--log-level",
        default=os.environ.get(LOG_LEVEL_ENV_VAR, "INFO"),
        help="Logging level (default from $WIFI_PANEL_LOG_LEVEL or INFO).",
    )
    return parser


def send_command(command: str, host: str, port: int, *, timeout: float = 5.0) -> int:
    """Post a panel command to a running instance; returns a process exit code."""

    url = f"http://{host}:{port}/api/panel/{command}"
    try:
        response = httpx.post(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        print(f"Unable to reach the panel at {host}:{port}: {exc}", file=sys.stderr)
        return 1
    return 0


def serve(host: str, port: int, config_path: str | None) -> int:
    import uvicorn

    from .app import create_app

    uvicorn.run(create_app(config_path), host=host, port=port, log_config=None)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by `python -m wifi_panel`."""

    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command:
        return send_command(args.command, args.host, args.port)
    return serve(args.host, args.port, args.config)


__all__ = ["build_parser", "main", "send_command", "serve"]


if __name__ == "__main__":  # pragma: no cover - module behaviour
    sys.exit(main())
