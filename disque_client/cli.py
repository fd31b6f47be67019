"""
Command-line entry point.

Runs a single command against a cluster and prints the reply:

    disque-cli --nodes 127.0.0.1:7711,127.0.0.1:7712 ADDJOB queue body 0
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Sequence

from disque_client.client import Client
from disque_client.config import get_settings
from disque_client.errors import DisqueError, ReplyError
from disque_client.observability.logging import bind_context, clear_context, setup_logging
from disque_client.observability.metrics import get_metrics
from disque_client.observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="disque-cli",
        description="Send one command to a Disque cluster and print the reply.",
    )
    parser.add_argument(
        "-n",
        "--nodes",
        default=settings.nodes,
        help="comma-separated host:port list (default: %(default)s)",
    )
    parser.add_argument("-a", "--auth", default=settings.auth, help="cluster password")
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.request_timeout_seconds,
        help="seconds to wait for the reply",
    )
    parser.add_argument("--log-level", default="WARNING", help="log level (default: %(default)s)")
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="print client metrics to stderr after the reply",
    )
    parser.add_argument("command", help="command name, e.g. PING or ADDJOB")
    parser.add_argument("args", nargs="*", help="command arguments")
    return parser


def format_reply(value: Any, indent: int = 0) -> str:
    """Render a reply the way interactive Disque and Redis clients do."""
    pad = " " * indent
    if value is None:
        return f"{pad}(nil)"
    if isinstance(value, ReplyError):
        return f"{pad}(error) {value.message}"
    if isinstance(value, int):
        return f"{pad}(integer) {value}"
    if isinstance(value, list):
        if not value:
            return f"{pad}(empty list)"
        lines = []
        for index, item in enumerate(value, start=1):
            rendered = format_reply(item, indent + 3).lstrip()
            lines.append(f"{pad}{index}) {rendered}")
        return "\n".join(lines)
    if isinstance(value, bytes):
        return f"{pad}{value!r}"
    return f"{pad}{value}"


async def run_async(argv: Sequence[str] | None = None) -> int:
    """
    Parse arguments, run the command, and print the reply.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_format="console")
    if get_settings().otel_exporter_otlp_endpoint:
        setup_tracing()
    bind_context(nodes=args.nodes)

    try:
        client = Client(args.nodes, auth=args.auth, request_timeout=args.timeout)
    except ValueError as e:
        logger.error("Invalid arguments", extra={"nodes": args.nodes, "error": str(e)})
        clear_context()
        return 2

    try:
        reply = await client.call(args.command, *args.args)
    except ReplyError as e:
        print(format_reply(e))
        return 1
    except DisqueError as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        return 2
    finally:
        await client.quit()
        clear_context()
        if args.metrics:
            print(get_metrics().get_metrics().decode(), file=sys.stderr)

    print(format_reply(reply))
    return 0


def run() -> None:
    """Run the CLI."""
    sys.exit(asyncio.run(run_async()))


if __name__ == "__main__":
    run()
