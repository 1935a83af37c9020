"""
=============================================================================
TCPRELAY CLI ENTRY POINT
=============================================================================

    # Run the server with defaults (0.0.0.0:51717)
    python -m tcprelay serve

    # Custom port, verbose
    python -m tcprelay serve --port 3000 --log-level DEBUG

    # Connect a client
    python -m tcprelay connect --host 127.0.0.1 --port 3000

Configuration precedence: CLI arguments, then RELAY_* environment variables,
then defaults.

Exit codes:
    0   clean shutdown
    1   fatal setup failure (socket, bind, listen, multiplexer) or the
        client could not connect

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import RelayConfig, setup_logging
from .errors import SetupError, ConnectError
from .server import RelayServer
from .client import RelayClient


logger = logging.getLogger("tcprelay")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcprelay",
        description="Minimal readiness-driven TCP message relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tcprelay serve                      # Listen on 0.0.0.0:51717
  python -m tcprelay serve --port 3000          # Custom port
  python -m tcprelay connect                    # Connect to localhost:51717
        """
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"tcprelay {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # SERVE
    # ─────────────────────────────────────────────────────────────────────

    serve = subparsers.add_parser("serve", help="Run the relay server")
    serve.add_argument("--host", "-H", default=None, help="Host to bind to (default: 0.0.0.0)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 51717)")
    serve.add_argument("--backlog", type=int, default=None, help="Listen backlog (default: 32)")
    serve.add_argument(
        "--wait-timeout",
        type=float,
        default=None,
        help="Seconds per readiness wait; bounds shutdown latency (default: 60)"
    )
    _add_log_level(serve)

    # ─────────────────────────────────────────────────────────────────────
    # CONNECT
    # ─────────────────────────────────────────────────────────────────────

    connect = subparsers.add_parser("connect", help="Run the interactive client")
    connect.add_argument("--host", "-H", default=None, help="Server host (default: 127.0.0.1)")
    connect.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 51717)")
    _add_log_level(connect)

    return parser


def _add_log_level(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )


def config_from_args(args: argparse.Namespace) -> RelayConfig:
    """Overlay explicitly given CLI arguments on the environment config."""
    config = RelayConfig.from_env()
    overrides = {
        "host": args.host,
        "port": args.port,
        "backlog": getattr(args, "backlog", None),
        "wait_timeout": getattr(args, "wait_timeout", None),
        "log_level": args.log_level,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
        config.validate()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.command == "serve":
        try:
            RelayServer(config).run()
        except SetupError as e:
            logger.error(str(e))
            return 1
        return 0

    setup_logging(config.log_level)
    try:
        return RelayClient(config).run()
    except ConnectError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
