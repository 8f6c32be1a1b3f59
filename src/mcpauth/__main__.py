"""mcpauth entry point.

Changes:
  - 2026-02-20: Added ``cleanup`` subcommand (purges expired codes and tokens).
  - 2026-02-20: Initial CLI with ``serve`` (API server under uvicorn).
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from mcpauth.config import get_settings
from mcpauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("mcpauth")
    except PackageNotFoundError:
        from mcpauth import __version__

        return __version__


def run_cleanup() -> int:
    """Delete expired authorization codes and tokens from the configured store."""
    from mcpauth.oauth2.server import get_oauth_server

    removed = get_oauth_server().cleanup_expired()
    logger.info(
        "Removed %d expired authorization codes and %d expired tokens",
        removed["codes"],
        removed["tokens"],
    )
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="mcpauth - OAuth 2.1 authorization server for MCP APIs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcpauth serve                      Start the API server on 127.0.0.1:8000
  mcpauth serve --host 0.0.0.0       Listen on all interfaces
  mcpauth serve --dev                Start with auto-reload (dev mode)
  mcpauth cleanup                    Purge expired codes and tokens
""",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind the API server to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port for the API server (default: 8000)"
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode with auto-reload",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {_version()}",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "cleanup"],
        help="'serve' starts the API server, 'cleanup' purges expired records",
    )

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level=settings.log_level)

    try:
        if args.command == "cleanup":
            raise SystemExit(run_cleanup())

        from mcpauth.api.serve import run_api_server

        run_api_server(host=args.host, port=args.port, dev=args.dev)
    except KeyboardInterrupt:
        logger.info("mcpauth stopped.")


if __name__ == "__main__":
    main()
