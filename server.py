"""
HTTP Server Entry Point for the Clinical Records API
Run with: python server.py
"""

import logging
import sys

from config import ServerConfig

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def cli_entry():
    """Entry point for console script"""
    import argparse

    settings = ServerConfig.from_environment()

    parser = argparse.ArgumentParser(description="Clinical Records API")
    parser.add_argument('--version', '-v', action='store_true', help='Show version')
    parser.add_argument('--port', type=int, default=settings.port, help=f'Port to listen on (default: {settings.port})')
    parser.add_argument('--host', type=str, default=settings.host, help=f'Host to bind to (default: {settings.host})')
    parser.add_argument('--log-level', type=str, default=settings.log_level, help='Logging level (default: INFO)')

    args = parser.parse_args()

    if args.version:
        print(f"clinic-records-api version {__version__}")
        sys.exit(0)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    from transport.http import run_http_server

    logger.info(f"Starting HTTP server on {args.host}:{args.port}")
    run_http_server(host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    cli_entry()
