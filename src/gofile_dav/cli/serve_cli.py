#!/usr/bin/env python3
"""
CLI tool for serving a Gofile folder over WebDAV.

Every option can also be set through the environment variable named in its
help text.

Examples:
    # Serve a public folder read-only
    gofile-dav Veil7n

    # Serve the account root read-write on all interfaces
    gofile-dav --api-token $TOKEN --mode read-write --host 0.0.0.0

    # Serve a password protected folder through the bypass service
    gofile-dav Veil7n --password secret --bypass
"""

import argparse
import logging
import os
import sys

from pydantic import ValidationError

from gofile_dav.adapters import WebDAVAdapter
from gofile_dav.config import DEFAULT_HOST, DEFAULT_PORT, GofileDavConfig
from gofile_dav.sync_wrapper import SyncGofileFileSystem

_TRUTHY = {"1", "true", "yes", "on"}


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Keep request logging readable unless debugging
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gofile-dav",
        description="Serve a Gofile folder over WebDAV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "root_id",
        nargs="?",
        metavar="ROOT_ID",
        default=os.environ.get("ROOT_ID"),
        help="Folder id or code to serve; the account root when omitted [ROOT_ID]",
    )

    parser.add_argument(
        "--api-token",
        "-t",
        type=str,
        default=os.environ.get("API_TOKEN"),
        help="Account API token; a guest account is used when omitted [API_TOKEN]",
    )

    parser.add_argument(
        "--password",
        "-P",
        type=str,
        default=os.environ.get("PASSWORD"),
        help="Password of protected folders [PASSWORD]",
    )

    parser.add_argument(
        "--mode",
        "-m",
        type=str,
        default=os.environ.get("MODE", "read-only"),
        choices=["read-only", "read-write"],
        help="Access mode (default: read-only) [MODE]",
    )

    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=int(os.environ.get("PORT", DEFAULT_PORT)),
        help=f"Port to listen on (default: {DEFAULT_PORT}) [PORT]",
    )

    parser.add_argument(
        "--host",
        "-H",
        type=str,
        default=os.environ.get("HOST", DEFAULT_HOST),
        help=f"Host to bind to (default: {DEFAULT_HOST}) [HOST]",
    )

    parser.add_argument(
        "--bypass",
        "-b",
        action="store_true",
        default=_env_flag("BYPASS"),
        help="Download public files through the quota bypass service [BYPASS]",
    )

    parser.add_argument(
        "--prefetch-depth",
        type=int,
        default=0,
        help="Folder levels to fetch in the background after a listing (default: 0)",
    )

    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def build_config(args: argparse.Namespace) -> GofileDavConfig:
    """Turn parsed arguments into the configuration snapshot."""
    return GofileDavConfig(
        root_id=args.root_id or None,
        api_token=args.api_token or None,
        password=args.password or None,
        host=args.host,
        port=args.port,
        bypass=args.bypass,
        read_write=args.mode == "read-write",
        prefetch_depth=args.prefetch_depth,
    )


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.debug)
    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if config.bypass:
        logger.warning("Running with experimental bypass mode enabled")

    fs = SyncGofileFileSystem.from_config(config)
    try:
        fs.initialize()

        adapter = WebDAVAdapter(fs, host=config.host, port=config.port)
        logger.info(f"Serving {config.root_id or 'account root'} ({config.mode}) at {adapter.url}")

        adapter.start()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.debug)
        return 1

    finally:
        fs.close()


if __name__ == "__main__":
    sys.exit(main())
