"""
progress-sync API server entry point.

Run with:
    python -m progress_sync.api.main

Or with uvicorn directly:
    uvicorn progress_sync.api.main:get_app --factory --reload --port 8000
"""

import argparse
import logging
import os

import uvicorn

from ..config import load_config
from .server import create_app

logger = logging.getLogger(__name__)


def main():
    """Main entry point for the progress-sync API server."""
    parser = argparse.ArgumentParser(description="progress-sync API Server")
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--data-dir",
        default=None,
        help="Local progress directory (default: from config, else ./progress)",
    )
    parser.add_argument(
        "--remote-url",
        default=None,
        help="Base URL of the HTTP remote ledger (default: in-memory ledger)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
    )

    # The app factory reads these, including under --reload
    if args.data_dir:
        os.environ["PROGRESS_SYNC_DATA_DIR"] = args.data_dir
    if args.remote_url:
        os.environ["PROGRESS_SYNC_REMOTE_URL"] = args.remote_url

    config = load_config()
    logger.info("Starting progress-sync API on %s:%d", args.host, args.port)
    logger.info("  Data dir: %s", config["data_dir"])
    logger.info("  Remote: %s", config.get("remote_url") or "in-memory")

    uvicorn.run(
        "progress_sync.api.main:get_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="debug" if args.debug else "info",
    )


def get_app():
    """Factory function for creating the FastAPI app from config and env."""
    return create_app(config=load_config())


if __name__ == "__main__":
    main()
