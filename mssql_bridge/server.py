"""CLI entrypoint to run the MSSQL Bridge HTTP server."""
import argparse
import dataclasses
import logging
from typing import List, Optional

import uvicorn

from .app import create_app
from .config import load_settings, setup_logging, validate_config

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the MSSQL Bridge HTTP server")
    parser.add_argument(
        "--host",
        default=None,
        help="Interface to bind (default 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (default: $PORT or 3000)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="dotenv file to load before reading the environment",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    settings = load_settings(args.env_file)
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    setup_logging(settings)
    validate_config(settings)

    logger.info("MSSQL Bridge listening on port %d", settings.port)
    # uvicorn turns SIGTERM/SIGINT into a lifespan shutdown, which closes the pool
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
