"""CLI entry point for ccrelay"""
import argparse

import uvicorn

from ccrelay.core.config import load_config
from ccrelay.core.logging import setup_logging, get_logger
from ccrelay.main import create_app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Messages API relay")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML configuration file (default: $CONFIG_PATH)",
    )
    parser.add_argument("--host", type=str, default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Listen port")
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    config = load_config(
        args.config,
        overrides={"host": args.host, "port": args.port, "debug": args.debug},
    )

    # Initialize logging early
    setup_logging(log_level=config.effective_log_level, log_file=config.log_file)
    logger = get_logger()

    if args.config:
        logger.info(f"Using config file: {args.config}")
    logger.info(f"Listening on {config.host}:{config.port}")

    # Configure uvicorn to use loguru
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,  # Disable uvicorn's default logging config
        access_log=True,  # Enable access logs (will be intercepted by loguru)
    )


if __name__ == "__main__":
    main()
