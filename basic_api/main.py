"""
Service entry point.
Run with: python -m basic_api.main  (or the ``basic-api`` console script)
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from basic_api.config import DEFAULT_ENV_FILE
from basic_api.errors import AppError, ConfigError, PoolError
from basic_api.log import init_logging
from basic_api.server import ServiceRunner
from basic_api.shutdown import ShutdownCoordinator

logger = logging.getLogger("basic_api")


async def run(env_file: Optional[str] = DEFAULT_ENV_FILE, shutdown: Optional[ShutdownCoordinator] = None):
    """Load config, build the pool and serve until shutdown"""
    await ServiceRunner(env_file=env_file, shutdown=shutdown).run()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="basic-api", description="Run the HTTP service")
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help="dotenv file filling in unset variables (default: %(default)s)",
    )
    parser.add_argument("--no-env-file", action="store_true", help="ignore any dotenv file")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    init_logging(args.log_level)
    env_file = None if args.no_env_file else args.env_file

    try:
        asyncio.run(run(env_file=env_file))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except PoolError as e:
        logger.error("Database error: %s", e)
        return 1
    except AppError as e:
        logger.error("Server error: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted during shutdown")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
