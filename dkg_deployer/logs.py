"""Logging setup for the deployer CLI."""

import sys

from loguru import logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Replace loguru's default sink with the deployer's stderr sink.

    Args:
        level: Minimum level to emit (DEBUG, INFO, SUCCESS, WARNING, ERROR)
        json_logs: Emit one serialized JSON record per line instead of text
    """
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, colorize=True)
    logger.debug(f"Logging configured at {level.upper()}")
