"""Loguru sink setup shared by the CLI and long-running workers."""

import sys

from loguru import logger


LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: str = None) -> None:
    """
    Replace loguru's default sink with a compact stderr sink.

    Args:
        level: Minimum level for stderr output
        log_file: Optional path for a rotating file sink
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file:
        logger.add(log_file, rotation="50 MB", retention="10 days", level="DEBUG")
