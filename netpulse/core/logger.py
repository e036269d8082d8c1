import os
import sys

from loguru import logger

from netpulse.core.constants import LOG_FILE, LOG_LEVEL, TMPDIR


def setup_logging(console_level: str = LOG_LEVEL, log_file: str = LOG_FILE) -> None:
    """Route loguru output to stderr and a rotating file under the temp dir."""
    logger.remove()  # Remove default handler

    # Add stderr handler only if available (not in windowed exe)
    if sys.stderr:
        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=console_level,
        )

    try:
        os.makedirs(TMPDIR, exist_ok=True)
        logger.add(
            log_file,
            rotation="1 MB",
            retention="10 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=LOG_LEVEL,
        )
    except OSError as e:
        logger.warning(f"File logging disabled: {e}")
