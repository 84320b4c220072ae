"""
Logging setup on top of loguru.

The CLI calls setup_logging() once; library code asks create_logger() for a
handler that tags every message with the input file it belongs to.
"""
import sys
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"


def setup_logging(level: str = "INFO"):
    """Replace loguru's default handler with a stderr sink at ``level``."""
    logger.remove()
    if sys.stderr is not None:
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=level,
            colorize=True,
        )


class LoguruHandler:
    """Thin wrapper adding a ``[file]`` prefix to loguru messages."""

    def __init__(self, file_id: Optional[str] = None):
        self.file_id = file_id

    def _format_message(self, message: str) -> str:
        if self.file_id:
            return f"[{self.file_id}] {message}"
        return message

    def info(self, message: str):
        logger.info(self._format_message(message))

    def error(self, message: str):
        logger.error(self._format_message(message))

    def success(self, message: str):
        logger.success(self._format_message(message))

    def warning(self, message: str):
        logger.warning(self._format_message(message))

    def debug(self, message: str):
        logger.debug(self._format_message(message))


def create_logger(file_id: Optional[str] = None) -> LoguruHandler:
    return LoguruHandler(file_id)


Logger = LoguruHandler
