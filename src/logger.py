"""
Centralized logging for Murmur.

Logs to file without console output (the live terminal view owns stdout).
"""

import logging
from pathlib import Path

# Create logs directory if it doesn't exist
LOGS_DIR = Path(__file__).parent.parent / "logs"
LOGS_DIR.mkdir(exist_ok=True)

# Log file path
LOG_FILE = LOGS_DIR / "murmur.log"


class MurmurLogger:
    """Centralized logger for Murmur."""

    _instance = None
    _logger = None

    def __init__(self):
        """Initialize the logger (singleton)."""
        if MurmurLogger._logger is None:
            MurmurLogger._logger = self._setup_logger()

    @classmethod
    def get_logger(cls):
        """Get the singleton logger instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    @classmethod
    def set_level(cls, level):
        """Change the log level, e.g. "DEBUG" to trace clustering decisions."""
        logger = cls.get_logger()
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.ERROR
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)

    def _setup_logger(self):
        """Set up the file logger with no console output."""
        logger = logging.getLogger('murmur')
        logger.setLevel(logging.ERROR)
        logger.propagate = False

        # Remove any existing handlers
        logger.handlers = []

        # File handler only (no console output)
        file_handler = logging.FileHandler(LOG_FILE, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.ERROR)

        # Format: [2024-01-15 14:30:25] ERROR - message
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(formatter)

        logger.addHandler(file_handler)

        return logger


# Convenience functions for logging
def log_debug(message):
    """Log a diagnostic message (only written when the level is DEBUG)."""
    MurmurLogger.get_logger().debug(message)


def log_error(message, exception=None):
    """
    Log an error message to file.

    Args:
        message: Error message string
        exception: Optional exception object to include traceback
    """
    logger = MurmurLogger.get_logger()
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in extraction")
    """
    logger = MurmurLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)


# Initialize logger on import
MurmurLogger.get_logger()
