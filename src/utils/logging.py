import logging
import sys
from typing import Optional, Union

from src import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(
    logger_name: Optional[str] = "src",
    level: Union[int, str] = config.DEFAULT_LOG_LEVEL,
    log_file: Optional[str] = None,
):
    """Configure a logger with a console handler and an optional file handler.

    Module loggers under ``src.`` propagate to the "src" logger, so calling
    this once configures the whole engine. Calling it again replaces the
    handlers from the previous call instead of stacking new ones.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler (level and above)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (DEBUG and above)
    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(logger_name: Optional[str] = "src"):
    existing_logger = logging.getLogger(logger_name)
    if not existing_logger.handlers:  # Check if handlers already exist
        return setup_logging(logger_name)
    return existing_logger
