import logging
import os
from typing import List

from rich.logging import RichHandler

import config

FILE_FORMAT = "[%(asctime)s] %(levelname)s: [%(name)s] %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handlers(log_dir: str, log_level: int) -> List[logging.Handler]:
    os.makedirs(log_dir, exist_ok=True)
    formatter = logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT)

    combined = logging.FileHandler(os.path.join(log_dir, "combined.log"))
    combined.setLevel(log_level)
    combined.setFormatter(formatter)

    errors = logging.FileHandler(os.path.join(log_dir, "error.log"))
    errors.setLevel(logging.ERROR)
    errors.setFormatter(formatter)
    return [combined, errors]


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for console output.

    When LOG_DIR is set, every record also goes to combined.log and errors
    to error.log inside that directory.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    log_level = logging.DEBUG if os.getenv("DEBUG") else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        console_handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        console_handler.setFormatter(logging.Formatter("[%(name)s]  %(message)s"))
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)

        if config.LOG_DIR:
            for handler in _file_handlers(config.LOG_DIR, log_level):
                logger.addHandler(handler)

        logger.propagate = False
        logger.debug(f"Logger for '{name}' initialized with RichHandler.")

    return logger
