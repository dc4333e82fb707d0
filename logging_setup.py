# logging_setup.py
# Console logger shared by the pipeline stages.

from __future__ import annotations

import logging

from termcolor import colored

LOGGER_NAME = "OnTimeDelivery"


class ColoredFormatter(logging.Formatter):
    COLORS = {'WARNING': 'yellow', 'INFO': 'white', 'DEBUG': 'blue', 'CRITICAL': 'red', 'ERROR': 'red'}

    def format(self, record):
        # colour the rendered line only; other handlers see the plain record
        line = super().format(record)
        color = self.COLORS.get(record.levelname)
        if color is None or "\033[" in line:
            return line
        return colored(line, color)


def setup_logging(name: str = LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    """Return the named logger with a single coloured stream handler."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    ch = logging.StreamHandler()
    ch.setLevel(level)
    formatter = ColoredFormatter('%(asctime)s - %(levelname)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    return logger


def get_logger() -> logging.Logger:
    """The pipeline logger; configured on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logging()
    return logger
