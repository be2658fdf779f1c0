# map_narrator/core/logging_config.py

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Create a logger for our application
logger = logging.getLogger("map_narrator")


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach the console handler once and (re)apply the level."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logger.setLevel(numeric)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

    for handler in logger.handlers:
        handler.setLevel(numeric)

    return logger


configure_logging()
