"""Structured logger setup shared by the generator, backends and the HTTP app."""

import logging

__all__ = ["setup_logger"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name: str, level: str | int = logging.INFO) -> logging.Logger:
    """Setup structured logger.

    The handler is attached only once, so calling this repeatedly for the same
    name (e.g. one generator per test) does not duplicate log lines.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(LOG_FORMAT)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger
