"""
Central logger configuration. Import get_logger() from other modules.
"""
import logging

from .config import LOG_FORMAT, LOG_LEVEL


def get_logger(name: str = "hospital_queue") -> logging.Logger:
    """Create and return a module-level logger."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    return logger
