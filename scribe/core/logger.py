import logging
import os

_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Simple logger factory."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logger


def truncate(value, limit: int = 300) -> str:
    """Shorten raw provider payloads before they go to the log."""
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + f"... ({len(text)} chars)"
