import logging

from marketchat.config import get_settings


def get_logger(name: str) -> logging.Logger:
    """Module logger with a single stream handler at the configured level."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(get_settings().log_level.upper())
    return logger
