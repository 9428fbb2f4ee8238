import logging


def get_logger(name: str) -> logging.Logger:
    """Module loggers; handlers and levels come from app.core.logging.setup_logging()."""
    return logging.getLogger(name)
