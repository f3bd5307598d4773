import logging

from typing import Optional

NULL_LOGGER_NAME = "drawdown.null"


def setup_logging(level: int = logging.INFO, filename: Optional[str] = "app.log"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        filename=filename,
    )


def null_logger() -> logging.Logger:
    """
    Logger that swallows every record: a NullHandler and no propagation to root.
    Core components fall back to it when the caller does not inject one.
    """
    logger = logging.getLogger(NULL_LOGGER_NAME)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def resolve_logger(logger: Optional[logging.Logger]) -> logging.Logger:
    return logger if logger is not None else null_logger()
