"""
Logging configuration
Module loggers of the package are routed to the Rich console
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union

from rich.logging import RichHandler

from . import config
from .utils import console

PACKAGE_LOGGER = "fleetca"

_PEM_PRIVATE_KEY = re.compile(
    r"-----BEGIN (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----.*?-----END (?:RSA |EC |ENCRYPTED )?PRIVATE KEY-----",
    re.DOTALL,
)
_SECRET_KV = re.compile(r"(pass(?:word|phrase)?|secret)\s*=\s*([^\s,;]+)", re.IGNORECASE)


class RedactFilter(logging.Filter):
    """Masks private key material and secrets before a record is emitted"""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            msg = _PEM_PRIVATE_KEY.sub("[REDACTED-PRIVATE-KEY]", record.msg)
            record.msg = _SECRET_KV.sub(lambda m: f"{m.group(1)}=[REDACTED]", msg)
        return True


def setup_logging(
        level: Optional[str] = None,
        log_file: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """
    Configures the package logger once

    Args:
        level: Level name (defaults to config.LOG_LEVEL)
        log_file: Optional file receiving a plain text copy of the log

    Returns:
        logging.Logger: The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))

    if getattr(logger, "_fleetca_configured", False):
        return logger

    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.addFilter(RedactFilter())
    logger.addHandler(handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(config.LOG_FORMAT, config.LOG_DATE_FORMAT))
        file_handler.addFilter(RedactFilter())
        logger.addHandler(file_handler)

    setattr(logger, "_fleetca_configured", True)
    return logger
