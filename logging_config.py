"""Configure application logging using the Python standard library.

Sets up the root logger with a console handler and, when a log directory is
given, a rotating file handler. Records are written as one JSON object per
line. Anything passed through ``extra=`` (user_id, order_id, ...) is merged
into the top level of the object.
"""

import json
import logging
import logging.handlers
import os
from datetime import datetime, timezone
from typing import Optional, Union

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Format log records as JSON strings."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(level: Union[int, str] = logging.INFO, log_dir: Optional[str] = None) -> None:
    """Configure root logger with JSON formatting.

    Args:
        level: Logging level (number or name) for the root logger.
        log_dir: Directory for ``storefront.log``. Created if missing. No file
            handler is installed when this is None.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger = logging.getLogger()
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if getattr(handler, "_storefront", False):
            logger.removeHandler(handler)
    formatter = JsonFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    console_handler._storefront = True
    logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=os.path.join(log_dir, "storefront.log"),
            maxBytes=5 * 1024 * 1024,  # 5 MB per log file
            backupCount=3,
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        file_handler._storefront = True
        logger.addHandler(file_handler)
