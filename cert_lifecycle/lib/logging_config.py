"""JSON logging configuration for the certificate lifecycle engine."""

import logging
import os

from pythonjsonlogger import jsonlogger

LOGGER_NAME = "cert_lifecycle"

# Context passed via `extra=` that is worth keeping in every line
CONTEXT_FIELDS = ("fingerprint", "request_id", "action")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a focused field set plus renewal context.

    Emits timestamp, level, message, exc_info, funcName and lineno, and keeps
    fingerprint/request_id/action when a call site supplies them.
    """

    def add_fields(self, log_record, record, message_dict):
        """Override to include only specified fields.

        Args:
            log_record: Dict to be logged as JSON
            record: LogRecord object from logging framework
            message_dict: Dict containing message and args
        """
        super().add_fields(log_record, record, message_dict)

        if "levelname" in log_record:
            log_record["level"] = log_record.pop("levelname")

        allowed_fields = {
            "timestamp",
            "level",
            "message",
            "exc_info",
            "funcName",
            "lineno",
            *CONTEXT_FIELDS,
        }

        keys_to_remove = [key for key in log_record if key not in allowed_fields]
        for key in keys_to_remove:
            log_record.pop(key)


def set_log_level(level: str | int) -> None:
    """Change the engine log level (accepts names like "debug" or ints)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown log level: {level}")
    logging.getLogger(LOGGER_NAME).setLevel(level)


def _setup_logger() -> logging.Logger:
    """Initialize and configure singleton logger.

    Library modules log through `logging.getLogger(__name__)`; their records
    propagate into this logger and share its handler.

    Returns:
        Configured logger with CustomJsonFormatter
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers if module reloaded
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = CustomJsonFormatter(
        fmt="%(timestamp)s %(levelname)s %(funcName)s %(lineno)d %(message)s",
        timestamp=True,
    )
    handler.setFormatter(formatter)

    logger.setLevel(os.environ.get("CERT_LIFECYCLE_LOG_LEVEL", "INFO").upper())
    logger.addHandler(handler)
    logger.propagate = False

    return logger


# Singleton logger instance - import this in scripts
LOGGER = _setup_logger()
