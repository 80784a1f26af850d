"""
Logging configuration.

Console logging is always enabled. Development uses a plain human-readable
format; every other environment emits one JSON object per line so the records
can be shipped by the platform's log collector.
"""

import json
import logging
import sys

from src.config.config import Config

logger = logging.getLogger(__name__)


class ServiceContextFilter(logging.Filter):
    """Attach service and environment names to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = Config.SERVICE_NAME
        record.environment = Config.APP_ENV
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Formats log records as JSON with service context and additional metadata.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "service"):
            log_data["service"] = record.service
        if hasattr(record, "environment"):
            log_data["environment"] = record.environment

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add any extra fields
        if hasattr(record, "extra"):
            log_data.update(record.extra)

        return json.dumps(log_data, default=str)


def configure_logging() -> bool:
    """
    Configure application logging.

    Sets up:
    - Console handler on stdout
    - Service context filter
    - JSON formatting outside development

    Returns:
        bool: True if structured JSON logging was enabled, False otherwise
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.addFilter(ServiceContextFilter())

    # Use simple format for console in development, JSON elsewhere
    structured = not Config.IS_DEVELOPMENT
    if structured:
        console_formatter = StructuredFormatter()
    else:
        console_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    # Set log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    logger.info(f"Console logging configured (structured={structured})")
    return structured
