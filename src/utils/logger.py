"""Logging utilities for the CORS Relay."""

import json
import logging
import os
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_configured_loggers: Dict[str, logging.Logger] = {}


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON.

        Args:
            record: Log record to format.

        Returns:
            str: JSON formatted log message.
        """
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_entry[key] = value

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        logging.Logger: Configured logger instance.
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, log_level, logging.INFO))

        handler = logging.StreamHandler()

        if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
            # Use structured logging in Lambda
            formatter = StructuredFormatter()
        else:
            # Use simple formatting for local development
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        handler.setFormatter(formatter)
        logger.addHandler(handler)

        # Prevent duplicate logs
        logger.propagate = False

    _configured_loggers[name] = logger
    return logger


def set_log_level(level: str) -> None:
    """Apply a configured log level to every logger handed out by get_logger."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    for logger in _configured_loggers.values():
        logger.setLevel(numeric_level)


def log_request(logger: logging.Logger, event: Dict[str, Any]) -> None:
    """Log incoming request details.

    Args:
        logger: Logger instance.
        event: Lambda event object.
    """
    request_context = event.get("requestContext") or {}
    headers = event.get("headers") or {}
    request_info = {
        "method": event.get("httpMethod")
        or (request_context.get("http") or {}).get("method"),
        "path": event.get("path") or event.get("rawPath"),
        "source_ip": (request_context.get("identity") or {}).get("sourceIp")
        or (request_context.get("http") or {}).get("sourceIp"),
        "user_agent": headers.get("User-Agent") or headers.get("user-agent"),
        "request_id": request_context.get("requestId"),
    }

    logger.info("Incoming request", extra=request_info)


def log_response(logger: logging.Logger,
                 status_code: int,
                 response_size: int,
                 target_url: Optional[str] = None) -> None:
    """Log response details.

    Args:
        logger: Logger instance.
        status_code: HTTP status code.
        response_size: Response body size in bytes.
        target_url: Upstream URL the request was relayed to, if any.
    """
    response_info = {"status_code": status_code, "response_size": response_size}
    if target_url:
        response_info["target_url"] = target_url

    logger.info("Outgoing response", extra=response_info)
