"""Logging configuration with structured JSON formatter.

The library itself only creates loggers under the `httpc` namespace and
never installs handlers. Applications that want the structured output call
`configure_logging()` (or feed `LOGGING_CONFIG` to `logging.config.dictConfig`
themselves).

Loggers:
- `httpc.foundation.retry`: one WARNING per retried attempt.
- `httpc.foundation.rate_limiter`: DEBUG when a request waits for quota.
- `httpc.clients.http_client`: request pipeline events.
- `httpc.stream`: ERROR when a streamed body fails mid-copy.
"""

import json
import logging
import logging.config
from typing import Any

# LogRecord attributes that are not caller supplied `extra` fields
_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "error",
        "otelServiceName",
        "otelTraceSampled",
        "otelTraceID",
        "otelSpanID",
    }
)

# LoggingInstrumentor attribute -> output key
_OTEL_FIELDS = (
    ("otelServiceName", "otel_service_name"),
    ("otelTraceSampled", "otel_trace_sampled"),
    ("otelTraceID", "trace_id"),
    ("otelSpanID", "span_id"),
)


class CustomJSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging.

    This formatter converts log records to JSON format, including:
    - Standard log fields (time, level, message, etc.)
    - OpenTelemetry trace context (if LoggingInstrumentor is used)
    - Exception traces for `logger.exception(...)` calls
    - All extra attributes passed via the extra parameter
    """

    def __init__(self, fmt: str) -> None:
        """Initialize the formatter.

        Args:
            fmt: Format string (used for asctime, but output is JSON).
        """
        logging.Formatter.__init__(self, fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: The log record to format.

        Returns:
            JSON string representation of the log record.
        """
        logging.Formatter.format(self, record)
        return json.dumps(self.get_log(record), indent=None, default=str)

    def get_log(self, record: logging.LogRecord) -> dict[str, Any]:
        """Extract log data from record into a dictionary.

        Args:
            record: The log record to extract data from.

        Returns:
            Dictionary containing log data.
        """
        d: dict[str, Any] = {
            "time": record.asctime,
            "process_id": record.process,
            "thread_name": record.threadName,
            "level": record.levelname,
            "logger_name": record.name,
            "pathname": record.pathname,
            "line": record.lineno,
            "message": record.message,
        }

        for attr, key in _OTEL_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                d[key] = value

        error_data = getattr(record, "error", None)
        if isinstance(error_data, dict):
            error_dict: dict[str, Any] = error_data.copy()
            if record.exc_info:
                error_dict["trace"] = self.formatException(record.exc_info)
            d["error"] = error_dict
        elif error_data is not None:
            d["error"] = error_data
            if record.exc_info:
                d["trace"] = self.formatException(record.exc_info)
        elif record.exc_info:
            d["trace"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                d[key] = value

        return d


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,  # Keep existing loggers, just configure them
    "formatters": {
        "standard": {"()": lambda: CustomJSONFormatter(fmt="%(asctime)s")},
    },
    "handlers": {
        "default": {
            "formatter": "standard",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "httpc": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "httpc.stream": {
            "handlers": ["default"],
            "level": "ERROR",
            "propagate": False,
        },
    },
}


def configure_logging(level: str | int | None = None) -> None:
    """Install the JSON handler on the `httpc` loggers.

    Args:
        level: Optional level override for the `httpc` logger, e.g. "DEBUG"
            to see rate limiter waits.
    """
    logging.config.dictConfig(LOGGING_CONFIG)
    if level is not None:
        logging.getLogger("httpc").setLevel(level)
