"""Logging for the chat service and the indexer.

Records carry the request id of the HTTP request that produced them, plus a
few pipeline fields that services attach with ``extra=``:

- ``stage``: chat lifecycle stage (embedding, retrieving, streaming, ...)
- ``service``: remote dependency involved (huggingface, supabase, llm, ...)
- ``upstream_status``: HTTP status returned by that dependency
- ``error_type``: exception class name

Both formatters render these as first-class fields. Any other ``extra=``
keys are kept as-is in JSON output and dropped from console output.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from blog_assistant.config import get_settings

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

PIPELINE_FIELDS = ("stage", "service", "upstream_status", "error_type")

# Attributes every LogRecord has; anything else came in through `extra=`
_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {
    "message",
    "asctime",
    "taskName",
    "request_id",
    "pipeline",
}

_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "httpx", "httpcore")

_configured = False


def pipeline_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Pipeline fields set on `record`, in display order, skipping empty ones."""
    fields = {}
    for name in PIPELINE_FIELDS:
        value = getattr(record, name, None)
        if value is not None and value != "":
            fields[name] = value
    return fields


def error_fields(error: Exception) -> Dict[str, Any]:
    """`extra=` fields describing a failure, including the remote service if any."""
    return {
        "error_type": type(error).__name__,
        "service": getattr(error, "service", None),
        "upstream_status": getattr(error, "upstream_status", None),
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        entry.update(pipeline_fields(record))

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in PIPELINE_FIELDS
        }
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StandardFormatter(logging.Formatter):
    """Readable console lines for development.

    Example:
        2024-03-05 10:00:00 WARNING  blog_assistant.chat_service [3f2a...] Chat failed (stage=embedding service=huggingface upstream_status=503)
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s [%(request_id)s] %(message)s%(pipeline)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = request_id_var.get() or "-"
        fields = pipeline_fields(record)
        record.pipeline = (
            " (" + " ".join(f"{k}={v}" for k, v in fields.items()) + ")" if fields else ""
        )
        return super().format(record)


def setup_logging(json_output: Optional[bool] = None) -> logging.Logger:
    """Configure the `blog_assistant` logger tree once per process.

    JSON lines in production, console lines elsewhere, unless `json_output`
    says otherwise.
    """
    global _configured

    logger = logging.getLogger("blog_assistant")
    if _configured:
        return logger

    settings = get_settings()
    if json_output is None:
        json_output = settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else StandardFormatter())

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(settings.log_level)
    logger.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # LiteLLM logs every request at INFO
    logging.getLogger("LiteLLM").setLevel(logging.INFO if settings.debug else logging.WARNING)

    _configured = True
    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment.value}, format={'json' if json_output else 'console'}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the `blog_assistant` tree."""
    if name:
        return logging.getLogger(f"blog_assistant.{name}")
    return logging.getLogger("blog_assistant")


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    streamed: bool = False,
    **kwargs: Any,
) -> None:
    """Log one finished request.

    For streamed responses `duration_ms` is the time until the status line
    and headers went out, not until the last chunk.
    """
    timing = "ttfb" if streamed else "total"
    get_logger("http").info(
        f"{method} {path} - {status_code} - {duration_ms:.2f}ms {timing}",
        extra={
            "method": method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "streamed": streamed,
            **kwargs,
        },
    )


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    """Log an exception with its traceback.

    Remote dependency failures carry their service name and upstream status
    into the record.
    """
    get_logger("error").error(
        f"{type(error).__name__}: {error}",
        exc_info=error,
        extra={**error_fields(error), **(context or {})},
    )
