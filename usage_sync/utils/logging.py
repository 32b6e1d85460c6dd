"""
Logging setup for usage-sync.

Every record passes two filters on the way out: one stamps the current
request id and user id from context variables, the other masks credentials
(authority tokens, the shared secret, cached authorization keys and DSN
passwords). Production writes one JSON object per line; development writes
one readable line per record.
"""

import json
import logging
import re
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from usage_sync.config import LoggingSettings

_request_id: ContextVar[str] = ContextVar("request_id", default="-")
_user_id: ContextVar[str] = ContextVar("user_id", default="-")

REDACTED = "[REDACTED]"

# (pattern, replacement) pairs; the matched key name survives redaction
_REDACTIONS = [
    (
        re.compile(
            r"\b(token|auth_key|utils_api_key|api[_-]?key|secret|password)"
            r"([\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+",
            re.IGNORECASE,
        ),
        r"\1\2" + REDACTED,
    ),
    (re.compile(r"\bbearer\s+[\w.~+/-]+=*", re.IGNORECASE), "Bearer " + REDACTED),
    (re.compile(r"\bauth:[\w.~+/-]+"), "auth:" + REDACTED),
    (re.compile(r"(\w+://[^:/\s@]+:)[^@\s]+@"), r"\1" + REDACTED + "@"),
]

# Attributes every LogRecord has; anything else came in through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "request_id",
    "user_id",
}


def redact(text: str) -> str:
    """Mask credentials in a log line."""
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class ContextFilter(logging.Filter):
    """Stamp request_id and user_id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.user_id = _user_id.get()
        return True


class RedactionFilter(logging.Filter):
    """Render the message once and mask credentials in it."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = redact(message)
        record.args = ()
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:

        {"timestamp": ..., "level": "WARNING", "logger": "usage_sync.payments.reconciler",
         "message": ..., "service": "usage-sync", "request_id": ..., "user_id": ...,
         "extra": {...}}
    """

    def __init__(self, service_name: str = "usage-sync"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        extra = _extra_fields(record)
        if extra:
            entry["extra"] = extra
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """`12:00:01 WARNING  [req-id] logger: message {extra}` for local runs."""

    def __init__(self):
        super().__init__(
            "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        line = super().format(record)
        extra = _extra_fields(record)
        if extra:
            line = f"{line} {extra}"
        return line


def setup_logging(settings: LoggingSettings, service_name: str = "usage-sync") -> None:
    """
    Install the single stdout handler on the root logger.

    JSON output is used in production or when LOG_FORMAT_JSON is set.
    Calling this again replaces the previous handler.
    """
    use_json = settings.log_format_json or settings.environment == "production"

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.addFilter(RedactionFilter())
    handler.setFormatter(JSONFormatter(service_name) if use_json else ConsoleFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(settings.log_level)

    for noisy in ("httpx", "httpcore", "asyncpg", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.debug("Logging configured (%s, %s)", settings.log_level, "json" if use_json else "console")


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    """Attach ids to every log line emitted in the current context."""
    if request_id is not None:
        _request_id.set(request_id)
    if user_id is not None:
        _user_id.set(user_id)


def clear_request_context() -> None:
    _request_id.set("-")
    _user_id.set("-")


@contextmanager
def timed(operation: str, logger: logging.Logger, level: int = logging.DEBUG) -> Iterator[None]:
    """Log how long the enclosed block took and whether it raised."""
    start = time.perf_counter()
    succeeded = False
    try:
        yield
        succeeded = True
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.log(
            level,
            "%s took %.1fms",
            operation,
            elapsed_ms,
            extra={"operation": operation, "duration_ms": round(elapsed_ms, 2), "success": succeeded},
        )
