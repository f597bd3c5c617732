"""
Logging for the matching service.

Every record from the "travelmate" logger carries the request id bound by
RequestIdMiddleware. Matching events also carry the caller, the plan and the
match request they touched, so one request can be followed from the HTTP
edge through the engine to the notification worker.

Production emits one JSON object per line; other environments get a compact
single-line format with the same correlation fields appended.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "travelmate"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Correlation fields, in output order
_MATCH_FIELDS = ("user_id", "plan_id", "match_request_id", "event_type", "error_code")

# Upper bound (exclusive) in ms -> label
_LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)

_TRUNCATE_AT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label for request.complete logs."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


def _match_fields(record: logging.LogRecord) -> Dict[str, object]:
    return {
        name: getattr(record, name)
        for name in _MATCH_FIELDS
        if getattr(record, name, None) is not None
    }


class RequestIdFilter(logging.Filter):
    """Fill in request_id from the context when the caller did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_match_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    """`<ts> LEVEL [rid=...] message user=alice plan=plan-bob`"""

    _SHORT_NAMES = {"user_id": "user", "plan_id": "plan", "match_request_id": "req", "event_type": "event", "error_code": "code"}

    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc_timestamp(record), record.levelname]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{self._SHORT_NAMES[k]}={v}" for k, v in _match_fields(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install a single stdout handler on the service logger; safe to call again."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    for noisy in ("uvicorn", "uvicorn.error"):
        logging.getLogger(noisy).propagate = False


def _truncate(value, limit: int = _TRUNCATE_AT) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    match_request_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Log a matching event with its correlation fields.

    Values in `extra` are stringified and truncated; they can hold user text
    such as request messages.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {"request_id": request_id or get_request_id()}
    for name, value in (
        ("user_id", user_id),
        ("plan_id", plan_id),
        ("match_request_id", match_request_id),
        ("event_type", event_type),
        ("error_code", error_code),
    ):
        if value is not None:
            fields[name] = value
    for key, value in (extra or {}).items():
        fields[key] = _truncate(value)

    getattr(logger, level, logger.info)(msg, extra=fields)
