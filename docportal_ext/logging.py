"""Structured logging for the portal.

Records pass through :class:`RequestContextFilter`, which copies request
metadata (request id, route, caller address, signed-in user) onto the record,
and are rendered by :class:`StructuredFormatter` as JSON lines or as a short
plain-text line for local development. Keys listed in ``REDACT_KEYS`` never
reach the output.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from flask import Flask, current_app, g, has_request_context, request
from flask_login import current_user

SLOW_THRESHOLD_MS = 1000

_BUILTIN_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}
_PLAIN_FIELDS = ("request_id", "method", "route", "status", "latency_ms", "user_id")


class RequestContextFilter(logging.Filter):
    """Attach the active request's metadata to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        context = {
            "request_id": g.get("request_id"),
            "route": request.path,
            "method": request.method,
            "ip": request.remote_addr,
            "latency_ms": g.get("log_latency_ms"),
            "status": g.get("log_status"),
            "request_body": g.get("log_request_body"),
        }
        if getattr(current_user, "is_authenticated", False):
            context["user_id"] = current_user.get_id()
        # Values passed explicitly through ``extra`` win.
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class StructuredFormatter(logging.Formatter):
    """Render records as JSON lines or compact text with redacted extras."""

    def __init__(self, as_json: bool = True, redact_keys: Iterable[str] = ()) -> None:
        super().__init__()
        self.as_json = as_json
        self.redact_keys = {key.lower() for key in redact_keys}

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = self._payload(record)
        if self.as_json:
            return json.dumps(payload, ensure_ascii=True, default=str)
        line = f"[{payload['level']}] {payload['component']}: {payload['msg']}"
        details = " ".join(f"{key}={payload[key]}" for key in _PLAIN_FIELDS if key in payload)
        if details:
            line = f"{line} ({details})"
        if "exception" in payload:
            line = f"{line}\n{payload['exception']}"
        return line

    def _payload(self, record: logging.LogRecord) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "component": getattr(record, "component", "app"),
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _BUILTIN_ATTRS or key == "component" or key.startswith("_") or value is None:
                continue
            payload[key] = "***" if key.lower() in self.redact_keys else value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return payload


def configure_logging(app: Flask) -> None:
    """Install the structured handler on ``app.logger``."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(
        StructuredFormatter(
            as_json=app.config.get("LOG_FORMAT", "json").lower() == "json",
            redact_keys=app.config.get("REDACT_KEYS", []),
        )
    )
    app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))


def log_info(message: str, *, component: str = "app", **extra: Any) -> None:
    current_app.logger.info(message, extra={"component": component, **extra})


def log_warn(message: str, *, component: str = "app", **extra: Any) -> None:
    current_app.logger.warning(message, extra={"component": component, **extra})


def log_error(message: str, *, component: str = "app", exc_info: bool = False, **extra: Any) -> None:
    current_app.logger.error(message, exc_info=exc_info, extra={"component": component, **extra})
