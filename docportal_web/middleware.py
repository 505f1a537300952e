"""Request hooks: correlation ids, timing headers and request logging."""
from __future__ import annotations

import re
import time
import uuid
from typing import Any, Iterable

from flask import Flask, Response, g, request

from docportal_ext.logging import SLOW_THRESHOLD_MS, log_info, log_warn

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,64}$")
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_MAX_LIST_ITEMS = 50


def init_app(app: Flask) -> None:
    """Register the request lifecycle hooks on ``app``."""
    redact_keys = {key.lower() for key in app.config.get("REDACT_KEYS", [])}
    body_limit = int(app.config.get("REQUEST_BODY_LOG_MAX", 2048))

    @app.before_request
    def _start_request() -> None:
        g.request_id = _incoming_request_id() or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()
        if request.method in _BODY_METHODS:
            g.log_request_body = _body_sample(redact_keys, body_limit)

    @app.after_request
    def _finish_request(response: Response) -> Response:
        if "request_id" in g:
            response.headers["X-Request-ID"] = g.request_id
        started = g.get("request_started_at")
        if started is not None:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            g.log_latency_ms = int(elapsed_ms)
            response.headers["X-Response-Time"] = f"{elapsed_ms / 1000:.4f}s"
        g.log_status = response.status_code
        if g.get("log_latency_ms", 0) > SLOW_THRESHOLD_MS:
            log_warn("Slow request", component="http")
        log_info("Request completed", component="http")
        return response

    @app.teardown_request
    def _abort_request(exc: BaseException | None) -> None:
        if exc is not None:
            log_warn("Request torn down after an exception", component="http", error=repr(exc))


def _incoming_request_id() -> str | None:
    candidate = request.headers.get("X-Request-ID", "").strip()
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return None


def _body_sample(redact_keys: set[str], limit: int) -> Any:
    if request.mimetype == "multipart/form-data":
        files = [item.filename for _, item in request.files.items(multi=True)]
        return {"files": files, **scrub(request.form.to_dict(), redact_keys)}
    if request.is_json:
        return scrub(request.get_json(silent=True) or {}, redact_keys)
    if request.mimetype == "application/x-www-form-urlencoded":
        return scrub(request.form.to_dict(), redact_keys)
    raw = request.get_data(cache=True, as_text=True)
    if not raw:
        return None
    return raw if len(raw) <= limit else raw[:limit] + "..."


def scrub(payload: Any, redact_keys: Iterable[str]) -> Any:
    """Mask values whose key appears in ``redact_keys`` at any depth."""
    keys = {key.lower() for key in redact_keys}
    if isinstance(payload, dict):
        return {
            key: "***" if str(key).lower() in keys else scrub(value, keys)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [scrub(item, keys) for item in payload[:_MAX_LIST_ITEMS]]
    return payload
