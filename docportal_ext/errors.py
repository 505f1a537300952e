"""Typed failures and the JSON error handlers.

Every failure leaves the service in the same envelope as a regular result,
``{"success": false, "message": ..., "code": ...}``, so the browser pages
handle expected and unexpected errors with one code path.
"""
from __future__ import annotations

from typing import Any, Dict

from flask import Flask, Response, current_app, g, jsonify
from werkzeug.exceptions import HTTPException

GENERIC_SERVER_MESSAGE = "Server error"

# Statuses that tell the client to come back later.
_RETRYABLE = frozenset({429, 503})


class AppError(Exception):
    """Failure with a client-safe message and an internal ``detail``."""

    code = "APP_ERROR"
    http_status = 500

    def __init__(
        self,
        user_msg: str,
        *,
        code: str | None = None,
        http_status: int | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(user_msg)
        self.user_msg = user_msg
        self.detail = detail
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status

    def payload(self, *, include_detail: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.user_msg, "code": self.code}
        if g.get("request_id"):
            body["request_id"] = g.request_id
        if include_detail and self.detail:
            body["detail"] = self.detail
        return body

    def to_response(self) -> Response:
        response = jsonify(self.payload(include_detail=current_app.debug))
        response.status_code = self.http_status
        return response


class ValidationError(AppError):
    code = "INVALID_INPUT"
    http_status = 400


class AuthError(AppError):
    code = "NOT_AUTHENTICATED"
    http_status = 401


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    http_status = 403


class NotFoundError(AppError):
    code = "NOT_FOUND"
    http_status = 404


class ConflictError(AppError):
    code = "CONFLICT"
    http_status = 409


class RateLimitError(AppError):
    code = "RATE_LIMITED"
    http_status = 429


class UpstreamError(AppError):
    """A remote dependency (auth provider, object store) is unavailable."""

    code = "UPSTREAM"
    http_status = 503


def init_app(app: Flask) -> None:
    app.register_error_handler(AppError, _on_app_error)
    app.register_error_handler(HTTPException, _on_http_error)
    app.register_error_handler(Exception, _on_unhandled)


def _on_app_error(error: AppError) -> Response:
    if error.http_status >= 500:
        current_app.logger.error(
            error.user_msg, extra={"component": "errors", "code": error.code, "detail": error.detail}
        )
    return _finish(error.to_response())


def _on_http_error(error: HTTPException) -> Response:
    if error.code == 429:
        return _on_app_error(RateLimitError("Too many requests, please try again later."))
    status = error.code or 500
    message = error.description if isinstance(error.description, str) else error.name
    code = error.name.upper().replace(" ", "_")
    return _finish(AppError(message, code=code, http_status=status).to_response())


def _on_unhandled(error: Exception) -> Response:
    current_app.logger.exception("Unhandled exception", extra={"component": "errors"})
    detail = str(error) if current_app.debug else None
    return _finish(AppError(GENERIC_SERVER_MESSAGE, code="SERVER_ERROR", detail=detail).to_response())


def _finish(response: Response) -> Response:
    """Stamp the correlation id and, for retryable statuses, ``Retry-After``."""
    if g.get("request_id"):
        response.headers["X-Request-ID"] = g.request_id
    if response.status_code in _RETRYABLE:
        response.headers.setdefault("Retry-After", str(max(1, int(current_app.config.get("RETRY_AFTER_SECS", 60)))))
    return response
