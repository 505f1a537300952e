"""CSRF protection, security headers and per-client rate limits."""
from __future__ import annotations

from typing import Callable

from flask import Flask, current_app, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import current_user
from flask_talisman import Talisman
from flask_wtf import CSRFProtect
from flask_wtf.csrf import CSRFError


def client_rate_key() -> str:
    """Count signed-in users by account and everyone else by address."""
    if current_user.is_authenticated:
        return f"user:{current_user.get_id()}"
    return f"ip:{get_remote_address()}"


def _log_breach(limit) -> None:
    current_app.logger.warning(
        "Rate limit exceeded",
        extra={"component": "security", "limit": str(limit.limit), "rate_key": limit.key},
    )


csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address, on_breach=_log_breach)
talisman = Talisman()


def rate(name: str) -> Callable[[], str]:
    """Deferred lookup of ``RATES[name]`` so each app's config decides the limit."""

    def _limit() -> str:
        return current_app.config["RATES"][name]

    return _limit


def init_app(app: Flask) -> None:
    """Register CSRF, limiter and header extensions on ``app``."""
    csrf.init_app(app)
    app.register_error_handler(CSRFError, _csrf_failed)

    app.config.setdefault("RATELIMIT_DEFAULT", "200 per minute")
    if app.config.get("GLOBAL_RATE_LIMIT"):
        app.config.setdefault("RATELIMIT_APPLICATION", app.config["GLOBAL_RATE_LIMIT"])
    limiter.init_app(app)

    if not app.config.get("SECURITY_HEADERS", True):
        return
    secure = bool(app.config.get("SESSION_COOKIE_SECURE", False))
    talisman.init_app(
        app,
        content_security_policy=app.config.get("CONTENT_SECURITY_POLICY"),
        force_https=secure,
        session_cookie_secure=secure,
        referrer_policy="strict-origin-when-cross-origin",
    )


def _csrf_failed(error: CSRFError):
    current_app.logger.warning("CSRF validation failed", extra={"component": "security", "reason": error.description})
    response = jsonify({"success": False, "message": "Invalid or missing CSRF token", "code": "CSRF_FAILED"})
    response.status_code = 400
    return response
