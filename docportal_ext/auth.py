"""Flask-Login wiring and the role gate for admin-only views."""
from __future__ import annotations

from functools import wraps
from typing import Callable

from flask import Flask, abort, current_app, redirect, request
from flask_login import LoginManager, current_user

from docportal_ext.errors import AuthError

login_manager = LoginManager()
login_manager.session_protection = "strong"

# Page views redirect anonymous visitors; every other view answers 401 JSON.
PAGE_BLUEPRINTS = {"docportal_web"}
LOGIN_PAGE = "/login.html"


@login_manager.user_loader
def _load_user(user_id: str):
    from docportal_ext.db import db
    from docportal_models.user import User

    return db.session.get(User, user_id)


@login_manager.unauthorized_handler
def _unauthorized():
    current_app.logger.info("Anonymous request rejected", extra={"component": "auth", "endpoint": request.endpoint})
    if request.blueprint in PAGE_BLUEPRINTS:
        return redirect(LOGIN_PAGE)
    raise AuthError("Not authenticated")


def init_app(app: Flask) -> None:
    login_manager.init_app(app)


def roles_required(*roles: str) -> Callable:
    """Allow the view only to signed-in users whose role is one of ``roles``."""
    allowed = frozenset(roles)
    message = "Admin access required" if "admin" in allowed else "Access denied"

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def guarded(*args, **kwargs):
            if not current_user.is_authenticated:
                return login_manager.unauthorized()
            if current_user.role not in allowed:
                current_app.logger.warning(
                    "Role check failed",
                    extra={"component": "auth", "endpoint": request.endpoint, "role": current_user.role},
                )
                abort(403, description=message)
            return view(*args, **kwargs)

        return guarded

    return decorator
