"""Authentication backends selected once per deployment.

Both implementations expose the same three capabilities (register,
authenticate, set_password). ``AUTH_BACKEND`` chooses which one the
application uses; they never run side by side.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from flask import Flask, current_app

from docportal_auth.services import UserService, normalize_email
from docportal_ext.db import db
from docportal_ext.errors import UpstreamError
from docportal_models.user import User


class AuthBackend:
    """Capability interface shared by every credential provider."""

    name = "base"

    def __init__(self, app: Flask | None = None) -> None:
        self.app = app or current_app

    def register(self, *, name: str, email: str, password: str, mobile: str | None = None) -> User:  # pragma: no cover - interface
        raise NotImplementedError

    def authenticate(self, email: str, password: str) -> Optional[User]:  # pragma: no cover - interface
        raise NotImplementedError

    def set_password(self, user: User, password: str) -> None:  # pragma: no cover - interface
        """Stage a new password for ``user``; the caller commits the session."""
        raise NotImplementedError


class LocalAuthBackend(AuthBackend):
    """Credentials hashed with passlib and stored on the ``users`` table."""

    name = "local"

    def register(self, *, name: str, email: str, password: str, mobile: str | None = None) -> User:
        return UserService.create_user(name, email, password, mobile=mobile)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = UserService.get_by_email(email)
        if user is None or not user.verify_password(password):
            return None
        return user

    def set_password(self, user: User, password: str) -> None:
        user.set_password(password)
        db.session.add(user)


class SupabaseAuthBackend(AuthBackend):
    """Credentials owned by a Supabase (GoTrue) project.

    A local ``users`` row mirrors each remote identity so roles, uploads and
    the password-reset state keep working the same way as with local auth.
    """

    name = "supabase"

    def __init__(self, app: Flask | None = None) -> None:
        super().__init__(app)
        self.base_url = (self.app.config.get("SUPABASE_URL") or "").rstrip("/")
        self.anon_key = self.app.config.get("SUPABASE_ANON_KEY") or ""
        self.service_key = self.app.config.get("SUPABASE_SERVICE_ROLE_KEY") or ""
        self.timeout = int(self.app.config.get("SUPABASE_TIMEOUT_SECS", 15))
        if not self.base_url or not self.anon_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be configured for the supabase backend")

    # Shared helpers -----------------------------------------------------

    def _headers(self, *, service: bool = False) -> Dict[str, str]:
        key = self.service_key if service else self.anon_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, *, service: bool = False, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        self.app.logger.debug("Supabase request", extra={"component": "auth", "method": method, "url": url})
        try:
            return requests.request(method, url, headers=self._headers(service=service), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            self.app.logger.error("Supabase request failed", extra={"component": "auth", "url": url, "error": str(exc)})
            raise UpstreamError(user_msg="Authentication service unavailable", detail=str(exc)) from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason
        return str(body.get("msg") or body.get("error_description") or body.get("message") or body.get("error") or "")

    def _mirror(self, remote_user: Dict[str, Any], *, fallback_name: str, mobile: str | None = None) -> User:
        email = normalize_email(remote_user.get("email"))
        user = UserService.get_by_email(email)
        if user is not None:
            return user
        metadata = remote_user.get("user_metadata") or {}
        name = metadata.get("name") or fallback_name
        return UserService.create_user(
            name,
            email,
            None,
            mobile=mobile or metadata.get("mobile"),
            user_id=str(remote_user["id"]),
        )

    # Capabilities -------------------------------------------------------

    def register(self, *, name: str, email: str, password: str, mobile: str | None = None) -> User:
        if UserService.get_by_email(email):
            raise ValueError("Email already registered")
        response = self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": normalize_email(email), "password": password, "data": {"name": name, "mobile": mobile}},
        )
        if response.status_code in {400, 422}:
            message = self._error_message(response)
            if "registered" in message.lower() or "exists" in message.lower():
                raise ValueError("Email already registered")
            raise ValueError(message or "Registration rejected")
        if not response.ok:
            raise UpstreamError(user_msg="Authentication service unavailable", detail=self._error_message(response))
        payload = response.json()
        remote_user = payload.get("user") or payload
        return self._mirror(remote_user, fallback_name=name, mobile=mobile)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        response = self._request(
            "POST",
            "/auth/v1/token?grant_type=password",
            json={"email": normalize_email(email), "password": password},
        )
        if response.status_code in {400, 401}:
            return None
        if not response.ok:
            raise UpstreamError(user_msg="Authentication service unavailable", detail=self._error_message(response))
        remote_user = response.json().get("user") or {}
        if not remote_user.get("id"):
            return None
        return self._mirror(remote_user, fallback_name=normalize_email(email).split("@", 1)[0])

    def set_password(self, user: User, password: str) -> None:
        if not self.service_key:
            raise UpstreamError(user_msg="Authentication service unavailable", detail="SUPABASE_SERVICE_ROLE_KEY missing")
        response = self._request(
            "PUT",
            f"/auth/v1/admin/users/{user.id}",
            service=True,
            json={"password": password},
        )
        if not response.ok:
            raise UpstreamError(user_msg="Authentication service unavailable", detail=self._error_message(response))


BACKENDS: Dict[str, type[AuthBackend]] = {
    LocalAuthBackend.name: LocalAuthBackend,
    SupabaseAuthBackend.name: SupabaseAuthBackend,
}


def get_auth_backend(app: Flask | None = None) -> AuthBackend:
    """Return the configured backend, building it once per application."""
    app = app or current_app
    state = app.extensions.setdefault("docportal_auth", {})
    backend = state.get("backend")
    if backend is not None:
        return backend
    name = (app.config.get("AUTH_BACKEND") or "local").lower()
    try:
        backend_cls = BACKENDS[name]
    except KeyError as exc:
        raise RuntimeError(f"Unknown AUTH_BACKEND: {name}") from exc
    backend = backend_cls(app)
    state["backend"] = backend
    return backend


__all__ = ["AuthBackend", "LocalAuthBackend", "SupabaseAuthBackend", "get_auth_backend"]
