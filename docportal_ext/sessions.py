"""Server-side sessions persisted through SQLAlchemy.

The browser only ever holds a signed, opaque session id. Session contents
(the Flask-Login identity, the cached profile and the password-reset
capability) stay in the ``server_sessions`` table and expire a fixed amount
of time after the session was issued; activity does not extend the lifetime.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Any

from flask import Flask, Request, Response
from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, TimestampSigner
from werkzeug.datastructures import CallbackDict

_SIGNER_SALT = "docportal-session"


def _now() -> datetime:
    return datetime.utcnow()


class ServerSideSession(CallbackDict, SessionMixin):
    """Dict-like session whose payload lives in the database."""

    def __init__(self, initial: dict[str, Any] | None = None, sid: str | None = None, new: bool = False) -> None:
        def on_update(self: "ServerSideSession") -> None:
            self.modified = True
            self.accessed = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.new = new
        self.modified = False
        self.accessed = False
        self.rotate_requested = False

    def regenerate(self) -> None:
        """Issue a fresh session id on save, keeping the current contents."""
        self.rotate_requested = True
        self.modified = True


class DatabaseSessionInterface(SessionInterface):
    """Flask session interface backed by ``ServerSessionRecord`` rows."""

    session_class = ServerSideSession

    def _signer(self, app: Flask) -> TimestampSigner:
        return TimestampSigner(app.secret_key, salt=_SIGNER_SALT)

    def _lifetime(self, app: Flask) -> timedelta:
        return app.permanent_session_lifetime

    @staticmethod
    def _new_sid() -> str:
        return secrets.token_urlsafe(32)

    def open_session(self, app: Flask, request: Request) -> ServerSideSession:
        from docportal_ext.db import db
        from docportal_models.server_session import ServerSessionRecord

        cookie_value = request.cookies.get(self.get_cookie_name(app))
        if not cookie_value:
            return self.session_class(new=True)
        try:
            sid = self._signer(app).unsign(
                cookie_value, max_age=int(self._lifetime(app).total_seconds())
            ).decode("utf-8")
        except BadSignature:
            return self.session_class(new=True)

        record = db.session.get(ServerSessionRecord, sid)
        if record is None:
            return self.session_class(new=True)
        if record.expires_at <= _now():
            db.session.delete(record)
            db.session.commit()
            return self.session_class(new=True)
        return self.session_class(dict(record.data or {}), sid=sid)

    def save_session(self, app: Flask, session: ServerSideSession, response: Response) -> None:  # type: ignore[override]
        from docportal_ext.db import db
        from docportal_models.server_session import ServerSessionRecord

        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)

        if session.accessed:
            response.vary.add("Cookie")

        if not session:
            if session.sid is not None:
                ServerSessionRecord.query.filter_by(id=session.sid).delete()
                db.session.commit()
            if session.modified or session.sid is not None:
                response.delete_cookie(name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly)
            return

        if not session.modified:
            return

        record = db.session.get(ServerSessionRecord, session.sid) if session.sid else None
        if record is not None and session.rotate_requested:
            db.session.delete(record)
            record = None
        set_cookie = False
        if record is None:
            record = ServerSessionRecord(
                id=self._new_sid(),
                created_at=_now(),
                expires_at=_now() + self._lifetime(app),
            )
            db.session.add(record)
            set_cookie = True
        record.data = dict(session)
        record.user_id = session.get("_user_id")
        db.session.commit()
        session.sid = record.id
        session.rotate_requested = False

        if set_cookie:
            signed = self._signer(app).sign(record.id).decode("utf-8")
            response.set_cookie(
                name,
                signed,
                expires=record.expires_at,
                httponly=httponly,
                domain=domain,
                path=path,
                secure=secure,
                samesite=samesite,
            )


def init_app(app: Flask) -> None:
    """Replace the signed-cookie session with the database-backed one."""
    app.session_interface = DatabaseSessionInterface()
