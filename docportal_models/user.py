"""Portal accounts and password hashing."""
from __future__ import annotations

import uuid
from datetime import datetime

from flask import current_app
from flask_login import UserMixin
from passlib.context import CryptContext
from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from docportal_ext.db import db

ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"

# pbkdf2_sha256 is used for new hashes. bcrypt stays listed so accounts carried
# over from the previous deployment keep working; they are upgraded to the
# default scheme on their next successful login.
_password_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    default="pbkdf2_sha256",
    deprecated="auto",
)


def _new_user_id() -> str:
    return uuid.uuid4().hex


def is_password_hash(value: str | None) -> bool:
    """Return True when ``value`` is a hash understood by the password context."""
    if not value:
        return False
    return _password_context.identify(value) is not None


class User(UserMixin, db.Model):
    """Portal account with its role and password-reset state."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_user_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    mobile: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Null for accounts whose credentials live with an external auth provider.
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=ROLE_CUSTOMER)
    # Set and cleared together.
    reset_otp_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def set_password(self, password: str) -> None:
        """Hash and store a new password using the default scheme."""
        self.password_hash = _password_context.hash(password)

    def verify_password(self, password: str) -> bool:
        """Check ``password`` against the stored hash, upgrading legacy hashes.

        The upgrade is only staged on the session; the caller's commit persists it.
        """
        stored = self.password_hash or ""
        if not is_password_hash(stored):
            return False
        valid, new_hash = _password_context.verify_and_update(password, stored)
        if valid and new_hash:
            current_app.logger.info("Upgrading legacy password hash", extra={"component": "auth", "user_id": self.id})
            self.password_hash = new_hash
        return bool(valid)

    def set_reset_otp(self, otp_hash: str, expires_at: datetime) -> None:
        self.reset_otp_hash = otp_hash
        self.otp_expires_at = expires_at

    def clear_reset_otp(self) -> None:
        self.reset_otp_hash = None
        self.otp_expires_at = None

    @property
    def has_pending_reset(self) -> bool:
        return self.reset_otp_hash is not None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def profile(self) -> dict[str, str]:
        """Denormalized identity cached in the session at login."""
        return {"id": self.id, "name": self.name, "role": self.role, "email": self.email}

    def get_id(self) -> str:  # type: ignore[override]
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
