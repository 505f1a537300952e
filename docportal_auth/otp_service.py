"""Issue, verify and redeem password-reset one-time passcodes.

A user carries at most one outstanding code: the hash and its expiry are
stored on the ``users`` row and always written or cleared together. Issuing a
new code overwrites the previous one. Verification never consumes the code;
only a successful password commit clears it.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from flask import current_app

from docportal_auth.backends import get_auth_backend
from docportal_auth.services import UserService, normalize_email
from docportal_ext.db import atomic, db
from docportal_models.audit import AuditLog
from docportal_models.user import User


class OtpError(Exception):
    """Base class for password-reset failures."""


class OtpNotFoundError(OtpError):
    """Raised when a code is requested for an unknown email."""


class OtpRequestError(OtpError):
    """Raised when verification targets an unknown email."""


class OtpExpiredError(OtpError):
    """Raised when no code is outstanding or the outstanding code has expired."""


class OtpValidationError(OtpError):
    """Raised when the supplied code does not match the stored hash."""


class ResetNotAuthorizedError(OtpError):
    """Raised when a password commit has no verified reset behind it."""


class PasswordPolicyError(OtpError):
    """Raised when a new password fails the minimum-length policy."""


_HASH_PREFIX = "pbkdf2_sha256"
_HASH_ITERATIONS = 200_000
_CODE_FLOOR = 100_000
_CODE_SPAN = 900_000


def _hash_code(code: str) -> str:
    """Hash an OTP value using PBKDF2-HMAC-SHA256."""
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", code.encode("utf-8"), salt, _HASH_ITERATIONS)
    return f"{_HASH_PREFIX}${_HASH_ITERATIONS}${salt.hex()}${digest.hex()}"


def _verify_code(code: str, stored: str) -> bool:
    """Compare an OTP against its stored hash in constant time."""
    try:
        prefix, iter_str, salt_hex, digest_hex = stored.split("$")
        if prefix != _HASH_PREFIX:
            return False
        iterations = int(iter_str)
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
    except (ValueError, TypeError):
        return False
    computed = hashlib.pbkdf2_hmac("sha256", code.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(expected, computed)


def _now() -> datetime:
    return datetime.utcnow()


def _issue_code() -> str:
    # Uniform over 100000..999999 so every code has exactly six digits.
    return str(_CODE_FLOOR + secrets.randbelow(_CODE_SPAN))


def _expiry_timestamp(issued_at: datetime) -> datetime:
    minutes = int(current_app.config.get("OTP_EXPIRY_MINUTES", 10))
    return issued_at + timedelta(minutes=max(minutes, 1))


def min_password_length() -> int:
    return max(int(current_app.config.get("PASSWORD_MIN_LENGTH", 6)), 1)


def issue_otp(email: str) -> tuple[str, User]:
    """Create (or replace) the reset code for ``email`` and return the raw code.

    The hash is committed before the caller sends the email, so a failed
    delivery leaves a valid code that a fresh request simply overwrites.
    """
    user = UserService.get_by_email(email)
    if user is None:
        raise OtpNotFoundError("Email not found")
    code = _issue_code()
    user.set_reset_otp(_hash_code(code), _expiry_timestamp(_now()))
    db.session.add(user)
    db.session.commit()
    AuditLog.log(
        action="password_reset_requested",
        entity="user",
        entity_id=user.id,
        data={"expires_at": user.otp_expires_at},
    )
    return code, user


def verify_otp(email: str, candidate: str) -> User:
    """Validate ``candidate`` against the outstanding code for ``email``.

    The stored hash is re-read on every call so a concurrent re-issue always
    wins. The code itself stays valid after a successful match.
    """
    normalized = normalize_email(email)
    user = UserService.get_by_email(normalized)
    if user is None:
        raise OtpRequestError("Invalid request")
    db.session.refresh(user)
    if user.reset_otp_hash is None or user.otp_expires_at is None or _now() > user.otp_expires_at:
        raise OtpExpiredError("OTP expired")
    if not _verify_code(("" if candidate is None else str(candidate)).strip(), user.reset_otp_hash):
        AuditLog.log(action="password_reset_code_rejected", entity="user", entity_id=user.id, data={})
        raise OtpValidationError("Invalid OTP")
    AuditLog.log(action="password_reset_code_verified", entity="user", entity_id=user.id, data={})
    return user


def commit_password(reset_email: str | None, new_password: str | None) -> User:
    """Store ``new_password`` for the verified ``reset_email`` and close the reset window.

    The password hash and the cleared code pair land in a single commit, so an
    interrupted request can never leave the code consumed with the old
    password still active, or the reverse.
    """
    if not reset_email:
        raise ResetNotAuthorizedError("OTP verification required")
    password = "" if new_password is None else str(new_password)
    minimum = min_password_length()
    if len(password) < minimum:
        raise PasswordPolicyError(f"Password must be at least {minimum} characters")
    user = UserService.get_by_email(reset_email)
    if user is None:
        raise ResetNotAuthorizedError("OTP verification required")
    db.session.refresh(user)
    if not user.has_pending_reset:
        raise ResetNotAuthorizedError("OTP verification required")

    with atomic():
        get_auth_backend().set_password(user, password)
        user.clear_reset_otp()
        db.session.add(user)
    AuditLog.log(action="password_reset_completed", entity="user", entity_id=user.id, data={})
    return user


__all__ = [
    "OtpError",
    "OtpExpiredError",
    "OtpNotFoundError",
    "OtpRequestError",
    "OtpValidationError",
    "PasswordPolicyError",
    "ResetNotAuthorizedError",
    "commit_password",
    "issue_otp",
    "verify_otp",
]
