"""Blueprint routes for account and password-reset flows."""
from __future__ import annotations

from flask import current_app, session
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from docportal_auth import auth_bp, otp_service
from docportal_auth.backends import get_auth_backend
from docportal_auth.forms import (
    ForgotPasswordForm,
    LoginForm,
    OtpVerificationForm,
    RegisterForm,
    SetPasswordForm,
    first_error,
)
from docportal_auth.otp_service import (
    OtpExpiredError,
    OtpNotFoundError,
    OtpRequestError,
    OtpValidationError,
    PasswordPolicyError,
    ResetNotAuthorizedError,
)
from docportal_auth.services import normalize_email
from docportal_ext.email import EmailDeliveryError, send_email
from docportal_ext.errors import GENERIC_SERVER_MESSAGE, AuthError, ConflictError, ValidationError
from docportal_ext.logging import log_error, log_info, log_warn
from docportal_ext.security import client_rate_key, limiter, rate
from docportal_models.audit import AuditLog
from docportal_models.server_session import ServerSessionRecord
from docportal_models.user import User

PASSWORD_RESET_SESSION_KEY = "reset_email"
PROFILE_SESSION_KEY = "profile"
GENERIC_RESET_MESSAGE = "If the account exists we sent a reset code."


def _ok(message: str, **extra):
    return {"success": True, "message": message, **extra}, 200


def _fail(message: str, code: str, status: int):
    return {"success": False, "message": message, "code": code}, status


def _mask_email(email: str) -> str:
    """Obscure the local part of an email for logs."""
    if "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if len(local) <= 2:
        masked_local = local[0] + "*"
    else:
        masked_local = local[0] + "*" * (len(local) - 2) + local[-1]
    return f"{masked_local}@{domain}"


def _dispatch_otp_email(user: User, *, otp_code: str) -> None:
    app_name = current_app.config.get("APP_NAME", "Document Portal")
    send_email(
        subject=f"{app_name} Password Reset OTP",
        recipients=[user.email],
        html_template="emails/password_reset_otp.html",
        text_template="emails/password_reset_otp.txt",
        context={
            "app_name": app_name,
            "name": user.name,
            "otp": otp_code,
            "expiry_minutes": int(current_app.config.get("OTP_EXPIRY_MINUTES", 10)),
            "support_email": current_app.config.get("EMAIL_FROM"),
        },
    )
    log_info("OTP email sent", component="auth", user_id=user.id)


def _store_password_reset_session(email: str) -> None:
    """Grant the current session the right to set one new password for ``email``."""
    session[PASSWORD_RESET_SESSION_KEY] = email
    session.modified = True


def _load_password_reset_session() -> str | None:
    return session.get(PASSWORD_RESET_SESSION_KEY)


def _clear_password_reset_session() -> None:
    session.pop(PASSWORD_RESET_SESSION_KEY, None)
    session.modified = True


def _attempt_otp_verification(email: str, code: str) -> tuple[str, str, str, int]:
    """Try verifying a reset code and return (status, message, error code, http status)."""
    try:
        otp_service.verify_otp(email, code)
        return "success", "OTP verified successfully", "", 200
    except OtpRequestError:
        return "error", "Invalid request", "INVALID_REQUEST", 400
    except OtpExpiredError:
        return "error", "OTP expired", "EXPIRED", 400
    except OtpValidationError:
        return "error", "Invalid OTP", "INVALID_OTP", 400


@auth_bp.route("/register", methods=["POST"])
@limiter.limit(rate("REGISTER"), key_func=client_rate_key)
def register():
    """Create a customer account (admin for allow-listed identities)."""
    form = RegisterForm()
    if not form.validate_on_submit():
        raise ValidationError(user_msg=first_error(form))
    password = form.password.data or ""
    minimum = otp_service.min_password_length()
    if len(password) < minimum:
        raise ValidationError(user_msg=f"Password must be at least {minimum} characters")
    try:
        user = get_auth_backend().register(
            name=form.name.data,
            email=form.email.data,
            password=password,
            mobile=form.mobile.data,
        )
    except ValueError as exc:
        raise ConflictError(user_msg=str(exc)) from exc
    AuditLog.log(action="register", entity="user", entity_id=user.id, data={"role": user.role})
    return _ok("Registration successful!")


@auth_bp.route("/login", methods=["POST"])
@limiter.limit(rate("LOGIN"), key_func=client_rate_key)
def login():
    """Log an existing user into the system."""
    form = LoginForm()
    if not form.validate_on_submit():
        raise ValidationError(user_msg=first_error(form))
    email = normalize_email(form.email.data)
    user = get_auth_backend().authenticate(email, form.password.data)
    if user is None:
        AuditLog.log(action="login_failed", entity="user", entity_id=None, data={"email": _mask_email(email)})
        raise AuthError(user_msg="Invalid email or password")

    # A fresh id on every login so a pre-login session id cannot be fixated.
    session.clear()
    session.regenerate()
    login_user(user)
    session[PROFILE_SESSION_KEY] = user.profile()
    AuditLog.log(action="login", entity="user", entity_id=user.id)
    return _ok("Login successful", role=user.role, name=user.name)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Terminate the current session."""
    if current_user.is_authenticated:
        AuditLog.log(action="logout", entity="user", entity_id=current_user.get_id())
    logout_user()
    session.clear()
    return _ok("Logged out successfully")


@auth_bp.route("/api/session", methods=["GET"])
def session_state():
    """Report whether the caller is logged in, with the cached profile."""
    if not current_user.is_authenticated:
        return {"loggedIn": False}
    profile = session.get(PROFILE_SESSION_KEY) or current_user.profile()
    return {"loggedIn": True, "user": profile}


@auth_bp.route("/api/csrf-token", methods=["GET"])
def csrf_token():
    """Hand browser scripts the token they must echo in ``X-CSRFToken``."""
    return {"csrfToken": generate_csrf()}


@auth_bp.route("/forgot-password", methods=["POST"])
@limiter.limit(rate("OTP_SEND"), key_func=client_rate_key)
def forgot_password():
    """Issue a password reset code and email it."""
    form = ForgotPasswordForm()
    if not form.validate_on_submit():
        return _fail(first_error(form), "INVALID_INPUT", 400)
    email = normalize_email(form.email.data)
    reveal_unknown = bool(current_app.config.get("PASSWORD_RESET_REVEAL_UNKNOWN_EMAIL", True))
    try:
        otp_code, user = otp_service.issue_otp(email)
    except OtpNotFoundError:
        log_info("Password reset requested for unknown email", component="auth", email=_mask_email(email))
        if reveal_unknown:
            return _fail("Email not found", "NOT_FOUND", 404)
        return _ok(GENERIC_RESET_MESSAGE)

    try:
        _dispatch_otp_email(user, otp_code=otp_code)
    except EmailDeliveryError as exc:
        # The code stays stored and valid; a new request overwrites it.
        log_error("OTP email delivery failed", component="auth", user_id=user.id, error=str(exc))
        return _fail(GENERIC_SERVER_MESSAGE, "SERVER_ERROR", 500)

    if reveal_unknown:
        return _ok("OTP sent to your email")
    return _ok(GENERIC_RESET_MESSAGE)


@auth_bp.route("/verify-otp", methods=["POST"])
@limiter.limit(rate("OTP_VERIFY"), key_func=client_rate_key)
def verify_otp():
    """Check a reset code and, on success, authorize one password change."""
    form = OtpVerificationForm()
    if not form.validate_on_submit():
        return _fail(first_error(form), "INVALID_INPUT", 400)
    email = normalize_email(form.email.data)
    status, message, code, http_status = _attempt_otp_verification(email, form.otp.data)
    if status != "success":
        log_warn("OTP verification failed", component="auth", email=_mask_email(email), reason=code)
        return _fail(message, code, http_status)
    _store_password_reset_session(email)
    return _ok(message)


@auth_bp.route("/set-password", methods=["POST"])
@limiter.limit(rate("PASSWORD_RESET"), key_func=client_rate_key)
def set_password():
    """Commit the new password for the email verified in this session."""
    form = SetPasswordForm()
    reset_email = _load_password_reset_session()
    try:
        user = otp_service.commit_password(reset_email, form.password.data)
    except ResetNotAuthorizedError as exc:
        if reset_email:
            # The reset already completed elsewhere; drop the stale capability.
            _clear_password_reset_session()
        return _fail(str(exc), "UNAUTHORIZED", 403)
    except PasswordPolicyError as exc:
        return _fail(str(exc), "INVALID_INPUT", 400)

    _clear_password_reset_session()
    revoked = ServerSessionRecord.revoke_for_user(user.id)
    log_info("Password reset completed", component="auth", user_id=user.id, revoked_sessions=revoked)
    return _ok("Password reset successfully")
