"""Forms for account and password-reset workflows.

Flask-WTF reads JSON bodies as form data, so the same classes validate both
browser form posts and ``fetch`` calls sending JSON.
"""
from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import EmailField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional


def as_text(value):
    """JSON bodies may carry numbers; every field here works on strings."""
    return None if value is None else str(value)


TEXT = [as_text]


class LoginForm(FlaskForm):
    """Authenticate an existing user."""

    email = StringField("Email", validators=[DataRequired(message="Email and password required")], filters=TEXT)
    password = PasswordField("Password", validators=[DataRequired(message="Email and password required")], filters=TEXT)


class RegisterForm(FlaskForm):
    """Create a new customer account."""

    name = StringField("Name", validators=[DataRequired(message="Name, email and password required"), Length(max=255)], filters=TEXT)
    email = EmailField(
        "Email",
        validators=[
            DataRequired(message="Name, email and password required"),
            Email(message="Valid email required", check_deliverability=False),
        ],
        filters=TEXT,
    )
    password = PasswordField("Password", validators=[DataRequired(message="Name, email and password required")], filters=TEXT)
    mobile = StringField("Mobile", validators=[Optional(), Length(max=32)], filters=TEXT)


class ForgotPasswordForm(FlaskForm):
    """Request a password reset code."""

    email = StringField("Email", validators=[DataRequired(message="Email required"), Length(max=255)], filters=TEXT)


class OtpVerificationForm(FlaskForm):
    """Verify a password reset code."""

    email = StringField("Email", validators=[DataRequired(message="Email & OTP required")], filters=TEXT)
    otp = StringField("Verification code", validators=[DataRequired(message="Email & OTP required"), Length(max=16)], filters=TEXT)


class SetPasswordForm(FlaskForm):
    """Choose a new password after the reset code was verified.

    Length is enforced by the password committer so the policy lives in one place.
    """

    password = PasswordField("New password", validators=[Optional()], filters=TEXT)


def first_error(form: FlaskForm, default: str = "Invalid input") -> str:
    """Return the first validation message of ``form``."""
    for errors in form.errors.values():
        if errors:
            return str(errors[0])
    return default
