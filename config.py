"""Environment-driven settings for the portal, one class per deployment."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable

from dotenv import load_dotenv

# A local .env only fills in variables the environment does not already set.
load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)


def _bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y"}


def _split(value: str | None, default: Iterable[str]) -> list[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


class BaseConfig:
    APP_NAME = "Document Portal"

    SECRET_KEY = os.getenv("SECRET_KEY", "please-change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///docportal.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    CREATE_DB_ON_START = _bool(os.getenv("CREATE_DB_ON_START"), default=True)

    # Sessions live server-side; the cookie only carries a signed session id.
    SESSION_COOKIE_NAME = "docportal_session"
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = _bool(os.getenv("SECURE_COOKIES"), default=False)
    SESSION_MAX_AGE_HOURS = int(os.getenv("SESSION_MAX_AGE_HOURS", "24"))
    PERMANENT_SESSION_LIFETIME = timedelta(hours=SESSION_MAX_AGE_HOURS)
    SESSION_PROTECTION = "strong"

    WTF_CSRF_ENABLED = _bool(os.getenv("WTF_CSRF_ENABLED"), default=True)
    WTF_CSRF_TIME_LIMIT = 3600

    CACHE_TYPE = "SimpleCache"
    CACHE_DEFAULT_TIMEOUT = 300

    RATELIMIT_ENABLED = _bool(os.getenv("RATELIMIT_ENABLED"), default=True)
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "200 per minute")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    SECURITY_HEADERS = _bool(os.getenv("SECURITY_HEADERS"), default=True)
    CONTENT_SECURITY_POLICY: Dict[str, str] = {
        "default-src": "'self'",
        "style-src": "'self' 'unsafe-inline' https://cdn.jsdelivr.net https://fonts.googleapis.com",
        "script-src": "'self' https://cdn.jsdelivr.net",
        "font-src": "'self' https://cdn.jsdelivr.net https://fonts.gstatic.com data:",
        "img-src": "'self' data:",
        "connect-src": "'self'",
        "object-src": "'none'",
        "frame-ancestors": "'self'",
    }

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()
    REQUEST_BODY_LOG_MAX = int(os.getenv("REQUEST_BODY_LOG_MAX", "2048"))
    REDACT_KEYS = _split(
        os.getenv("REDACT_KEYS"),
        {"password", "otp", "SUPABASE_SERVICE_ROLE_KEY", "Authorization", "csrf_token"},
    )
    PREFERRED_URL_SCHEME = "https" if SESSION_COOKIE_SECURE else "http"

    # Flask-Limiter limits applied per route on top of the application ceiling.
    RATES = {
        "LOGIN": os.getenv("RATE_LIMIT_LOGIN", "10 per minute"),
        "REGISTER": os.getenv("RATE_LIMIT_REGISTER", "5 per minute"),
        "OTP_SEND": os.getenv("RATE_LIMIT_OTP_SEND", "5 per minute"),
        "OTP_VERIFY": os.getenv("RATE_LIMIT_OTP_VERIFY", "20 per 10 minutes"),
        "PASSWORD_RESET": os.getenv("RATE_LIMIT_PASSWORD_RESET", "10 per minute"),
        "UPLOAD": os.getenv("RATE_LIMIT_UPLOAD", "30 per minute"),
    }

    GLOBAL_RATE_LIMIT = os.getenv("GLOBAL_RATE_LIMIT", "1000 per 15 minutes")
    RETRY_AFTER_SECS = int(os.getenv("RETRY_AFTER_SECS", "60"))

    # "local" keeps credentials in the application database, "supabase"
    # delegates them to a Supabase GoTrue instance.
    AUTH_BACKEND = os.getenv("AUTH_BACKEND", "local").lower()
    SUPABASE_URL = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    SUPABASE_TIMEOUT_SECS = int(os.getenv("SUPABASE_TIMEOUT_SECS", "15"))

    ADMIN_EMAILS = _split(os.getenv("ADMIN_EMAILS"), ["admin@example.com", "admin@janani.com"])
    ADMIN_NAME_KEYWORD = os.getenv("ADMIN_NAME_KEYWORD", "admin")
    PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

    OTP_EXPIRY_MINUTES = int(os.getenv("OTP_EXPIRY_MINUTES", "10"))
    # Preserves the historical "Email not found" answer; disable to return a
    # generic acknowledgement for unknown addresses.
    PASSWORD_RESET_REVEAL_UNKNOWN_EMAIL = _bool(
        os.getenv("PASSWORD_RESET_REVEAL_UNKNOWN_EMAIL"), default=True
    )

    UPLOAD_MAX_FILES = int(os.getenv("UPLOAD_MAX_FILES", "10"))
    UPLOAD_MAX_FILE_MB = int(os.getenv("UPLOAD_MAX_FILE_MB", "5"))
    MAX_CONTENT_LENGTH = (UPLOAD_MAX_FILES * UPLOAD_MAX_FILE_MB + 1) * 1024 * 1024
    UPLOAD_ALLOWED_MIME_TYPES = {
        "image/jpeg",
        "image/png",
        "image/gif",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
    UPLOAD_STORAGE_BACKEND = os.getenv("UPLOAD_STORAGE_BACKEND", "local").lower()
    UPLOAD_STORAGE_DIR = os.getenv("UPLOAD_STORAGE_DIR", "uploads")
    S3_BUCKET = os.getenv("S3_BUCKET", "")
    S3_REGION = os.getenv("S3_REGION", "")
    AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY", "")

    FRONTEND_DIR = os.getenv("FRONTEND_DIR", str(Path(__file__).resolve().parent / "public"))

    NOTICE_DEFAULT_CALL_FORMS = "No information added yet."
    NOTICE_DEFAULT_REQUIRED_DOCUMENTS = "No documents listed yet."
    NOTICE_CACHE_TTL_SECS = int(os.getenv("NOTICE_CACHE_TTL_SECS", "300"))

    # Rendered messages are only logged while this is set.
    MAIL_SUPPRESS_SEND = _bool(os.getenv("MAIL_SUPPRESS_SEND"), default=False)
    SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASS = os.getenv("SMTP_PASS", "")
    SMTP_USE_TLS = _bool(os.getenv("SMTP_USE_TLS"), default=True)
    SMTP_USE_SSL = _bool(os.getenv("SMTP_USE_SSL"), default=False)
    EMAIL_FROM = os.getenv("EMAIL_FROM", SMTP_USER)


class DevConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "plain").lower()


class ProdConfig(BaseConfig):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    PREFERRED_URL_SCHEME = "https"
    RATELIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "60 per minute")
    # Shared by every worker on the host.
    CACHE_TYPE = os.getenv("CACHE_TYPE", "FileSystemCache")
    CACHE_DIR = os.getenv("CACHE_DIR", str(Path(__file__).resolve().parent / "instance" / "cache"))


class TestConfig(BaseConfig):
    """In-memory database, no CSRF or rate limits, mail suppressed."""

    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    EMAIL_FROM = "no-reply@docportal.test"
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "plain"
    AUTH_BACKEND = "local"
    UPLOAD_STORAGE_BACKEND = "local"
    PASSWORD_RESET_REVEAL_UNKNOWN_EMAIL = True
