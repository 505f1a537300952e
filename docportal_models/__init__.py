"""SQLAlchemy models exposed as a cohesive package."""
from __future__ import annotations

from docportal_models.audit import AuditLog
from docportal_models.notice import Notice
from docportal_models.server_session import ServerSessionRecord
from docportal_models.upload import Upload
from docportal_models.user import User

__all__ = [
    "AuditLog",
    "Notice",
    "ServerSessionRecord",
    "Upload",
    "User",
]
