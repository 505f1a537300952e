"""Rows backing the server-side session store."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from docportal_ext.db import db


class ServerSessionRecord(db.Model):
    """Session payload keyed by the opaque id carried in the session cookie."""

    __tablename__ = "server_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(db.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    @classmethod
    def purge_expired(cls, now: datetime | None = None) -> int:
        """Delete every session past its expiry and return how many were removed."""
        cutoff = now or datetime.utcnow()
        removed = cls.query.filter(cls.expires_at <= cutoff).delete(synchronize_session=False)
        db.session.commit()
        return int(removed or 0)

    @classmethod
    def revoke_for_user(cls, user_id: str) -> int:
        """Drop every live session that belongs to ``user_id``."""
        removed = cls.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        db.session.commit()
        return int(removed or 0)
