"""Append-only trail of account and content events."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from flask import g, has_request_context, request
from flask_login import current_user
from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from docportal_ext.db import db


def _plain(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_plain(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _request_metadata() -> Dict[str, Any]:
    if not has_request_context():
        return {}
    metadata: Dict[str, Any] = {
        "request_id": g.get("request_id"),
        "actor_ip": request.remote_addr,
        "route": f"{request.method} {request.path}"[:255],
    }
    if getattr(current_user, "is_authenticated", False):
        metadata["user_id"] = current_user.get_id()
    return metadata


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    data: Mapped[Optional[dict]] = mapped_column(db.JSON)
    request_id: Mapped[Optional[str]] = mapped_column(String(64))
    actor_ip: Mapped[Optional[str]] = mapped_column(String(64))
    route: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_logs_action_created", "action", "created_at"),)

    @classmethod
    def log(
        cls,
        action: str,
        entity: str,
        entity_id: int | str | None,
        data: dict[str, Any] | None = None,
    ) -> "AuditLog":
        """Record ``action`` on ``entity`` and commit it immediately.

        Callers write the entry after their own transaction has committed.
        """
        entry = cls(
            action=action,
            entity=entity,
            entity_id=None if entity_id is None else str(entity_id),
            data=None if data is None else _plain(data),
            **_request_metadata(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
