"""Shared "call forms / required documents" notice maintained by admins."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docportal_ext.db import db


class Notice(db.Model):
    __tablename__ = "notices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    call_forms: Mapped[str] = mapped_column(Text, nullable=False, default="")
    required_documents: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    @classmethod
    def current(cls) -> "Notice | None":
        return cls.query.order_by(cls.created_at.desc(), cls.id.desc()).first()
