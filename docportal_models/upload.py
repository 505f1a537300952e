"""Uploaded document metadata."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docportal_ext.db import db


class Upload(db.Model):
    """A single stored file and the account that uploaded it.

    ``filename`` is the storage key and is intentionally not unique: repeated
    submissions can produce duplicate rows, which the admin clean-up removes.
    """

    __tablename__ = "uploads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    extra_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_uploads_filename", "filename"),
        Index("ix_uploads_user_id", "user_id"),
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "user": self.user_name,
            "user_email": self.user_email,
            "filename": self.filename,
            "original_name": self.original_name,
            "extra_data": self.extra_data,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Upload {self.filename}>"
