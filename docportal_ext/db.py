"""SQLAlchemy and Flask-Migrate wiring plus a small transaction helper."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import Flask
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Extensions are created unbound and attached inside the application factory.
db = SQLAlchemy()
migrate = Migrate()


def init_app(app: Flask) -> None:
    """Bind SQLAlchemy and Flask-Migrate to the provided application."""
    db.init_app(app)
    migrate.init_app(app, db)


@contextmanager
def atomic() -> Iterator[None]:
    """Commit everything staged inside the block as one transaction.

    Any exception rolls the session back before propagating, so callers never
    observe a half-applied write.
    """
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
