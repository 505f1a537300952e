"""Shared fixtures for the document portal test-suite."""
from __future__ import annotations

from typing import Any

import pytest

from config import TestConfig
from docportal_auth.services import UserService
from docportal_ext import create_app
from docportal_models.user import ROLE_ADMIN, ROLE_CUSTOMER

CUSTOMER_EMAIL = "alice@example.com"
CUSTOMER_PASSWORD = "alice-secret"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-secret"


def build_config(tmp_path, **overrides: Any) -> type:
    """Return a ``TestConfig`` subclass isolated to ``tmp_path``."""
    attrs = {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "UPLOAD_STORAGE_DIR": str(tmp_path / "uploads"),
    }
    attrs.update(overrides)
    return type("IsolatedTestConfig", (TestConfig,), attrs)


@pytest.fixture
def app(tmp_path):
    application = create_app(build_config(tmp_path), create_db=True)
    yield application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(email: str, password: str = CUSTOMER_PASSWORD, *, name: str = "Test User", role: str = ROLE_CUSTOMER):
        with app.app_context():
            user = UserService.create_user(name, email, password, role=role)
            return user.id

    return _make


@pytest.fixture
def customer(make_user):
    return make_user(CUSTOMER_EMAIL, CUSTOMER_PASSWORD, name="Alice")


@pytest.fixture
def admin(make_user):
    return make_user(ADMIN_EMAIL, ADMIN_PASSWORD, name="Site Owner", role=ROLE_ADMIN)


def login(client, email: str, password: str):
    return client.post("/login", json={"email": email, "password": password})


@pytest.fixture
def customer_client(client, customer):
    response = login(client, CUSTOMER_EMAIL, CUSTOMER_PASSWORD)
    assert response.status_code == 200
    return client


@pytest.fixture
def admin_client(app, admin):
    client = app.test_client()
    response = login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    assert response.status_code == 200
    return client


@pytest.fixture
def outbox(monkeypatch):
    """Capture password-reset emails instead of rendering and sending them."""
    sent: list[dict[str, Any]] = []

    def _capture(**kwargs: Any) -> None:
        sent.append(kwargs)

    monkeypatch.setattr("docportal_auth.routes.send_email", _capture)
    return sent
