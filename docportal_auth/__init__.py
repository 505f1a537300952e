"""Authentication blueprint registration."""
from __future__ import annotations

from flask import Blueprint

auth_bp = Blueprint(
    "docportal_auth",
    __name__,
    template_folder="templates",
)

from docportal_auth import routes  # noqa: E402,F401
