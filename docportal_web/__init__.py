"""Blueprint serving the portal's static HTML pages."""
from __future__ import annotations

from flask import Blueprint

web_bp = Blueprint("docportal_web", __name__)

from docportal_web import routes  # noqa: E402,F401
