"""Document upload blueprint registration."""
from __future__ import annotations

from flask import Blueprint

uploads_bp = Blueprint("docportal_uploads", __name__)

from docportal_uploads import routes  # noqa: E402,F401
