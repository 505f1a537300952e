"""Blueprint for the shared "call forms / required documents" notice."""
from __future__ import annotations

from flask import Blueprint

notices_bp = Blueprint("docportal_notices", __name__)

from docportal_notices import routes  # noqa: E402,F401
