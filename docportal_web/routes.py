"""Routes serving the portal's HTML pages from ``FRONTEND_DIR``."""
from __future__ import annotations

import os

from flask import current_app, send_from_directory
from flask_login import login_required

from docportal_ext import auth as auth_ext
from docportal_web import web_bp


def _page(name: str):
    return send_from_directory(current_app.config["FRONTEND_DIR"], name, max_age=0)


@web_bp.route("/")
@web_bp.route("/index.html")
def index():
    return _page("index.html")


@web_bp.route("/login.html")
def login_page():
    return _page("login.html")


@web_bp.route("/register.html")
@web_bp.route("/regester.html")
def register_page():
    """Registration page; the misspelled path is kept for old bookmarks."""
    return _page("register.html")


@web_bp.route("/forgot-password.html")
def forgot_password_page():
    return _page("forgot-password.html")


@web_bp.route("/dashboard.html")
@login_required
def dashboard_page():
    return _page("dashboard.html")


@web_bp.route("/upload.html")
@login_required
def upload_page():
    return _page("upload.html")


@web_bp.route("/info.html")
@login_required
def info_page():
    return _page("info.html")


@web_bp.route("/admin-info.html")
@login_required
@auth_ext.roles_required("admin")
def admin_info_page():
    return _page("admin-info.html")


@web_bp.route("/static/<path:filename>")
def static_asset(filename: str):
    """Scripts and stylesheets shared by every page."""
    return send_from_directory(os.path.join(current_app.config["FRONTEND_DIR"], "static"), filename)
