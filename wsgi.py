"""WSGI callable for gunicorn and similar servers."""
from docportal_ext import create_app

application = create_app("production")
