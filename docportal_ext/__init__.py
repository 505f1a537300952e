"""Application factory for the document portal."""
from __future__ import annotations

import os
from typing import Dict, Type

from flask import Flask
from flask_caching import Cache
from werkzeug.utils import import_string

from config import BaseConfig, DevConfig, ProdConfig, TestConfig
from docportal_ext import auth as auth_ext
from docportal_ext import db as db_ext
from docportal_ext import errors as errors_ext
from docportal_ext import logging as logging_ext
from docportal_ext import security as security_ext
from docportal_ext import sessions as sessions_ext

cache = Cache()

CONFIG_MAP: Dict[str, Type[BaseConfig]] = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
_ALIASES = {"dev": "development", "prod": "production", "test": "testing"}


def resolve_config(config_object: str | Type[BaseConfig] | None) -> Type[BaseConfig]:
    """Turn an environment name, dotted path or class into a config class.

    ``None`` falls back to ``FLASK_ENV`` and then to development settings.
    """
    if config_object is None:
        name = os.getenv("FLASK_ENV", "development").lower()
        return CONFIG_MAP.get(_ALIASES.get(name, name), DevConfig)
    if not isinstance(config_object, str):
        return config_object
    name = config_object.lower()
    name = _ALIASES.get(name, name)
    if name in CONFIG_MAP:
        return CONFIG_MAP[name]
    if "." not in config_object:
        raise KeyError(f"Unknown config identifier: {config_object}")
    return import_string(config_object)


def create_app(config_object: str | Type[BaseConfig] | None = None, *, create_db: bool | None = None) -> Flask:
    """Build the portal application; used by ``app.py``, ``wsgi.py`` and tests."""
    app = Flask(__name__, template_folder=None, static_folder=None)
    app.config.from_object(resolve_config(config_object))

    # Logging and error handlers go first so extension setup is covered.
    logging_ext.configure_logging(app)
    errors_ext.init_app(app)
    for extension in (db_ext, sessions_ext, security_ext, auth_ext):
        extension.init_app(app)
    cache.init_app(app)

    from docportal_auth import auth_bp
    from docportal_cli.manage import manage_cli
    from docportal_notices import notices_bp
    from docportal_uploads import uploads_bp
    from docportal_web import middleware, web_bp

    for blueprint in (web_bp, auth_bp, uploads_bp, notices_bp):
        app.register_blueprint(blueprint)
    app.cli.add_command(manage_cli, "manage")
    middleware.init_app(app)

    if create_db is None:
        create_db = bool(app.config.get("CREATE_DB_ON_START", True))
    if create_db:
        import docportal_models  # noqa: F401  registers every table

        with app.app_context():
            db_ext.db.create_all()
    return app
