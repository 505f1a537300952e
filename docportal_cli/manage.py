"""Custom management commands exposed through Flask's CLI."""
from __future__ import annotations

from pathlib import Path

import click
from flask import current_app
from flask.cli import with_appcontext
from flask_migrate import upgrade

from docportal_auth.services import UserService
from docportal_ext.db import db
from docportal_models.server_session import ServerSessionRecord
from docportal_models.user import ROLE_ADMIN, User, is_password_hash


@click.group(help="Document portal management commands")
def manage_cli() -> None:
    """Root Click group registered under `flask manage`."""


@manage_cli.command("init-db", help="Create or migrate the database schema")
@with_appcontext
def init_db() -> None:
    """Apply migrations when a migrations folder exists, otherwise create tables."""
    migrations_dir = Path(current_app.root_path).parent / "migrations"
    if migrations_dir.is_dir():
        upgrade(directory=str(migrations_dir))
        click.echo("Database initialized via migrations.")
        return
    import docportal_models  # noqa: F401

    db.create_all()
    click.echo("Database tables created.")


@manage_cli.command("create-admin", help="Create an administrative user or promote an existing one")
@click.option("--email", prompt=True, help="Admin email address")
@click.option("--name", prompt="Full name", help="Admin full name")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Admin password")
@with_appcontext
def create_admin(email: str, name: str, password: str) -> None:
    """Create an admin account, or grant the admin role to an existing one."""
    existing = UserService.get_by_email(email)
    if existing is not None:
        UserService.promote(existing, ROLE_ADMIN)
        click.secho(f"Existing user {existing.email} promoted to admin.", fg="yellow")
        return
    min_length = int(current_app.config.get("PASSWORD_MIN_LENGTH", 6))
    if len(password) < min_length:
        click.secho(f"Password must be at least {min_length} characters", fg="red")
        return
    user = UserService.create_user(name, email, password, role=ROLE_ADMIN)
    click.secho(f"Admin user created with id {user.id}", fg="green")


@manage_cli.command("list-users", help="List registered users")
@with_appcontext
def list_users() -> None:
    """Display user accounts and their roles."""
    users = User.query.order_by(User.created_at.desc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        click.echo(f"{user.id}: {user.email} - {user.role}")


@manage_cli.command("hash-passwords", help="Hash passwords that are still stored in plain text")
@with_appcontext
def hash_passwords() -> None:
    """Replace every unhashed password value with a hash of itself."""
    updated = 0
    skipped = 0
    for user in User.query.filter(User.password_hash.isnot(None)).all():
        if is_password_hash(user.password_hash):
            skipped += 1
            continue
        user.set_password(user.password_hash)
        updated += 1
    db.session.commit()
    click.secho(f"Hashed {updated} passwords, {skipped} already hashed.", fg="green")


@manage_cli.command("purge-sessions", help="Delete expired server-side sessions")
@with_appcontext
def purge_sessions() -> None:
    removed = ServerSessionRecord.purge_expired()
    click.echo(f"Removed {removed} expired sessions.")
