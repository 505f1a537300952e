"""Domain services that encapsulate account persistence logic."""
from __future__ import annotations

from typing import Optional

from flask import current_app

from docportal_ext.db import db
from docportal_models.user import ROLE_ADMIN, ROLE_CUSTOMER, User


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class UserService:
    """CRUD helpers focused on the user lifecycle."""

    @staticmethod
    def get_by_email(email: str | None) -> Optional[User]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return User.query.filter_by(email=normalized).first()

    @staticmethod
    def get_by_id(user_id: str) -> Optional[User]:
        return db.session.get(User, user_id)

    @staticmethod
    def resolve_role(name: str, email: str) -> str:
        """Pick the role granted at registration time.

        Admin is granted only to allow-listed addresses or to display names
        containing the configured keyword; everyone else is a customer.
        """
        admin_emails = {normalize_email(item) for item in current_app.config.get("ADMIN_EMAILS", [])}
        if normalize_email(email) in admin_emails:
            return ROLE_ADMIN
        keyword = (current_app.config.get("ADMIN_NAME_KEYWORD") or "").strip().lower()
        if keyword and keyword in (name or "").lower():
            return ROLE_ADMIN
        return ROLE_CUSTOMER

    @staticmethod
    def create_user(
        name: str,
        email: str,
        password: str | None = None,
        *,
        mobile: str | None = None,
        user_id: str | None = None,
        role: str | None = None,
    ) -> User:
        """Persist a new account; ``password`` is omitted for externally managed credentials."""
        if UserService.get_by_email(email):
            raise ValueError("Email already registered")
        user = User(
            name=name.strip(),
            email=normalize_email(email),
            mobile=(mobile or "").strip() or None,
            role=role or UserService.resolve_role(name, email),
        )
        if user_id:
            user.id = user_id
        if password is not None:
            user.set_password(password)
        db.session.add(user)
        db.session.commit()
        current_app.logger.info("New user created", extra={"component": "auth", "user_id": user.id, "role": user.role})
        return user

    @staticmethod
    def promote(user: User, role: str = ROLE_ADMIN) -> User:
        user.role = role
        db.session.add(user)
        db.session.commit()
        return user
