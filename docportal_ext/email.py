"""Outgoing mail for reset codes and other account notices."""
from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Iterable, Mapping

from flask import current_app, render_template


class EmailDeliveryError(RuntimeError):
    """The message could not be built or handed to the mail server."""


def _compose(subject: str, sender: str, recipients: list[str], text: str, html: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = ", ".join(recipients)
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    return message


def _deliver(message: EmailMessage) -> None:
    config = current_app.config
    host = config.get("SMTP_HOST")
    port = int(config.get("SMTP_PORT", 587))
    if config.get("SMTP_USE_SSL"):
        server = smtplib.SMTP_SSL(host, port, timeout=15)
    else:
        server = smtplib.SMTP(host, port, timeout=15)
        if config.get("SMTP_USE_TLS", True):
            server.starttls()
    try:
        if config.get("SMTP_USER") and config.get("SMTP_PASS"):
            server.login(config["SMTP_USER"], config["SMTP_PASS"])
        server.send_message(message)
    finally:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            current_app.logger.debug("Closing the SMTP connection failed", exc_info=True)


def send_email(
    *,
    subject: str,
    recipients: Iterable[str],
    html_template: str,
    text_template: str,
    context: Mapping[str, object] | None = None,
) -> None:
    """Render both bodies and send them as one multipart message.

    With ``MAIL_SUPPRESS_SEND`` set the message is rendered but only logged.
    """
    sender = current_app.config.get("EMAIL_FROM")
    if not sender:
        raise EmailDeliveryError("EMAIL_FROM is not configured")
    to = list(recipients)
    context = dict(context or {})
    message = _compose(
        subject,
        sender,
        to,
        render_template(text_template, **context),
        render_template(html_template, **context),
    )
    log_extra = {"component": "email", "subject": subject, "to": to}

    if current_app.config.get("MAIL_SUPPRESS_SEND"):
        current_app.logger.info("Email suppressed", extra=log_extra)
        return
    try:
        _deliver(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc
    current_app.logger.info("Email sent", extra=log_extra)
