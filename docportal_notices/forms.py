"""Forms for maintaining the shared notice."""
from __future__ import annotations

from bs4 import BeautifulSoup, Comment
from flask_wtf import FlaskForm
from wtforms import TextAreaField
from wtforms.validators import Length, Optional

_DROPPED_ELEMENTS = ["script", "style", "iframe", "object", "embed", "template"]


def _text_of(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(_DROPPED_ELEMENTS):
        element.decompose()
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()
    return soup.get_text()


def sanitize_text(value: str | None) -> str:
    """Drop every HTML tag from admin-entered text, keeping its line breaks.

    Extracting text unescapes entities and can join fragments into a new tag,
    so the text is parsed again until it no longer changes.
    """
    if not value:
        return ""
    text = str(value)
    while True:
        cleaned = _text_of(text)
        if cleaned == text:
            return cleaned.strip()
        text = cleaned


class NoticeForm(FlaskForm):
    """Update both notice fields at once."""

    callForms = TextAreaField("Call forms", validators=[Optional(), Length(max=20000)], filters=[sanitize_text])
    requiredDocuments = TextAreaField(
        "Required documents",
        validators=[Optional(), Length(max=20000)],
        filters=[sanitize_text],
    )
