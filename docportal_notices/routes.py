"""Routes for reading and maintaining the shared notice."""
from __future__ import annotations

from flask import current_app
from flask_login import current_user, login_required

from docportal_ext import auth as auth_ext
from docportal_ext import cache
from docportal_ext.db import db
from docportal_ext.errors import ValidationError
from docportal_models.audit import AuditLog
from docportal_models.notice import Notice
from docportal_notices import notices_bp
from docportal_notices.forms import NoticeForm

CACHE_KEY = "docportal-notice:current"


def _defaults() -> dict[str, str]:
    return {
        "callForms": current_app.config["NOTICE_DEFAULT_CALL_FORMS"],
        "requiredDocuments": current_app.config["NOTICE_DEFAULT_REQUIRED_DOCUMENTS"],
    }


def _current_payload() -> dict[str, str]:
    cached = cache.get(CACHE_KEY)
    if cached is not None:
        return cached
    notice = Notice.current()
    if notice is None:
        payload = _defaults()
    else:
        payload = {"callForms": notice.call_forms, "requiredDocuments": notice.required_documents}
    cache.set(CACHE_KEY, payload, timeout=int(current_app.config.get("NOTICE_CACHE_TTL_SECS", 300)))
    return payload


@notices_bp.route("/get-info", methods=["GET"])
def get_info():
    """Public read of the notice, falling back to placeholder text."""
    return _current_payload()


@notices_bp.route("/update-info", methods=["POST"])
@login_required
@auth_ext.roles_required("admin")
def update_info():
    """Replace the notice with sanitized text."""
    form = NoticeForm()
    if not form.validate_on_submit():
        raise ValidationError(user_msg="Invalid notice content")
    Notice.query.delete()
    notice = Notice(
        call_forms=form.callForms.data or "",
        required_documents=form.requiredDocuments.data or "",
        updated_by=current_user.email,
    )
    db.session.add(notice)
    db.session.commit()
    cache.delete(CACHE_KEY)
    AuditLog.log(action="notice_updated", entity="notice", entity_id=notice.id)
    return {"success": True, "message": "Information updated successfully"}


@notices_bp.route("/clear-info", methods=["POST"])
@login_required
@auth_ext.roles_required("admin")
def clear_info():
    """Remove the notice so readers see the placeholder text again."""
    removed = Notice.query.delete()
    db.session.commit()
    cache.delete(CACHE_KEY)
    AuditLog.log(action="notice_cleared", entity="notice", entity_id=None, data={"rows": removed})
    return {"success": True, "message": "Information cleared successfully"}
