"""Routes for uploading, listing, downloading and deleting documents."""
from __future__ import annotations

import io

import filetype
from flask import current_app, request, send_file
from flask_login import current_user, login_required
from sqlalchemy import func

from docportal_ext import auth as auth_ext
from docportal_ext.db import db
from docportal_ext.errors import AppError, ForbiddenError, NotFoundError, ValidationError
from docportal_ext.logging import log_info, log_warn
from docportal_ext.security import client_rate_key, limiter, rate
from docportal_models.audit import AuditLog
from docportal_models.upload import Upload
from docportal_uploads import uploads_bp
from docportal_uploads.storage import InvalidKeyError, StorageError, build_key, get_storage, is_safe_key


def _detect_mime(data: bytes, fallback: str | None = None) -> str:
    kind = filetype.guess(data)
    if kind is not None:
        return kind.mime
    return fallback or "application/octet-stream"


def _enforce_mime(mime: str) -> None:
    if mime not in current_app.config["UPLOAD_ALLOWED_MIME_TYPES"]:
        raise ValueError("Unsupported file type")


def _validated_filename(filename: str) -> str:
    if not is_safe_key(filename):
        log_warn("Rejected unsafe file name", component="uploads", requested=filename)
        raise ValidationError(user_msg="Invalid file name")
    return filename


def _discard_objects(storage, keys: list[str]) -> None:
    """Best-effort removal of objects written by a failed upload request."""
    for key in keys:
        try:
            storage.delete(key)
        except (StorageError, OSError) as exc:
            log_warn("Orphaned upload could not be removed", component="uploads", key=key, error=str(exc))


def _authorized_upload(filename: str) -> Upload:
    """Return the upload row for ``filename`` when the caller may access it."""
    upload = (
        Upload.query.filter_by(filename=_validated_filename(filename))
        .order_by(Upload.id.asc())
        .first()
    )
    if upload is None:
        raise NotFoundError(user_msg="File not found")
    if not current_user.is_admin and upload.user_id != current_user.id:
        raise ForbiddenError(user_msg="Access denied")
    return upload


def _send_stored(upload: Upload, *, as_attachment: bool):
    try:
        data = get_storage().read(upload.filename)
    except (FileNotFoundError, InvalidKeyError) as exc:
        raise NotFoundError(user_msg="File not found") from exc
    except StorageError as exc:
        raise AppError(user_msg="Server error", code="STORAGE", http_status=500, detail=str(exc)) from exc
    return send_file(
        io.BytesIO(data),
        mimetype=upload.mime_type,
        as_attachment=as_attachment,
        download_name=upload.original_name if as_attachment else upload.filename,
    )


@uploads_bp.route("/upload", methods=["POST"])
@login_required
@limiter.limit(rate("UPLOAD"), key_func=client_rate_key)
def upload_files():
    """Store up to ``UPLOAD_MAX_FILES`` documents for the current user."""
    files = [item for item in request.files.getlist("files") if item and item.filename]
    if not files:
        raise ValidationError(user_msg="No files uploaded")
    max_files = int(current_app.config.get("UPLOAD_MAX_FILES", 10))
    if len(files) > max_files:
        raise ValidationError(user_msg=f"At most {max_files} files per upload")

    max_bytes = int(current_app.config.get("UPLOAD_MAX_FILE_MB", 5)) * 1024 * 1024
    extra_data = (request.form.get("extraData") or "").strip()
    prepared: list[tuple[str, bytes, str]] = []
    for item in files:
        data = item.read()
        if not data:
            raise ValidationError(user_msg=f"{item.filename} is empty")
        if len(data) > max_bytes:
            raise AppError(user_msg=f"{item.filename} exceeds the maximum file size", code="TOO_LARGE", http_status=413)
        mime = _detect_mime(data, item.mimetype)
        try:
            _enforce_mime(mime)
        except ValueError as exc:
            AuditLog.log(action="upload_rejected_mime", entity="upload", entity_id=None, data={"name": item.filename, "mime": mime})
            raise ValidationError(user_msg=str(exc)) from exc
        prepared.append((item.filename, data, mime))

    storage = get_storage()
    created: list[Upload] = []
    written: list[str] = []
    try:
        for original_name, data, mime in prepared:
            stored = storage.save(key=build_key(original_name), data=data, mime_type=mime)
            written.append(stored.key)
            upload = Upload(
                user_id=current_user.id,
                user_name=current_user.name,
                user_email=current_user.email,
                filename=stored.key,
                original_name=original_name,
                extra_data=extra_data,
                mime_type=mime,
                size_bytes=stored.size_bytes,
            )
            db.session.add(upload)
            created.append(upload)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _discard_objects(storage, written)
        if isinstance(exc, StorageError):
            raise AppError(user_msg="Server error", code="STORAGE", http_status=500, detail=str(exc)) from exc
        raise

    for upload in created:
        AuditLog.log(action="upload_created", entity="upload", entity_id=upload.id, data={"key": upload.filename})
    log_info("Files uploaded", component="uploads", count=len(created))
    return {
        "success": True,
        "message": "Files uploaded successfully",
        "files": [upload.to_dict() for upload in created],
    }


@uploads_bp.route("/api/my-uploads", methods=["GET"])
@login_required
def my_uploads():
    """List uploads, newest first: everything for admins, own files for customers."""
    query = Upload.query
    if not current_user.is_admin:
        query = query.filter(Upload.user_id == current_user.id)
    uploads = query.order_by(Upload.uploaded_at.desc(), Upload.id.desc()).all()
    return [upload.to_dict() for upload in uploads]


@uploads_bp.route("/api/download/<filename>", methods=["GET"])
@login_required
def download(filename: str):
    upload = _authorized_upload(filename)
    return _send_stored(upload, as_attachment=True)


@uploads_bp.route("/uploads/<filename>", methods=["GET"])
@login_required
def view(filename: str):
    upload = _authorized_upload(filename)
    return _send_stored(upload, as_attachment=False)


@uploads_bp.route("/api/delete/<filename>", methods=["DELETE"])
@login_required
def delete(filename: str):
    """Remove every row for ``filename`` and the stored object."""
    key = _authorized_upload(filename).filename
    removed_rows = Upload.query.filter_by(filename=key).delete(synchronize_session=False)
    db.session.commit()
    try:
        removed_file = get_storage().delete(key)
    except StorageError as exc:
        log_warn("Stored object could not be deleted", component="uploads", key=key, error=str(exc))
        removed_file = False
    AuditLog.log(
        action="upload_deleted",
        entity="upload",
        entity_id=key,
        data={"rows": removed_rows, "file_removed": removed_file},
    )
    return {"success": True, "message": "File deleted successfully"}


@uploads_bp.route("/api/clean-duplicates", methods=["DELETE"])
@login_required
@auth_ext.roles_required("admin")
def clean_duplicates():
    """Keep the oldest row for each file name and delete the rest."""
    keeper_rows = (
        db.session.query(func.min(Upload.id))
        .group_by(Upload.filename)
        .having(func.count(Upload.id) > 1)
        .all()
    )
    keeper_ids = [row[0] for row in keeper_rows]
    deleted = 0
    if keeper_ids:
        duplicated_names = [
            name for (name,) in db.session.query(Upload.filename).filter(Upload.id.in_(keeper_ids)).all()
        ]
        deleted = (
            Upload.query.filter(Upload.filename.in_(duplicated_names), Upload.id.notin_(keeper_ids))
            .delete(synchronize_session=False)
        )
        db.session.commit()
    AuditLog.log(action="uploads_deduplicated", entity="upload", entity_id=None, data={"deleted": deleted})
    return {
        "success": True,
        "message": f"Cleaned {deleted} duplicate uploads. Kept {len(keeper_ids)} unique files.",
        "duplicatesDeleted": deleted,
        "uniqueFilesKept": len(keeper_ids),
    }
