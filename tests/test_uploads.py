import io

import pytest

from conftest import login
from docportal_ext.db import db
from docportal_models.upload import Upload
from docportal_uploads.storage import (
    InvalidKeyError,
    LocalStorageBackend,
    StorageError,
    build_key,
    get_storage,
    is_safe_key,
)

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"
ELF_BYTES = b"\x7fELF\x02\x01\x01" + b"\x00" * 64


def _upload(client, name="report.pdf", data=PDF_BYTES, extra="Tax year 2023"):
    return client.post(
        "/upload",
        data={"files": (io.BytesIO(data), name), "extraData": extra},
        content_type="multipart/form-data",
    )


def _stored_key(response) -> str:
    return response.get_json()["files"][0]["filename"]


def test_upload_stores_file_and_metadata(app, customer_client):
    response = _upload(customer_client)

    assert response.status_code == 200
    body = response.get_json()
    assert body["message"] == "Files uploaded successfully"
    stored = body["files"][0]
    assert stored["original_name"] == "report.pdf"
    assert stored["filename"].endswith("-report.pdf")
    assert stored["mime_type"] == "application/pdf"
    assert stored["extra_data"] == "Tax year 2023"
    assert stored["user"] == "Alice"
    with app.app_context():
        backend = LocalStorageBackend(app)
        assert backend.read(stored["filename"]) == PDF_BYTES


def test_upload_requires_login(client):
    assert _upload(client).status_code == 401


def test_upload_rejects_unsupported_types(customer_client):
    response = _upload(customer_client, name="tool.pdf", data=ELF_BYTES)

    assert response.status_code == 400
    assert response.get_json()["message"] == "Unsupported file type"


def test_upload_rejects_empty_request(customer_client):
    response = customer_client.post("/upload", data={}, content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json()["message"] == "No files uploaded"


def test_upload_rejects_too_many_files(customer_client):
    files = [(io.BytesIO(PDF_BYTES), f"doc{i}.pdf") for i in range(11)]
    response = customer_client.post("/upload", data={"files": files}, content_type="multipart/form-data")

    assert response.status_code == 400


def test_customers_only_see_their_own_uploads(app, make_user, customer_client, admin_client):
    make_user("carol@example.com", "carol-secret", name="Carol")
    carol = app.test_client()
    login(carol, "carol@example.com", "carol-secret")

    _upload(customer_client, name="alice.pdf")
    _upload(carol, name="carol.pdf")

    alice_view = customer_client.get("/api/my-uploads").get_json()
    admin_view = admin_client.get("/api/my-uploads").get_json()

    assert [item["original_name"] for item in alice_view] == ["alice.pdf"]
    assert {item["original_name"] for item in admin_view} == {"alice.pdf", "carol.pdf"}


def test_download_and_inline_view(customer_client):
    key = _stored_key(_upload(customer_client))

    download = customer_client.get(f"/api/download/{key}")
    inline = customer_client.get(f"/uploads/{key}")

    assert download.status_code == 200
    assert download.data == PDF_BYTES
    assert "attachment" in download.headers["Content-Disposition"]
    assert "report.pdf" in download.headers["Content-Disposition"]
    assert inline.status_code == 200
    assert inline.mimetype == "application/pdf"
    assert "attachment" not in inline.headers.get("Content-Disposition", "")


def test_other_customers_cannot_download_or_delete(app, make_user, customer_client, admin_client):
    key = _stored_key(_upload(customer_client))
    make_user("mallory@example.com", "mallory-secret", name="Mallory")
    mallory = app.test_client()
    login(mallory, "mallory@example.com", "mallory-secret")

    assert mallory.get(f"/api/download/{key}").status_code == 403
    assert mallory.delete(f"/api/delete/{key}").status_code == 403
    assert admin_client.get(f"/api/download/{key}").status_code == 200


def test_download_rejects_traversal(customer_client):
    response = customer_client.get("/api/download/..evil.pdf")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid file name"


def test_download_of_unknown_file_is_not_found(customer_client):
    response = customer_client.get("/api/download/1700000000000-missing.pdf")

    assert response.status_code == 404


def test_delete_removes_rows_and_file(app, customer_client):
    key = _stored_key(_upload(customer_client))

    response = customer_client.delete(f"/api/delete/{key}")

    assert response.get_json() == {"success": True, "message": "File deleted successfully"}
    assert customer_client.get("/api/my-uploads").get_json() == []
    with app.app_context():
        assert not LocalStorageBackend(app).exists(key)


def test_clean_duplicates_keeps_oldest_row(app, customer_client, admin_client):
    key = _stored_key(_upload(customer_client))
    with app.app_context():
        original = Upload.query.filter_by(filename=key).one()
        for _ in range(2):
            db.session.add(
                Upload(
                    user_id=original.user_id,
                    user_name=original.user_name,
                    user_email=original.user_email,
                    filename=key,
                    original_name=original.original_name,
                    mime_type=original.mime_type,
                    size_bytes=original.size_bytes,
                )
            )
        db.session.commit()
        keeper_id = original.id

    assert customer_client.delete("/api/clean-duplicates").status_code == 403
    response = admin_client.delete("/api/clean-duplicates")

    body = response.get_json()
    assert body["duplicatesDeleted"] == 2
    assert body["uniqueFilesKept"] == 1
    with app.app_context():
        assert [row.id for row in Upload.query.all()] == [keeper_id]


@pytest.mark.parametrize("key", ["", ".", "..", "../etc/passwd", "a/b.pdf", "a\\b.pdf", "..evil.pdf", "bad\x00.pdf"])
def test_unsafe_keys(key):
    assert not is_safe_key(key)


def test_local_backend_refuses_paths_outside_root(app):
    with app.app_context():
        backend = LocalStorageBackend(app)
        with pytest.raises(InvalidKeyError):
            backend.resolve("../x")


def test_build_key_sanitizes_original_name():
    assert build_key("../../My Report.pdf", now_ms=1700000000000, nonce="ab12cd34") == "1700000000000-ab12cd34-My_Report.pdf"
    assert build_key("", now_ms=1, nonce="00ff00ff") == "1-00ff00ff-upload"
    assert is_safe_key(build_key("scan (1).png", now_ms=5))
    assert build_key("scan.png", now_ms=5) != build_key("scan.png", now_ms=5)


def test_same_named_files_in_one_upload_are_kept_apart(customer_client):
    second = PDF_BYTES + b"% second copy\n"
    response = customer_client.post(
        "/upload",
        data={"files": [(io.BytesIO(PDF_BYTES), "scan.pdf"), (io.BytesIO(second), "scan.pdf")]},
        content_type="multipart/form-data",
    )

    keys = [item["filename"] for item in response.get_json()["files"]]
    assert response.status_code == 200
    assert len(set(keys)) == 2
    assert customer_client.get(f"/api/download/{keys[0]}").data == PDF_BYTES
    assert customer_client.get(f"/api/download/{keys[1]}").data == second

    customer_client.delete(f"/api/delete/{keys[0]}")
    assert customer_client.get(f"/api/download/{keys[1]}").status_code == 200


def test_failed_upload_leaves_no_stored_objects(app, customer_client, monkeypatch):
    with app.app_context():
        backend = get_storage(app)
    real_save = backend.save
    calls = []

    def flaky_save(**kwargs):
        calls.append(kwargs["key"])
        if len(calls) == 2:
            raise StorageError("disk full")
        return real_save(**kwargs)

    monkeypatch.setattr(backend, "save", flaky_save)
    response = customer_client.post(
        "/upload",
        data={"files": [(io.BytesIO(PDF_BYTES), "one.pdf"), (io.BytesIO(PDF_BYTES), "two.pdf")]},
        content_type="multipart/form-data",
    )

    assert response.status_code == 500
    assert response.get_json()["code"] == "STORAGE"
    assert list(backend.root.iterdir()) == []
    with app.app_context():
        assert Upload.query.count() == 0
