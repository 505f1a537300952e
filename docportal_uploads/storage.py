"""Pluggable storage adapters for uploaded documents.

Objects are addressed by a flat key (the stored file name). Keys coming from a
request are untrusted: the local backend resolves them strictly inside its
root directory and rejects anything that would escape it.
"""
from __future__ import annotations

import io
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import Flask, current_app
from werkzeug.utils import secure_filename


class StorageError(RuntimeError):
    """Raised when a storage backend fails to persist or fetch an object."""


class InvalidKeyError(StorageError):
    """Raised when a key is not a plain file name inside the storage root."""


@dataclass(frozen=True)
class StoredObject:
    key: str
    size_bytes: int
    mime_type: str
    backend: str
    uri: str | None = None


def build_key(original_name: str, *, now_ms: int | None = None, nonce: str | None = None) -> str:
    """Return the storage key ``<epoch-ms>-<nonce>-<sanitized original name>``.

    The random nonce keeps same-named files of one request apart.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    nonce = nonce or secrets.token_hex(4)
    safe = secure_filename(original_name or "") or "upload"
    return f"{stamp}-{nonce}-{safe}"


def is_safe_key(key: str) -> bool:
    """True when ``key`` is a plain file name with no path components."""
    if not key or key in {".", ".."}:
        return False
    if "/" in key or "\\" in key or "\x00" in key:
        return False
    return secure_filename(key) == key


class StorageBackend:
    name = "base"

    def save(self, *, key: str, data: bytes, mime_type: str) -> StoredObject:  # pragma: no cover - interface only
        raise NotImplementedError

    def read(self, key: str) -> bytes:  # pragma: no cover - interface only
        raise NotImplementedError

    def exists(self, key: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete(self, key: str) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError


class LocalStorageBackend(StorageBackend):
    name = "local"

    def __init__(self, app: Flask):
        self.app = app
        self.root = (Path(app.instance_path) / app.config["UPLOAD_STORAGE_DIR"]).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path:
        """Map ``key`` to a path directly under the root or raise ``InvalidKeyError``."""
        if not is_safe_key(key):
            raise InvalidKeyError(f"Invalid storage key: {key!r}")
        path = (self.root / key).resolve()
        if path.parent != self.root:
            raise InvalidKeyError(f"Storage key escapes the storage root: {key!r}")
        return path

    def save(self, *, key: str, data: bytes, mime_type: str) -> StoredObject:
        destination = self.resolve(key)
        try:
            destination.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {key}: {exc}") from exc
        return StoredObject(key=key, size_bytes=len(data), mime_type=mime_type, backend=self.name, uri=str(destination))

    def read(self, key: str) -> bytes:
        path = self.resolve(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        return self.resolve(key).is_file()

    def delete(self, key: str) -> bool:
        path = self.resolve(key)
        if not path.is_file():
            return False
        path.unlink()
        return True


class S3StorageBackend(StorageBackend):
    name = "s3"

    def __init__(self, app: Flask):
        bucket = app.config.get("S3_BUCKET")
        if not bucket:
            raise StorageError("S3 bucket not configured")
        session = boto3.session.Session(
            aws_access_key_id=app.config.get("AWS_ACCESS_KEY_ID") or None,
            aws_secret_access_key=app.config.get("AWS_SECRET_ACCESS_KEY") or None,
            region_name=app.config.get("S3_REGION") or None,
        )
        self.client = session.client("s3")
        self.bucket = bucket
        self.prefix = (app.config.get("UPLOAD_STORAGE_DIR") or "uploads").strip("/")

    def _object_key(self, key: str) -> str:
        if not is_safe_key(key):
            raise InvalidKeyError(f"Invalid storage key: {key!r}")
        return f"{self.prefix}/{key}" if self.prefix else key

    def save(self, *, key: str, data: bytes, mime_type: str) -> StoredObject:
        object_key = self._object_key(key)
        try:
            self.client.put_object(Bucket=self.bucket, Key=object_key, Body=io.BytesIO(data), ContentType=mime_type)
        except (ClientError, BotoCoreError) as exc:  # pragma: no cover - requires AWS
            raise StorageError(f"Failed to upload to S3: {exc}") from exc
        return StoredObject(
            key=key,
            size_bytes=len(data),
            mime_type=mime_type,
            backend=self.name,
            uri=f"s3://{self.bucket}/{object_key}",
        )

    def read(self, key: str) -> bytes:
        object_key = self._object_key(key)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as exc:  # pragma: no cover - requires AWS
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                raise FileNotFoundError(key) from exc
            raise StorageError(f"Failed to fetch from S3: {exc}") from exc
        except BotoCoreError as exc:  # pragma: no cover - requires AWS
            raise StorageError(f"Failed to fetch from S3: {exc}") from exc
        return response["Body"].read()

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError:  # pragma: no cover - requires AWS
            return False
        return True

    def delete(self, key: str) -> bool:
        if not self.exists(key):
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._object_key(key))
        except (ClientError, BotoCoreError) as exc:  # pragma: no cover - requires AWS
            raise StorageError(f"Failed to delete from S3: {exc}") from exc
        return True


def get_storage(app: Flask | None = None) -> StorageBackend:
    app = app or current_app
    cache = app.extensions.setdefault("docportal_uploads", {})
    backend = cache.get("storage_backend")
    if backend:
        return backend
    if (app.config.get("UPLOAD_STORAGE_BACKEND") or "local").lower() == "s3":
        backend = S3StorageBackend(app)
    else:
        backend = LocalStorageBackend(app)
    cache["storage_backend"] = backend
    return backend


__all__ = [
    "InvalidKeyError",
    "LocalStorageBackend",
    "S3StorageBackend",
    "StorageBackend",
    "StorageError",
    "StoredObject",
    "build_key",
    "get_storage",
    "is_safe_key",
]
