"""Batch file storage gateway (S3-compatible bucket or local directory)."""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from pathlib import Path
from typing import Any, Protocol

import boto3

from debitrecon.common.config import settings
from debitrecon.common.logging import logger


class ObjectStorageError(Exception):
    """Generic object storage failure."""


class ObjectNotFoundError(ObjectStorageError):
    """Raised when object is missing."""


class BatchStorage(Protocol):
    """Storage provider interface."""

    def upload(self, key: str, data: bytes, content_type: str | None) -> None: ...
    def download(self, key: str) -> bytes: ...


_UNSAFE_NAME = re.compile(r"[^\w.-]+", re.ASCII)
_REPEATED_UNDERSCORE = re.compile(r"_+")


def sanitize_file_name(file_name: str, default: str = "batch.csv") -> str:
    decomposed = "".join(
        ch for ch in unicodedata.normalize("NFD", file_name or "") if not unicodedata.combining(ch)
    )
    clean = _REPEATED_UNDERSCORE.sub("_", _UNSAFE_NAME.sub("_", decomposed)).strip("_")[:120]
    return clean or default


def build_storage_key(direction: str, batch_id: int, file_name: str, business_date: date) -> str:
    """`billing/direct-debit/{direction}/{yyyy-mm-dd}/batch-{id}-{name}`."""

    return (
        f"billing/direct-debit/{direction.lower()}/{business_date.isoformat()}/"
        f"batch-{batch_id}-{sanitize_file_name(file_name)}"
    )


def _normalize_key(key: str) -> str:
    return key.lstrip("/")


class S3BatchStorage:
    """S3/MinIO/Spaces-backed storage provider."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: str | None,
        access_key: str | None,
        secret_key: str | None,
        region: str,
        client: Any | None = None,
    ) -> None:
        self.bucket_name = bucket_name
        if client is not None:
            self.client = client
            return
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    @staticmethod
    def _error_code(exc: Exception) -> str:
        response = getattr(exc, "response", None)
        if isinstance(response, dict):
            err = response.get("Error", {})
            if isinstance(err, dict):
                return str(err.get("Code", ""))
        return ""

    def upload(self, key: str, data: bytes, content_type: str | None) -> None:
        kwargs: dict = {
            "Bucket": self.bucket_name,
            "Key": _normalize_key(key),
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except Exception as exc:
            raise ObjectStorageError(f"Failed to upload object {key}") from exc

    def download(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket_name, Key=_normalize_key(key))
        except Exception as exc:
            code = self._error_code(exc)
            if code in {"404", "NoSuchKey"}:
                raise ObjectNotFoundError(key) from exc
            raise ObjectStorageError(f"Failed to download object {key}") from exc
        body = obj.get("Body")
        if body is None:
            raise ObjectStorageError(f"Object {key} has no content")
        return body.read()


class LocalBatchStorage:
    """Filesystem storage for development and single-node deployments."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / _normalize_key(key)).resolve()
        if self.root.resolve() not in path.parents:
            raise ObjectStorageError(f"Storage key escapes root: {key}")
        return path

    def upload(self, key: str, data: bytes, content_type: str | None) -> None:
        del content_type
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise ObjectStorageError(f"Failed to write {key}") from exc

    def download(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(key) from exc
        except OSError as exc:
            raise ObjectStorageError(f"Failed to read {key}") from exc


def resolve_batch_storage() -> BatchStorage:
    """S3 when a bucket and credentials are configured, local directory otherwise."""

    if settings.billing_batches_bucket and settings.s3_access_key and settings.s3_secret_key:
        return S3BatchStorage(
            bucket_name=settings.billing_batches_bucket,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region=settings.s3_region,
        )
    logger.info("batch storage using local root=%s", settings.billing_batches_local_root)
    return LocalBatchStorage(settings.billing_batches_local_root)
