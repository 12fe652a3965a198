from __future__ import annotations

import hashlib
import hmac
import json
import os
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional
from urllib.parse import parse_qs, quote, unquote, urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import StorageError
from .logging import get_logger

LOCAL_MEDIA_ROUTE = "/v1/media"


@dataclass(slots=True)
class StoredObject:
    path: Path
    content_type: str


class ObjectStore(ABC):
    """Blob store receiving processed uploads and issuing time-limited GET URLs."""

    @abstractmethod
    def put(self, key: str, stream: BinaryIO, *, content_type: str) -> None:
        """Upload ``stream`` under ``key`` as one logical write; raise StorageError on any failure."""

    @abstractmethod
    def sign(self, bucket: str, key: str, *, ttl_s: int) -> str:
        """Return a GET URL valid for ``ttl_s`` seconds from now. Never touches the stored object."""


def _validate_key(key: str) -> str:
    cleaned = key.strip().lstrip("/")
    if not cleaned or any(part in {"", ".", ".."} for part in cleaned.split("/")):
        raise StorageError(f"invalid storage key: {key!r}", code="invalid_storage_key")
    return cleaned


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store suitable for development.

    Objects are written to a temporary file beside their final location and
    moved into place with ``os.replace`` so readers never see a partial
    object. Playback URLs point at the API's media route and carry an expiry
    epoch plus an HMAC-SHA256 signature over ``bucket/key|exp``.
    """

    def __init__(self, base_path: Path, *, bucket: str, signing_secret: str, public_base_url: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.bucket = bucket
        self._secret = signing_secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        self.logger = get_logger(component="local_object_store")

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / _validate_key(key)).resolve()
        if self.base_path.resolve() not in target.parents:
            raise StorageError(f"storage key escapes base path: {key!r}", code="invalid_storage_key")
        return target

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + ".meta.json")

    def put(self, key: str, stream: BinaryIO, *, content_type: str) -> None:
        target = self._resolve(key)
        staged: list[Path] = []
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=target.parent, prefix=".upload-", delete=False) as tmp:
                staged.append(Path(tmp.name))
                shutil.copyfileobj(stream, tmp)
            os.replace(staged[0], target)
            # The sidecar only ever describes an object that is already in place.
            with tempfile.NamedTemporaryFile(
                "w", dir=target.parent, prefix=".upload-", suffix=".meta", encoding="utf-8", delete=False
            ) as meta:
                staged.append(Path(meta.name))
                json.dump({"content_type": content_type}, meta)
            os.replace(staged[1], self._meta_path(target))
        except OSError as exc:
            raise StorageError(f"local upload failed for {key}: {exc}", code="upload_failed") from exc
        finally:
            # no-op for files already moved into place
            for path in staged:
                path.unlink(missing_ok=True)
        self.logger.info("object_stored", key=key, size_bytes=target.stat().st_size)

    def _signature(self, bucket: str, key: str, expires_at: int) -> str:
        payload = f"{bucket}/{key}|{expires_at}".encode("utf-8")
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def sign(self, bucket: str, key: str, *, ttl_s: int, now: Optional[float] = None) -> str:
        if bucket != self.bucket:
            raise StorageError(f"unknown bucket for local store: {bucket}", code="unknown_bucket")
        key = _validate_key(key)
        issued_at = int(time.time() if now is None else now)
        expires_at = issued_at + int(ttl_s)
        signature = self._signature(bucket, key, expires_at)
        return (
            f"{self.public_base_url}{LOCAL_MEDIA_ROUTE}/{quote(bucket)}/{quote(key)}"
            f"?exp={expires_at}&sig={signature}"
        )

    def verify(self, bucket: str, key: str, *, expires_at: int, signature: str, now: Optional[float] = None) -> bool:
        """Return True when the signature matches and ``now`` is not past the expiry epoch."""
        current = time.time() if now is None else now
        if current > expires_at:
            return False
        expected = self._signature(bucket, key, expires_at)
        return hmac.compare_digest(expected, signature)

    def verify_url(self, url: str, *, now: Optional[float] = None) -> bool:
        parsed = urlparse(url)
        prefix = f"{LOCAL_MEDIA_ROUTE}/"
        if not parsed.path.startswith(prefix):
            return False
        bucket, _, key = unquote(parsed.path[len(prefix):]).partition("/")
        query = parse_qs(parsed.query)
        try:
            expires_at = int(query["exp"][0])
            signature = query["sig"][0]
        except (KeyError, IndexError, ValueError):
            return False
        return self.verify(bucket, key, expires_at=expires_at, signature=signature, now=now)

    def open_object(self, key: str) -> StoredObject:
        path = self._resolve(key)
        if not path.is_file():
            raise FileNotFoundError(key)
        content_type = "application/octet-stream"
        meta_path = self._meta_path(path)
        if meta_path.exists():
            content_type = json.loads(meta_path.read_text(encoding="utf-8")).get("content_type", content_type)
        return StoredObject(path=path, content_type=content_type)

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()


class S3ObjectStore(ObjectStore):
    """Thin boto3 wrapper: one ``put_object`` per upload, SigV4 presigned GETs."""

    def __init__(self, bucket: str, *, client=None, region_name: str | None = None, endpoint_url: str | None = None):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            region_name=region_name,
            endpoint_url=endpoint_url,
            config=BotoConfig(signature_version="s3v4", connect_timeout=5, read_timeout=60),
        )
        self.logger = get_logger(component="s3_object_store", bucket=bucket)

    def put(self, key: str, stream: BinaryIO, *, content_type: str) -> None:
        key = _validate_key(key)
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=stream, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"s3 upload failed for {key}: {exc}", code="upload_failed") from exc
        self.logger.info("object_stored", key=key)

    def sign(self, bucket: str, key: str, *, ttl_s: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": _validate_key(key)},
                ExpiresIn=int(ttl_s),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"failed to presign {bucket}/{key}: {exc}", code="signing_failed") from exc


def get_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore(
            settings.local_storage_base_path,
            bucket=settings.storage_bucket,
            signing_secret=settings.secrets.signing_secret,
            public_base_url=settings.public_base_url,
        )
    if settings.storage_backend == "s3":
        return S3ObjectStore(
            settings.s3_bucket,
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "StoredObject",
    "LOCAL_MEDIA_ROUTE",
    "get_object_store",
]
