"""Failure taxonomy for the ingestion pipeline.

Every error carries a stable ``code`` (used as the HTTP ``detail``) and the
``status_code`` the API surfaces it with. Client errors are raised before any
side effect; processing and storage errors are raised after cleanup has been
scheduled, so callers never need to release resources themselves.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    code = "ingest_failed"
    status_code = 500

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class ClientInputError(IngestError):
    code = "invalid_request"
    status_code = 400


class InvalidVideoIdError(ClientInputError):
    code = "invalid_video_id"


class VideoNotFoundError(ClientInputError):
    code = "video_not_found"
    status_code = 404


class MissingUploadError(ClientInputError):
    code = "missing_upload"


class InvalidMediaTypeError(ClientInputError):
    code = "invalid_media_type"


class UnsupportedMediaTypeError(ClientInputError):
    code = "unsupported_media_type"
    status_code = 415


class UploadTooLargeError(ClientInputError):
    code = "upload_too_large"
    status_code = 413


class AuthorizationError(IngestError):
    code = "not_video_owner"
    status_code = 403


class ProcessingError(IngestError):
    code = "processing_failed"
    status_code = 500


class StorageError(IngestError):
    code = "storage_failed"
    status_code = 502


__all__ = [
    "IngestError",
    "ClientInputError",
    "InvalidVideoIdError",
    "VideoNotFoundError",
    "MissingUploadError",
    "InvalidMediaTypeError",
    "UnsupportedMediaTypeError",
    "UploadTooLargeError",
    "AuthorizationError",
    "ProcessingError",
    "StorageError",
]
