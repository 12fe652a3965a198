from __future__ import annotations

import asyncio
import os
import re
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO, Optional
from uuid import UUID

from tubely.core.config import Settings
from tubely.core.errors import (
    AuthorizationError,
    IngestError,
    InvalidMediaTypeError,
    InvalidVideoIdError,
    MissingUploadError,
    ProcessingError,
    StorageError,
    UnsupportedMediaTypeError,
    UploadTooLargeError,
    VideoNotFoundError,
)
from tubely.core.logging import get_logger
from tubely.core.storage import ObjectStore
from tubely.db.models import Video
from tubely.db.videos import VideoRepository
from tubely.media.faststart import ContainerRewriter, FFmpegFaststartRewriter
from tubely.media.geometry import GeometryCategory, classify_video
from tubely.media.keys import StoredPointer, derive_storage_key
from tubely.media.probe import FFprobeInspector, MediaInspector

COPY_CHUNK_BYTES = 1024 * 1024
STAGED_PREFIX = "tubely-upload-"
# Pointers naming a bucket or key the active store cannot serve.
UNSIGNABLE_POINTER_CODES = frozenset({"unknown_bucket", "invalid_storage_key"})

_TOKEN = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"
_MEDIA_TYPE_RE = re.compile(rf"^\s*({_TOKEN})/({_TOKEN})\s*$")

logger = get_logger(component="ingest_service")


@dataclass(frozen=True, slots=True)
class UploadRequest:
    """An authenticated upload aimed at an existing video record."""

    video_id: str
    owner_id: str
    content_type: Optional[str]
    stream: BinaryIO
    declared_size: Optional[int] = None


@dataclass(slots=True)
class PlaybackVideo:
    """A video record as returned to clients: the pointer replaced by a fresh signed URL."""

    id: str
    user_id: str
    title: str
    description: Optional[str]
    video_url: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "video_url": self.video_url,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def parse_media_type(raw: Optional[str]) -> str:
    """Return the lower-cased ``type/subtype`` of a Content-Type value, ignoring parameters."""
    if not raw or not raw.strip():
        raise InvalidMediaTypeError("missing content type")
    match = _MEDIA_TYPE_RE.match(raw.split(";", 1)[0])
    if not match:
        raise InvalidMediaTypeError(f"could not parse media type {raw!r}")
    return f"{match.group(1)}/{match.group(2)}".lower()


def sign_video(video: Video, store: ObjectStore, *, ttl_s: int) -> PlaybackVideo:
    """Resolve a stored pointer into a signed playback URL without touching the record."""
    signed_url: Optional[str] = None
    if video.video_url:
        try:
            pointer = StoredPointer.decode(video.video_url)
            signed_url = store.sign(pointer.bucket, pointer.key, ttl_s=ttl_s)
        except ValueError as exc:
            logger.warning("playback_pointer_invalid", video_id=video.id, pointer=video.video_url, error=str(exc))
        except StorageError as exc:
            if exc.code not in UNSIGNABLE_POINTER_CODES:
                raise
            logger.warning("playback_pointer_invalid", video_id=video.id, pointer=video.video_url, error=exc.code)
    return PlaybackVideo(
        id=video.id,
        user_id=video.user_id,
        title=video.title,
        description=video.description,
        video_url=signed_url,
        created_at=video.created_at,
        updated_at=video.updated_at,
    )


class VideoIngestService:
    """Runs one upload through stage -> faststart + classify -> upload -> record -> sign.

    Every temporary file is registered on an ``ExitStack`` as soon as it exists,
    so both the staged upload and the rewritten copy are removed on every exit
    path. The pointer is written only once the object store accepted the bytes.
    """

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        videos: VideoRepository,
        *,
        rewriter: Optional[ContainerRewriter] = None,
        inspector: Optional[MediaInspector] = None,
    ):
        self.settings = settings
        self.store = store
        self.videos = videos
        self.rewriter = rewriter or FFmpegFaststartRewriter(
            binary=settings.ffmpeg_binary,
            timeout_s=settings.media_tool_timeout_s,
        )
        self.inspector = inspector or FFprobeInspector(
            binary=settings.ffprobe_binary,
            timeout_s=settings.media_tool_timeout_s,
        )

    async def get_owned_video(self, video_id: str, owner_id: str) -> Video:
        try:
            normalised_id = UUID(video_id).hex
        except (TypeError, ValueError) as exc:
            raise InvalidVideoIdError(f"invalid video id {video_id!r}") from exc
        video = await self.videos.get(normalised_id)
        if video is None:
            raise VideoNotFoundError(f"video {video_id} not found")
        if video.user_id != owner_id:
            raise AuthorizationError(f"user {owner_id} does not own video {video_id}")
        return video

    def validate_media_type(self, content_type: Optional[str]) -> str:
        media_type = parse_media_type(content_type)
        if media_type != self.settings.accepted_media_type:
            raise UnsupportedMediaTypeError(f"unsupported media type {media_type}")
        return media_type

    def playback(self, video: Video) -> PlaybackVideo:
        return sign_video(video, self.store, ttl_s=self.settings.playback_url_ttl_seconds)

    async def ingest(self, request: UploadRequest) -> PlaybackVideo:
        log = logger.bind(video_id=request.video_id, user_id=request.owner_id)

        ceiling = self.settings.max_upload_size_bytes
        if request.declared_size is not None and request.declared_size > ceiling:
            raise UploadTooLargeError(f"declared size {request.declared_size} exceeds {ceiling}")
        media_type = self.validate_media_type(request.content_type)
        video = await self.get_owned_video(request.video_id, request.owner_id)

        with ExitStack() as cleanup:
            staged = self._create_temp(cleanup)
            size_bytes = await asyncio.to_thread(self._stage, request.stream, staged, ceiling)
            log.info("ingest_staged", path=str(staged), size_bytes=size_bytes)

            rewritten, category = await self._rewrite_and_classify(staged, cleanup)
            log.info("ingest_processed", rewritten=str(rewritten), category=category.value)

            key = derive_storage_key(category)
            pointer = StoredPointer(bucket=self.settings.storage_bucket, key=key)
            try:
                encoded = pointer.encode()
            except ValueError as exc:
                raise StorageError(str(exc), code="invalid_storage_pointer") from exc

            await asyncio.to_thread(self._upload, rewritten, key, media_type)
            log.info("ingest_uploaded", key=key)

            try:
                video = await self.videos.update(_with_video_url(video, encoded))
            except StorageError:
                # Accepted orphan: the object exists without a referencing record.
                log.error("ingest_orphaned_object", bucket=pointer.bucket, key=key)
                raise
            log.info("ingest_pointer_recorded", pointer=video.video_url)

        return self.playback(video)

    def _create_temp(self, cleanup: ExitStack) -> Path:
        directory = self.settings.temp_dir
        if directory is not None:
            Path(directory).mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=STAGED_PREFIX, suffix=".mp4", dir=directory)
        os.close(fd)
        path = Path(name)
        cleanup.callback(_remove_temp, path)
        return path

    @staticmethod
    def _stage(stream: BinaryIO, target: Path, ceiling: int) -> int:
        total = 0
        with target.open("wb") as handle:
            while chunk := stream.read(COPY_CHUNK_BYTES):
                total += len(chunk)
                if total > ceiling:
                    raise UploadTooLargeError(f"upload exceeds {ceiling} bytes")
                handle.write(chunk)
        if total == 0:
            raise MissingUploadError("upload body is empty")
        return total

    async def _rewrite_and_classify(self, staged: Path, cleanup: ExitStack) -> tuple[Path, GeometryCategory]:
        # Both steps only read the staged bytes, each through its own handle.
        rewritten, category = await asyncio.gather(
            asyncio.to_thread(self.rewriter.rewrite, staged),
            asyncio.to_thread(classify_video, staged, self.inspector),
            return_exceptions=True,
        )
        if isinstance(rewritten, Path) and rewritten != staged:
            cleanup.callback(_remove_temp, rewritten)

        for outcome in (rewritten, category):
            if isinstance(outcome, IngestError):
                raise outcome
            if isinstance(outcome, Exception):
                raise ProcessingError(f"media processing failed: {outcome}") from outcome
            if isinstance(outcome, BaseException):
                raise outcome

        if rewritten == staged:
            raise ProcessingError("rewriter returned the staged file unchanged", code="rewrite_passthrough")
        return rewritten, category

    def _upload(self, source: Path, key: str, media_type: str) -> None:
        try:
            with source.open("rb") as handle:
                self.store.put(key, handle, content_type=media_type)
        except OSError as exc:
            raise StorageError(f"could not read processed file {source}: {exc}", code="upload_failed") from exc


def _with_video_url(video: Video, video_url: str) -> Video:
    """Detached copy of ``video`` carrying the new pointer; the caller's record stays untouched until the write lands."""
    return Video(
        id=video.id,
        user_id=video.user_id,
        title=video.title,
        description=video.description,
        video_url=video_url,
        created_at=video.created_at,
        updated_at=video.updated_at,
    )


def _remove_temp(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
        logger.debug("tempfile_removed", path=str(path))
    except OSError as cleanup_error:
        logger.warning("tempfile_cleanup_failed", path=str(path), error=str(cleanup_error))


__all__ = [
    "UploadRequest",
    "PlaybackVideo",
    "VideoIngestService",
    "parse_media_type",
    "sign_video",
]
