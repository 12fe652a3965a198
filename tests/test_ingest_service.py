from __future__ import annotations

import asyncio
import io
import re
from pathlib import Path

import pytest

from tubely.core.config import get_settings
from tubely.core.errors import (
    AuthorizationError,
    InvalidMediaTypeError,
    InvalidVideoIdError,
    MissingUploadError,
    ProcessingError,
    StorageError,
    UnsupportedMediaTypeError,
    UploadTooLargeError,
    VideoNotFoundError,
)
from tubely.core.storage import LocalObjectStore
from tubely.media.keys import StoredPointer
from tubely.services.ingest_service import UploadRequest, VideoIngestService, parse_media_type, sign_video
from tests.fakes import FakeInspector, FakeRewriter, InMemoryVideoRepository, RecordingObjectStore

PAYLOAD = b"\x00\x00\x00\x18ftypmp42" + b"mdat" * 256
OWNER = "user-1"


def _staged_files(directory: Path) -> list[Path]:
    if not directory.exists():
        return []
    return sorted(directory.iterdir())


def _build(
    *,
    settings=None,
    store: RecordingObjectStore | None = None,
    videos: InMemoryVideoRepository | None = None,
    rewriter: FakeRewriter | None = None,
    inspector: FakeInspector | None = None,
):
    settings = settings or get_settings()
    store = store or RecordingObjectStore()
    videos = videos or InMemoryVideoRepository()
    rewriter = rewriter or FakeRewriter()
    inspector = inspector or FakeInspector(1920, 1080)
    service = VideoIngestService(settings, store, videos, rewriter=rewriter, inspector=inspector)
    return service, store, videos, rewriter, inspector


def _request(video_id: str, *, owner: str = OWNER, content_type: str | None = "video/mp4", body: bytes = PAYLOAD, declared_size=None):
    return UploadRequest(
        video_id=video_id,
        owner_id=owner,
        content_type=content_type,
        stream=io.BytesIO(body),
        declared_size=declared_size,
    )


def test_successful_upload_records_pointer_and_returns_signed_url(staging_dir):
    service, store, videos, rewriter, inspector = _build()
    video = videos.add(user_id=OWNER)

    result = asyncio.run(service.ingest(_request(video.id)))

    pointer = StoredPointer.decode(videos.videos[video.id].video_url)
    assert pointer.bucket == "local"
    assert re.fullmatch(r"landscape/[A-Za-z0-9_-]{43}\.mp4", pointer.key)
    assert store.objects[pointer.key] == (PAYLOAD, "video/mp4")
    assert result.video_url == f"https://signed.example/local/{pointer.key}?ttl=3600"
    assert store.sign_calls == [("local", pointer.key, 3600)]
    assert result.id == video.id
    assert len(rewriter.calls) == 1
    assert inspector.calls == rewriter.calls
    assert _staged_files(staging_dir) == []


def test_portrait_upload_is_filed_under_portrait(staging_dir):
    service, store, videos, _, _ = _build(inspector=FakeInspector(1080, 1920))
    video = videos.add(user_id=OWNER)

    asyncio.run(service.ingest(_request(video.id)))

    pointer = StoredPointer.decode(videos.videos[video.id].video_url)
    assert pointer.key.startswith("portrait/")
    assert _staged_files(staging_dir) == []


def test_square_upload_is_filed_under_other():
    service, _, videos, _, _ = _build(inspector=FakeInspector(1080, 1080))
    video = videos.add(user_id=OWNER)

    asyncio.run(service.ingest(_request(video.id)))

    assert StoredPointer.decode(videos.videos[video.id].video_url).key.startswith("other/")


def test_media_type_parameters_and_case_are_ignored():
    service, store, videos, _, _ = _build()
    video = videos.add(user_id=OWNER)

    asyncio.run(service.ingest(_request(video.id, content_type="Video/MP4; codecs=avc1")))

    assert store.put_calls == 1


@pytest.mark.parametrize("content_type", ["image/png", "video/quicktime", "application/octet-stream"])
def test_unsupported_media_type_has_no_side_effects(staging_dir, content_type):
    service, store, videos, rewriter, _ = _build()
    video = videos.add(user_id=OWNER)

    with pytest.raises(UnsupportedMediaTypeError) as excinfo:
        asyncio.run(service.ingest(_request(video.id, content_type=content_type)))

    assert excinfo.value.status_code == 415
    assert videos.get_calls == 0
    assert store.put_calls == 0
    assert rewriter.calls == []
    assert _staged_files(staging_dir) == []


@pytest.mark.parametrize("content_type", [None, "", "   ", "video", "video/", "not a type/x"])
def test_unparseable_media_type_is_client_error(content_type):
    service, _, videos, _, _ = _build()
    video = videos.add(user_id=OWNER)

    with pytest.raises(InvalidMediaTypeError) as excinfo:
        asyncio.run(service.ingest(_request(video.id, content_type=content_type)))
    assert excinfo.value.status_code == 400
    assert videos.get_calls == 0


def test_non_owner_is_rejected_before_staging(staging_dir):
    service, store, videos, rewriter, _ = _build()
    video = videos.add(user_id="someone-else")

    with pytest.raises(AuthorizationError):
        asyncio.run(service.ingest(_request(video.id)))

    assert videos.videos[video.id].video_url is None
    assert store.put_calls == 0
    assert rewriter.calls == []
    assert _staged_files(staging_dir) == []


def test_unknown_and_malformed_video_ids():
    service, _, _, _, _ = _build()

    with pytest.raises(VideoNotFoundError) as excinfo:
        asyncio.run(service.ingest(_request("0" * 32)))
    assert excinfo.value.status_code == 404

    with pytest.raises(InvalidVideoIdError):
        asyncio.run(service.ingest(_request("not-a-uuid")))


def test_hyphenated_video_id_is_accepted():
    service, store, videos, _, _ = _build()
    video = videos.add(user_id=OWNER)
    hyphenated = f"{video.id[:8]}-{video.id[8:12]}-{video.id[12:16]}-{video.id[16:20]}-{video.id[20:]}"

    asyncio.run(service.ingest(_request(hyphenated)))

    assert store.put_calls == 1


def test_declared_size_over_ceiling_is_rejected_up_front():
    settings = get_settings().model_copy(update={"max_upload_size_bytes": 64})
    service, _, videos, _, _ = _build(settings=settings)
    video = videos.add(user_id=OWNER)

    with pytest.raises(UploadTooLargeError) as excinfo:
        asyncio.run(service.ingest(_request(video.id, declared_size=65)))
    assert excinfo.value.status_code == 413
    assert videos.get_calls == 0


def test_streamed_size_over_ceiling_is_rejected_and_cleaned(staging_dir):
    settings = get_settings().model_copy(update={"max_upload_size_bytes": 64})
    service, store, videos, rewriter, _ = _build(settings=settings)
    video = videos.add(user_id=OWNER)

    with pytest.raises(UploadTooLargeError):
        asyncio.run(service.ingest(_request(video.id, body=b"x" * 65)))

    assert rewriter.calls == []
    assert store.put_calls == 0
    assert _staged_files(staging_dir) == []


def test_empty_body_is_missing_upload(staging_dir):
    service, store, videos, _, _ = _build()
    video = videos.add(user_id=OWNER)

    with pytest.raises(MissingUploadError):
        asyncio.run(service.ingest(_request(video.id, body=b"")))

    assert store.put_calls == 0
    assert _staged_files(staging_dir) == []


def test_rewrite_failure_cleans_up_and_keeps_pointer(staging_dir):
    service, store, videos, _, _ = _build(rewriter=FakeRewriter(fail=True))
    video = videos.add(user_id=OWNER)
    video.video_url = "local,landscape/previous.mp4"

    with pytest.raises(ProcessingError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert excinfo.value.code == "ffmpeg_failed"
    assert videos.videos[video.id].video_url == "local,landscape/previous.mp4"
    assert videos.update_calls == 0
    assert store.put_calls == 0
    assert _staged_files(staging_dir) == []


def test_probe_failure_removes_rewritten_copy(staging_dir):
    rewriter = FakeRewriter()
    inspector = FakeInspector(error=ProcessingError("no video stream", code="no_video_stream"))
    service, store, videos, _, _ = _build(rewriter=rewriter, inspector=inspector)
    video = videos.add(user_id=OWNER)

    with pytest.raises(ProcessingError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert excinfo.value.code == "no_video_stream"
    assert len(rewriter.outputs) == 1
    assert not rewriter.outputs[0].exists()
    assert store.put_calls == 0
    assert _staged_files(staging_dir) == []


def test_unexpected_processing_exception_is_wrapped(staging_dir):
    service, _, videos, _, _ = _build(inspector=FakeInspector(error=RuntimeError("probe crashed")))
    video = videos.add(user_id=OWNER)

    with pytest.raises(ProcessingError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert _staged_files(staging_dir) == []


def test_rewriter_returning_staged_file_is_rejected(staging_dir):
    class PassthroughRewriter:
        def rewrite(self, path: Path) -> Path:
            return path

    videos = InMemoryVideoRepository()
    service = VideoIngestService(
        get_settings(),
        RecordingObjectStore(),
        videos,
        rewriter=PassthroughRewriter(),
        inspector=FakeInspector(),
    )
    video = videos.add(user_id=OWNER)

    with pytest.raises(ProcessingError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))
    assert excinfo.value.code == "rewrite_passthrough"
    assert _staged_files(staging_dir) == []


def test_upload_failure_does_not_write_pointer(staging_dir):
    service, store, videos, _, _ = _build(store=RecordingObjectStore(fail_puts=True))
    video = videos.add(user_id=OWNER)

    with pytest.raises(StorageError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert excinfo.value.status_code == 502
    assert store.put_calls == 1
    assert store.objects == {}
    assert videos.update_calls == 0
    assert videos.videos[video.id].video_url is None
    assert _staged_files(staging_dir) == []


def test_metadata_failure_leaves_orphan_object(staging_dir):
    service, store, videos, _, _ = _build(videos=InMemoryVideoRepository(fail_updates=True))
    video = videos.add(user_id=OWNER)

    with pytest.raises(StorageError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert excinfo.value.code == "metadata_update_failed"
    assert len(store.objects) == 1
    assert videos.videos[video.id].video_url is None
    assert video.video_url is None
    assert store.sign_calls == []
    assert _staged_files(staging_dir) == []


def test_unencodable_pointer_fails_before_upload(staging_dir):
    settings = get_settings().model_copy(update={"storage_backend": "s3", "s3_bucket": "videos,archive"})
    service, store, videos, _, _ = _build(settings=settings)
    video = videos.add(user_id=OWNER)

    with pytest.raises(StorageError) as excinfo:
        asyncio.run(service.ingest(_request(video.id)))

    assert excinfo.value.code == "invalid_storage_pointer"
    assert excinfo.value.status_code == 502
    assert store.put_calls == 0
    assert videos.update_calls == 0
    assert _staged_files(staging_dir) == []

def test_identical_bytes_get_distinct_keys():
    service, store, videos, _, _ = _build()
    video = videos.add(user_id=OWNER)

    asyncio.run(service.ingest(_request(video.id)))
    first = videos.videos[video.id].video_url
    asyncio.run(service.ingest(_request(video.id)))
    second = videos.videos[video.id].video_url

    assert first != second
    # replaced objects are not deleted
    assert len(store.objects) == 2


def test_sign_video_never_mutates_record():
    store = RecordingObjectStore()
    videos = InMemoryVideoRepository()
    video = videos.add(user_id=OWNER)
    video.video_url = "tubely-videos,landscape/abc.mp4"

    first = sign_video(video, store, ttl_s=3600)
    second = sign_video(video, store, ttl_s=60)

    assert first.video_url == "https://signed.example/tubely-videos/landscape/abc.mp4?ttl=3600"
    assert second.video_url == "https://signed.example/tubely-videos/landscape/abc.mp4?ttl=60"
    assert video.video_url == "tubely-videos,landscape/abc.mp4"


@pytest.mark.parametrize("stored", [None, "", "https://legacy.example/video.mp4", "a,b,c"])
def test_sign_video_without_valid_pointer_has_no_url(stored):
    store = RecordingObjectStore()
    video = InMemoryVideoRepository().add(user_id=OWNER)
    video.video_url = stored

    assert sign_video(video, store, ttl_s=3600).video_url is None
    assert store.sign_calls == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("video/mp4", "video/mp4"),
        ("VIDEO/MP4", "video/mp4"),
        (" video/mp4 ; charset=binary", "video/mp4"),
        ("application/vnd.apple.mpegurl", "application/vnd.apple.mpegurl"),
    ],
)
def test_parse_media_type(raw, expected):
    assert parse_media_type(raw) == expected


def test_sign_video_with_pointer_to_other_bucket_has_no_url(tmp_path):
    store = LocalObjectStore(
        tmp_path / "objects",
        bucket="local",
        signing_secret="unit-secret",
        public_base_url="http://media.test",
    )
    video = InMemoryVideoRepository().add(user_id=OWNER)
    video.video_url = "tubely-videos,landscape/abc.mp4"

    playback = sign_video(video, store, ttl_s=3600)

    assert playback.video_url is None
    assert video.video_url == "tubely-videos,landscape/abc.mp4"


def test_sign_video_propagates_signing_outage():
    class BrokenSigner(RecordingObjectStore):
        def sign(self, bucket, key, *, ttl_s):
            raise StorageError("presign unavailable", code="signing_failed")

    video = InMemoryVideoRepository().add(user_id=OWNER)
    video.video_url = "tubely-videos,landscape/abc.mp4"

    with pytest.raises(StorageError) as excinfo:
        sign_video(video, BrokenSigner(), ttl_s=3600)
    assert excinfo.value.code == "signing_failed"
