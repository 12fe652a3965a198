from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import UploadFile

from tubely.api import deps
from tubely.core.config import Settings
from tubely.core.errors import IngestError, MissingUploadError
from tubely.core.logging import bind_request_context, clear_request_context
from tubely.services.ingest_service import PlaybackVideo, UploadRequest

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])

UPLOAD_FIELD = "video"

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": schemas.ErrorResponse},
    status.HTTP_403_FORBIDDEN: {"model": schemas.ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": schemas.ErrorResponse},
}

_UPLOAD_ERROR_RESPONSES = {
    **_ERROR_RESPONSES,
    status.HTTP_413_CONTENT_TOO_LARGE: {"model": schemas.ErrorResponse},
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": schemas.ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": schemas.ErrorResponse},
}


def _http_error(exc: IngestError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.code)


def _to_response(video: PlaybackVideo) -> schemas.VideoResponse:
    return schemas.VideoResponse(**video.as_dict())


@router.post("", response_model=schemas.VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    payload: schemas.VideoCreateRequest,
    videos: deps.VideoRepositoryDependency,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    video = await videos.create(user_id=context.user_id, title=payload.title, description=payload.description)
    return _to_response(service.playback(video))


@router.get("", response_model=list[schemas.VideoResponse])
async def list_videos(
    videos: deps.VideoRepositoryDependency,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
) -> list[schemas.VideoResponse]:
    try:
        return [_to_response(service.playback(video)) for video in await videos.list_for_user(context.user_id)]
    except IngestError as exc:
        raise _http_error(exc) from exc


@router.get("/{video_id}", response_model=schemas.VideoResponse, responses=_ERROR_RESPONSES)
async def get_video(
    video_id: str,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    try:
        video = await service.get_owned_video(video_id, context.user_id)
        return _to_response(service.playback(video))
    except IngestError as exc:
        raise _http_error(exc) from exc


@router.post("/{video_id}/upload", response_model=schemas.VideoResponse, responses=_UPLOAD_ERROR_RESPONSES)
async def upload_video(
    video_id: str,
    request: Request,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.VideoResponse:
    # Reject on the declared length before the multipart body is parsed.
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.max_upload_size_bytes:
        raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail="upload_too_large")

    bind_request_context(video_id=video_id, user_id=context.user_id)
    try:
        async with request.form(max_files=1) as form:
            upload = form.get(UPLOAD_FIELD)
            if not isinstance(upload, UploadFile):
                raise MissingUploadError(f"multipart field {UPLOAD_FIELD!r} is required")
            result = await service.ingest(
                UploadRequest(
                    video_id=video_id,
                    owner_id=context.user_id,
                    content_type=upload.content_type,
                    stream=upload.file,
                    declared_size=upload.size,
                )
            )
    except IngestError as exc:
        raise _http_error(exc) from exc
    finally:
        clear_request_context()
    return _to_response(result)


__all__ = ["router"]
