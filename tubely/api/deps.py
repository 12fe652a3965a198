from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubely.core.auth import AuthContext, get_auth_context
from tubely.core.config import Settings, get_settings
from tubely.core.storage import ObjectStore
from tubely.db.videos import SqlVideoRepository
from tubely.media.faststart import ContainerRewriter, FFmpegFaststartRewriter
from tubely.media.probe import FFprobeInspector, MediaInspector
from tubely.services.ingest_service import VideoIngestService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = getattr(request.app.state, "session_factory", None)
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover - app built without lifespan
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_object_store(request: Request) -> ObjectStore:
    store: ObjectStore = request.app.state.object_store
    return store


def get_app_settings() -> Settings:
    return get_settings()


def get_rewriter(settings: Settings = Depends(get_app_settings)) -> ContainerRewriter:
    return FFmpegFaststartRewriter(binary=settings.ffmpeg_binary, timeout_s=settings.media_tool_timeout_s)


def get_inspector(settings: Settings = Depends(get_app_settings)) -> MediaInspector:
    return FFprobeInspector(binary=settings.ffprobe_binary, timeout_s=settings.media_tool_timeout_s)


def get_video_repository(session: AsyncSession = Depends(get_session)) -> SqlVideoRepository:
    return SqlVideoRepository(session)


async def get_ingest_service(
    videos: SqlVideoRepository = Depends(get_video_repository),
    store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_app_settings),
    rewriter: ContainerRewriter = Depends(get_rewriter),
    inspector: MediaInspector = Depends(get_inspector),
) -> AsyncIterator[VideoIngestService]:
    service = VideoIngestService(settings, store, videos, rewriter=rewriter, inspector=inspector)
    yield service


IngestServiceDependency = Annotated[VideoIngestService, Depends(get_ingest_service)]
VideoRepositoryDependency = Annotated[SqlVideoRepository, Depends(get_video_repository)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_session",
    "get_object_store",
    "get_app_settings",
    "get_rewriter",
    "get_inspector",
    "get_video_repository",
    "get_ingest_service",
    "IngestServiceDependency",
    "VideoRepositoryDependency",
    "AuthDependency",
]
