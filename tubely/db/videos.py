from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.core.errors import StorageError

from .models import Video


class VideoRepository(ABC):
    """Metadata store collaborator. The ingestion pipeline only ever overwrites ``video_url``."""

    @abstractmethod
    async def get(self, video_id: str) -> Optional[Video]: ...

    @abstractmethod
    async def update(self, video: Video) -> Video: ...


class SqlVideoRepository(VideoRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, video_id: str) -> Optional[Video]:
        return await self.session.get(Video, video_id)

    async def create(self, *, user_id: str, title: str, description: str | None) -> Video:
        video = Video(user_id=user_id, title=title, description=description)
        self.session.add(video)
        await self.session.commit()
        await self.session.refresh(video)
        return video

    async def list_for_user(self, user_id: str) -> list[Video]:
        stmt = select(Video).where(Video.user_id == user_id).order_by(Video.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, video: Video) -> Video:
        try:
            merged = await self.session.merge(video)
            await self.session.commit()
            await self.session.refresh(merged)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageError(f"failed to update video {video.id}: {exc}", code="metadata_update_failed") from exc
        return merged


__all__ = ["VideoRepository", "SqlVideoRepository"]
