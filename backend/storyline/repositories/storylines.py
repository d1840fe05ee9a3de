from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyline.core.errors import ConcurrentUpdateError, StorylineNotFoundError
from storyline.models.storyline import StorylineModel
from storyline.schemas import (
    SegmentStatus,
    Storyline,
    StorylineCreate,
    StorylineStatus,
    VideoJobOwner,
)


class StorylinesRepository(Protocol):
    async def create(self, payload: StorylineCreate) -> Storyline: ...

    async def get(self, storyline_id: str) -> Storyline | None: ...

    async def list_for_user(self, user_id: str) -> list[Storyline]: ...

    async def update(self, storyline: Storyline) -> Storyline:
        """Write the whole aggregate back if nobody else wrote since it was read."""
        ...

    async def delete(self, storyline_id: str) -> bool: ...

    async def find_by_video_job_id(self, job_id: str) -> VideoJobOwner | None: ...

    async def list_video_processing(self) -> list[VideoJobOwner]: ...


def _processing_jobs(storylines: Iterable[Storyline]) -> list[VideoJobOwner]:
    owners: list[VideoJobOwner] = []
    for storyline in storylines:
        for segment in storyline.segments:
            if segment.status == SegmentStatus.VIDEO_PROCESSING and segment.video_job_id:
                owners.append(
                    VideoJobOwner(
                        job_id=segment.video_job_id,
                        storyline_id=storyline.id,
                        segment_id=segment.id,
                    )
                )
    return owners


def _job_owner(storylines: Iterable[Storyline], job_id: str) -> VideoJobOwner | None:
    for storyline in storylines:
        for segment in storyline.segments:
            if segment.video_job_id == job_id:
                return VideoJobOwner(job_id=job_id, storyline_id=storyline.id, segment_id=segment.id)
    return None


class InMemoryStorylinesRepository:
    """Volatile repository to mimic persistence in tests and local runs."""

    def __init__(self) -> None:
        self._storylines: dict[str, Storyline] = {}

    async def create(self, payload: StorylineCreate) -> Storyline:
        now = datetime.utcnow()
        storyline = Storyline(
            name=payload.name,
            user_id=payload.user_id,
            original_video_url=payload.original_video_url,
            segments=[segment.model_copy() for segment in payload.segments],
            created_at=now,
            updated_at=now,
        )
        self._storylines[storyline.id] = storyline
        return storyline.model_copy(deep=True)

    async def get(self, storyline_id: str) -> Storyline | None:
        storyline = self._storylines.get(storyline_id)
        return storyline.model_copy(deep=True) if storyline else None

    async def list_for_user(self, user_id: str) -> list[Storyline]:
        owned = [s for s in self._storylines.values() if s.user_id == user_id]
        owned.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in owned]

    async def update(self, storyline: Storyline) -> Storyline:
        current = self._storylines.get(storyline.id)
        if current is None:
            raise StorylineNotFoundError(storyline.id)
        if current.version != storyline.version:
            raise ConcurrentUpdateError(storyline.id, storyline.version)
        stored = storyline.model_copy(
            deep=True,
            update={"version": storyline.version + 1, "updated_at": datetime.utcnow()},
        )
        self._storylines[storyline.id] = stored
        return stored.model_copy(deep=True)

    async def delete(self, storyline_id: str) -> bool:
        return self._storylines.pop(storyline_id, None) is not None

    def _processing_storylines(self) -> list[Storyline]:
        return [s for s in self._storylines.values() if s.status == StorylineStatus.PROCESSING]

    async def find_by_video_job_id(self, job_id: str) -> VideoJobOwner | None:
        return _job_owner(self._storylines.values(), job_id)

    async def list_video_processing(self) -> list[VideoJobOwner]:
        return _processing_jobs(self._processing_storylines())


class SqlAlchemyStorylinesRepository:
    """SQL-backed repository; each call runs in its own session so background
    pollers can share one instance."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_domain(model: StorylineModel) -> Storyline:
        return Storyline.model_validate(model)

    async def create(self, payload: StorylineCreate) -> Storyline:
        async with self._session_factory() as session:
            model = StorylineModel(
                name=payload.name,
                user_id=payload.user_id,
                original_video_url=payload.original_video_url,
                status=StorylineStatus.PROCESSING.value,
                generated_image_urls=[],
                generated_video_urls=[],
                segments=[segment.model_dump(mode="json") for segment in payload.segments],
                version=0,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return self._to_domain(model)

    async def get(self, storyline_id: str) -> Storyline | None:
        async with self._session_factory() as session:
            model = await session.get(StorylineModel, storyline_id)
            if not model:
                return None
            return self._to_domain(model)

    async def list_for_user(self, user_id: str) -> list[Storyline]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorylineModel)
                .where(StorylineModel.user_id == user_id)
                .order_by(StorylineModel.created_at.desc())
            )
            return [self._to_domain(row) for row in result.scalars().all()]

    async def update(self, storyline: Storyline) -> Storyline:
        async with self._session_factory() as session:
            result = await session.execute(
                update(StorylineModel)
                .where(
                    StorylineModel.id == storyline.id,
                    StorylineModel.version == storyline.version,
                )
                .values(
                    name=storyline.name,
                    original_video_url=storyline.original_video_url,
                    status=storyline.status.value,
                    generated_image_urls=list(storyline.generated_image_urls),
                    generated_video_urls=list(storyline.generated_video_urls),
                    segments=[segment.model_dump(mode="json") for segment in storyline.segments],
                    version=storyline.version + 1,
                    updated_at=datetime.utcnow(),
                )
            )
            if result.rowcount == 0:
                await session.rollback()
                exists = await session.get(StorylineModel, storyline.id)
                if exists is None:
                    raise StorylineNotFoundError(storyline.id)
                raise ConcurrentUpdateError(storyline.id, storyline.version)
            await session.commit()
            model = await session.get(StorylineModel, storyline.id, populate_existing=True)
            return self._to_domain(model)

    async def delete(self, storyline_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(StorylineModel).where(StorylineModel.id == storyline_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def _scan(self, *, processing_only: bool) -> list[Storyline]:
        query = select(StorylineModel)
        if processing_only:
            query = query.where(StorylineModel.status == StorylineStatus.PROCESSING.value)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_domain(row) for row in result.scalars().all()]

    async def find_by_video_job_id(self, job_id: str) -> VideoJobOwner | None:
        return _job_owner(await self._scan(processing_only=False), job_id)

    async def list_video_processing(self) -> list[VideoJobOwner]:
        return _processing_jobs(await self._scan(processing_only=True))
