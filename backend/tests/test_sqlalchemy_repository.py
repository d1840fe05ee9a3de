"""SQLAlchemy repository against an in-memory aiosqlite database."""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import make_segments
from storyline.core.errors import ConcurrentUpdateError, StorylineNotFoundError
from storyline.db.session import init_db
from storyline.repositories.storylines import SqlAlchemyStorylinesRepository
from storyline.schemas import SegmentStatus, StorylineCreate, StorylineStatus
from storyline.services.storyline_store import StorylineStore


def run_with_repository(scenario):
    """Run ``scenario(repository)`` against a fresh in-memory database."""

    async def _run():
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        await init_db(engine)
        try:
            return await scenario(SqlAlchemyStorylinesRepository(async_sessionmaker(engine, expire_on_commit=False)))
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def _payload(user_id: str = "user-1", count: int = 2) -> StorylineCreate:
    return StorylineCreate(name="Story", user_id=user_id, segments=make_segments(count))


def test_create_and_get_round_trip_segments():
    async def scenario(repo):
        created = await repo.create(_payload())
        return created, await repo.get(created.id)

    created, fetched = run_with_repository(scenario)

    assert fetched.id == created.id
    assert fetched.status == StorylineStatus.PROCESSING
    assert [s.id for s in fetched.segments] == ["1", "2"]
    assert all(s.status == SegmentStatus.PENDING for s in fetched.segments)
    assert fetched.version == 0


def test_stale_version_write_is_rejected():
    async def scenario(repo):
        created = await repo.create(_payload())
        first = created.model_copy(update={"name": "first"})
        second = created.model_copy(update={"name": "second"})
        stored = await repo.update(first)
        with pytest.raises(ConcurrentUpdateError):
            await repo.update(second)
        return stored, await repo.get(created.id)

    stored, current = run_with_repository(scenario)

    assert stored.version == 1
    assert current.name == "first"


def test_update_of_missing_storyline_raises_not_found():
    async def scenario(repo):
        created = await repo.create(_payload())
        await repo.delete(created.id)
        with pytest.raises(StorylineNotFoundError):
            await repo.update(created)

    run_with_repository(scenario)


def test_store_retries_conflicting_writers_without_losing_updates():
    async def scenario(repo):
        store = StorylineStore(repo, max_retries=5)
        created = await repo.create(_payload(count=2))
        await asyncio.gather(
            store.update_segment(
                created.id, "1", image_url="https://storage.test/1.png", status=SegmentStatus.IMAGE_GENERATED
            ),
            store.update_segment(
                created.id, "2", image_url="https://storage.test/2.png", status=SegmentStatus.IMAGE_GENERATED
            ),
        )
        return await repo.get(created.id)

    stored = run_with_repository(scenario)

    assert [s.status for s in stored.segments] == [SegmentStatus.IMAGE_GENERATED] * 2
    assert stored.version == 2


def test_job_reverse_lookup_and_processing_scan():
    async def scenario(repo):
        store = StorylineStore(repo)
        created = await repo.create(_payload(count=2))
        await store.update_segment(
            created.id, "2", image_url="https://storage.test/2.png", status=SegmentStatus.IMAGE_GENERATED
        )
        await store.update_segment(
            created.id, "2", video_job_id="job-9", status=SegmentStatus.VIDEO_PROCESSING
        )
        return created.id, await repo.find_by_video_job_id("job-9"), await repo.list_video_processing()

    storyline_id, owner, outstanding = run_with_repository(scenario)

    assert owner.storyline_id == storyline_id
    assert owner.segment_id == "2"
    assert [(o.job_id, o.segment_id) for o in outstanding] == [("job-9", "2")]


def test_list_for_user_only_returns_own_storylines():
    async def scenario(repo):
        mine = await repo.create(_payload("alice"))
        await repo.create(_payload("bob"))
        return mine.id, await repo.list_for_user("alice")

    mine_id, listed = run_with_repository(scenario)

    assert [s.id for s in listed] == [mine_id]


def test_delete_then_get_returns_nothing():
    async def scenario(repo):
        created = await repo.create(_payload())
        deleted = await repo.delete(created.id)
        return deleted, await repo.get(created.id), await repo.delete(created.id)

    deleted, fetched, deleted_again = run_with_repository(scenario)

    assert deleted is True
    assert fetched is None
    assert deleted_again is False


def test_job_lookup_still_resolves_after_storyline_completes():
    async def scenario(repo):
        store = StorylineStore(repo)
        created = await repo.create(_payload(count=1))
        await store.update_segment(
            created.id, "1", image_url="https://storage.test/1.png", status=SegmentStatus.IMAGE_GENERATED
        )
        await store.update_segment(created.id, "1", video_job_id="job-3", status=SegmentStatus.VIDEO_PROCESSING)
        await store.complete_video(created.id, "1", "https://storage.test/1.mp4", "job-3")
        return (
            await repo.get(created.id),
            await repo.find_by_video_job_id("job-3"),
            await repo.list_video_processing(),
        )

    stored, owner, outstanding = run_with_repository(scenario)

    assert stored.status == StorylineStatus.COMPLETED
    assert owner.segment_id == "1"
    assert outstanding == []
