from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock

from proshot.core.exceptions import RecordNotFoundError
from proshot.pipeline.resolver import MetadataResolver


@pytest.mark.asyncio
async def test_record_visible_on_third_read(record_factory):
    record = record_factory()
    repository = AsyncMock()
    repository.get.side_effect = [None, None, record, record, record]
    sleep = AsyncMock()

    resolver = MetadataResolver(repository, max_attempts=5, retry_delay_seconds=1.0, sleep=sleep)
    resolved = await resolver.resolve("owner-1", "proj-1", "owners/owner-1/uploads/shoe.png")

    assert resolved is record
    assert repository.get.await_count == 3
    assert sleep.await_count == 2
    sleep.assert_awaited_with(1.0)
    repository.find_by_storage_path.assert_not_called()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    repository = AsyncMock()
    repository.get.return_value = None
    sleep = AsyncMock()

    resolver = MetadataResolver(repository, max_attempts=5, sleep=sleep)
    with pytest.raises(RecordNotFoundError) as exc_info:
        await resolver.resolve("owner-1", "missing", "owners/owner-1/uploads/shoe.png")

    assert repository.get.await_count == 5
    # No sleep after the final attempt
    assert sleep.await_count == 4
    assert exc_info.value.details["attempts"] == 5


@pytest.mark.asyncio
async def test_storage_path_fallback_is_not_retried():
    repository = AsyncMock()
    repository.find_by_storage_path.return_value = None
    sleep = AsyncMock()

    resolver = MetadataResolver(repository, sleep=sleep)
    with pytest.raises(RecordNotFoundError):
        await resolver.resolve("owner-1", None, "owners/owner-1/uploads/shoe.png")

    repository.find_by_storage_path.assert_awaited_once_with("owner-1", "owners/owner-1/uploads/shoe.png")
    repository.get.assert_not_called()
    sleep.assert_not_called()


@pytest.mark.asyncio
async def test_storage_path_fallback_first_match(repository, record_factory):
    await repository.create(record_factory("second", created_at=datetime(2024, 5, 2, tzinfo=timezone.utc)))
    older = await repository.create(record_factory("first", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)))

    resolver = MetadataResolver(repository)
    resolved = await resolver.resolve("owner-1", None, older.storage_path)

    assert resolved.id == "first"


@pytest.mark.asyncio
async def test_fallback_is_scoped_to_owner(repository, record_factory):
    await repository.create(record_factory("theirs", owner_id="owner-2"))

    resolver = MetadataResolver(repository)
    with pytest.raises(RecordNotFoundError):
        await resolver.resolve("owner-1", None, "owners/owner-1/uploads/shoe.png")


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        MetadataResolver(AsyncMock(), max_attempts=0)
