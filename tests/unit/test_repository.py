from datetime import datetime, timedelta, timezone

import pytest

from proshot.core.exceptions import RecordNotFoundError, TransitionConflictError
from proshot.modules.projects.models import (
    ProjectStatus,
    can_transition,
    expected_predecessor,
)


@pytest.mark.parametrize("current, target, allowed", [
    (ProjectStatus.PENDING, ProjectStatus.PROCESSING, True),
    (ProjectStatus.PROCESSING, ProjectStatus.COMPLETED, True),
    (ProjectStatus.PROCESSING, ProjectStatus.ERROR, True),
    (ProjectStatus.PENDING, ProjectStatus.COMPLETED, False),
    (ProjectStatus.COMPLETED, ProjectStatus.PROCESSING, False),
    (ProjectStatus.ERROR, ProjectStatus.COMPLETED, False),
    (ProjectStatus.PROCESSING, ProjectStatus.PENDING, False),
])
def test_state_machine(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_nothing_leads_into_pending():
    with pytest.raises(ValueError):
        expected_predecessor(ProjectStatus.PENDING)


@pytest.mark.asyncio
async def test_happy_path(repository, record_factory):
    created = await repository.create(record_factory())

    processing = await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)
    completed = await repository.transition(
        "owner-1", "proj-1", ProjectStatus.COMPLETED, processed_url="http://test/out.png"
    )

    assert processing.status == "processing"
    assert completed.project_status == ProjectStatus.COMPLETED
    assert completed.processed_url == "http://test/out.png"
    assert completed.error is None
    assert completed.updated_at >= created.created_at


@pytest.mark.asyncio
async def test_error_clears_processed_url(repository, record_factory):
    await repository.create(record_factory(processed_url="stale"))
    await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    errored = await repository.transition("owner-1", "proj-1", ProjectStatus.ERROR, error="boom")

    assert errored.status == "error"
    assert errored.error == "boom"
    assert errored.processed_url is None


@pytest.mark.asyncio
async def test_second_claim_conflicts(repository, record_factory):
    await repository.create(record_factory())
    await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    with pytest.raises(TransitionConflictError) as exc_info:
        await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    assert exc_info.value.details == {"expected": "pending", "actual": "processing"}


@pytest.mark.asyncio
async def test_terminal_records_are_not_mutated(repository, record_factory):
    await repository.create(record_factory())
    await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)
    await repository.transition("owner-1", "proj-1", ProjectStatus.COMPLETED, processed_url="u")

    with pytest.raises(TransitionConflictError):
        await repository.transition("owner-1", "proj-1", ProjectStatus.ERROR, error="late")

    record = await repository.get("owner-1", "proj-1")
    assert record.status == "completed"
    assert record.processed_url == "u"


@pytest.mark.asyncio
async def test_unconditional_mode_overwrites(unconditional_repository, record_factory):
    repository = unconditional_repository
    await repository.create(record_factory())
    await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)
    await repository.transition("owner-1", "proj-1", ProjectStatus.COMPLETED, processed_url="u")

    record = await repository.transition("owner-1", "proj-1", ProjectStatus.ERROR, error="late")

    assert record.status == "error"
    assert record.processed_url is None

    reclaimed = await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    assert reclaimed.status == "processing"
    assert reclaimed.error is None
    assert reclaimed.processed_url is None


@pytest.mark.asyncio
async def test_unconditional_reclaim_of_completed_clears_url(unconditional_repository, record_factory):
    repository = unconditional_repository
    await repository.create(record_factory())
    await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)
    await repository.transition("owner-1", "proj-1", ProjectStatus.COMPLETED, processed_url="http://x/a.png")

    reclaimed = await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    assert reclaimed.status == "processing"
    assert reclaimed.processed_url is None
    assert reclaimed.error is None


@pytest.mark.asyncio
async def test_timestamps_round_trip_as_utc(repository, record_factory):
    created_at = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    await repository.create(record_factory(created_at=created_at, updated_at=created_at))

    stored = await repository.get("owner-1", "proj-1")
    assert stored.created_at == created_at
    assert stored.updated_at == created_at
    assert stored.created_at.utcoffset() == timedelta(0)

    processing = await repository.transition("owner-1", "proj-1", ProjectStatus.PROCESSING)

    assert processing.updated_at.tzinfo is not None
    assert processing.updated_at > created_at
    assert processing.to_response_dict()["createdAt"] == "2024-05-01T09:30:00+00:00"


@pytest.mark.asyncio
async def test_missing_record(repository):
    with pytest.raises(RecordNotFoundError):
        await repository.transition("owner-1", "nope", ProjectStatus.PROCESSING)


@pytest.mark.asyncio
async def test_records_are_scoped_by_owner(repository, record_factory):
    await repository.create(record_factory())

    assert await repository.get("owner-2", "proj-1") is None
    with pytest.raises(RecordNotFoundError):
        await repository.transition("owner-2", "proj-1", ProjectStatus.PROCESSING)


@pytest.mark.asyncio
@pytest.mark.parametrize("target, kwargs", [
    (ProjectStatus.PENDING, {}),
    (ProjectStatus.COMPLETED, {}),
    (ProjectStatus.ERROR, {"error": ""}),
])
async def test_invalid_payloads(repository, target, kwargs):
    with pytest.raises(ValueError):
        await repository.transition("owner-1", "proj-1", target, **kwargs)


@pytest.mark.asyncio
async def test_find_stale_processing(repository, record_factory):
    now = datetime.now(timezone.utc)
    await repository.create(record_factory("stale", status="processing", updated_at=now - timedelta(hours=1)))
    await repository.create(record_factory("fresh", status="processing", updated_at=now))
    await repository.create(record_factory("done", status="completed", updated_at=now - timedelta(hours=1)))

    stale = await repository.find_stale_processing(now - timedelta(minutes=10))

    assert [record.id for record in stale] == ["stale"]
