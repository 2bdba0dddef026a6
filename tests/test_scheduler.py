import asyncio
import pytest
from app.uploader.control import CancellationToken, RetryPolicy
from app.uploader.errors import ChunkUploadError
from app.uploader.models import ChunkStatus
from app.uploader.scheduler import ChunkScheduler, ScheduleOutcome
from fakes import FakeTransport, RecordingTracker, make_file, rejected_error, retryable_error, wait_until


def make_scheduler(transport, clock, max_concurrent=3, policy=RetryPolicy()):
    return ChunkScheduler(transport, policy, max_concurrent, clock)


async def test_uploads_every_chunk(clock):
    transport = FakeTransport()
    tracker = RecordingTracker()
    managed = make_file(size=10, chunk_size=4, upload_id="upload-1")

    outcome = await make_scheduler(transport, clock).upload_all(managed, CancellationToken(), tracker)

    assert outcome == ScheduleOutcome.COMPLETED
    assert sorted(transport.sends_for("upload-1")) == [0, 1, 2]
    assert all(tracker.last_status(i) == ChunkStatus.COMPLETED for i in range(3))
    data = b"".join(transport.stored[("upload-1", i)] for i in range(3))
    assert data == bytes(i % 251 for i in range(10))


async def test_in_flight_chunks_bounded(clock):
    transport = FakeTransport()
    managed = make_file(size=24, chunk_size=4)

    await make_scheduler(transport, clock, max_concurrent=2).upload_all(managed, CancellationToken(), RecordingTracker())

    assert transport.max_in_flight == 2
    assert len(transport.sent) == 6


async def test_transient_failure_retried_with_linear_backoff(clock):
    transport = FakeTransport(failures={1: [retryable_error(), retryable_error()]})
    tracker = RecordingTracker()
    managed = make_file(size=12, chunk_size=4)

    outcome = await make_scheduler(transport, clock).upload_all(managed, CancellationToken(), tracker)

    assert outcome == ScheduleOutcome.COMPLETED
    assert transport.sends_for(managed.id).count(1) == 3
    assert clock.sleeps == [2.0, 4.0]
    assert tracker.retries == [(1, 1), (1, 2)]
    assert tracker.last_status(1) == ChunkStatus.COMPLETED


async def test_retries_exhausted(clock):
    transport = FakeTransport(always_fail=retryable_error())
    managed = make_file(size=3, chunk_size=4)
    scheduler = make_scheduler(transport, clock, policy=RetryPolicy(max_retries=2, base_delay=1.0))

    with pytest.raises(ChunkUploadError) as exc_info:
        await scheduler.upload_all(managed, CancellationToken(), RecordingTracker())

    assert exc_info.value.failed_indices == [0]
    assert len(transport.sent) == 3
    assert clock.sleeps == [1.0, 2.0]


async def test_rejected_chunk_not_retried(clock):
    transport = FakeTransport(failures={1: [rejected_error()]})
    tracker = RecordingTracker()
    managed = make_file(size=12, chunk_size=4)

    with pytest.raises(ChunkUploadError) as exc_info:
        await make_scheduler(transport, clock).upload_all(managed, CancellationToken(), tracker)

    assert exc_info.value.failed_indices == [1]
    assert str(exc_info.value) == "Failed to upload 1 chunks"
    assert transport.sends_for(managed.id).count(1) == 1
    assert tracker.last_status(1) == ChunkStatus.ERROR
    assert tracker.last_status(0) == ChunkStatus.COMPLETED
    assert tracker.last_status(2) == ChunkStatus.COMPLETED
    assert clock.sleeps == []


async def test_cancel_aborts_in_flight_chunks(clock):
    transport = FakeTransport()
    transport.gate.clear()
    tracker = RecordingTracker()
    token = CancellationToken()
    managed = make_file(size=12, chunk_size=4)

    task = asyncio.ensure_future(make_scheduler(transport, clock, max_concurrent=2).upload_all(managed, token, tracker))
    await wait_until(lambda: transport.in_flight == 2)
    token.cancel()

    assert await task == ScheduleOutcome.ABORTED
    assert transport.stored == {}
    assert len(transport.sent) == 2
    assert tracker.last_status(0) == ChunkStatus.PENDING
    assert tracker.last_status(1) == ChunkStatus.PENDING


async def test_pause_finishes_in_flight_and_resume_skips_completed(clock):
    transport = FakeTransport()
    transport.gate.clear()
    tracker = RecordingTracker()
    token = CancellationToken()
    managed = make_file(size=16, chunk_size=4)
    scheduler = make_scheduler(transport, clock, max_concurrent=2)

    task = asyncio.ensure_future(scheduler.upload_all(managed, token, tracker))
    await wait_until(lambda: transport.in_flight == 2)
    token.pause()
    transport.gate.set()

    assert await task == ScheduleOutcome.PAUSED
    assert sorted(transport.sends_for(managed.id)) == [0, 1]
    assert tracker.last_status(0) == ChunkStatus.COMPLETED
    assert tracker.last_status(1) == ChunkStatus.COMPLETED
    assert tracker.last_status(2) is None

    resumed = managed.with_chunk(0, status=ChunkStatus.COMPLETED).with_chunk(1, status=ChunkStatus.COMPLETED)
    outcome = await scheduler.upload_all(resumed, CancellationToken(), tracker)

    assert outcome == ScheduleOutcome.COMPLETED
    assert sorted(transport.sends_for(managed.id)) == [0, 1, 2, 3]


def test_max_concurrent_must_be_positive(clock):
    with pytest.raises(ValueError):
        make_scheduler(FakeTransport(), clock, max_concurrent=0)
