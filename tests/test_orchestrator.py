import pytest
from app.uploader.control import CancellationToken, RetryPolicy
from app.uploader.errors import ChunkUploadError, CompletionError, InitError
from app.uploader.orchestrator import FileUploadOrchestrator
from app.uploader.scheduler import ChunkScheduler, ScheduleOutcome
from fakes import FakeApi, FakeTransport, RecordingTracker, make_file, rejected_error, retryable_error


class StoppedScheduler:
    def __init__(self, outcome):
        self.outcome = outcome

    async def upload_all(self, managed, token, tracker):
        return self.outcome


def make_orchestrator(api, transport, clock, policy=RetryPolicy()):
    return FileUploadOrchestrator(api, ChunkScheduler(transport, policy, 3, clock), policy, clock)


async def test_runs_init_chunks_and_complete(clock):
    api = FakeApi()
    transport = FakeTransport()
    managed = make_file(size=10, chunk_size=4)

    result = await make_orchestrator(api, transport, clock).run(managed, CancellationToken(), RecordingTracker())

    assert result.outcome == ScheduleOutcome.COMPLETED
    assert result.completion.media_item_id == f"media-{managed.id}"
    assert api.initialized == [managed.id]
    assert api.completed == [managed.id]
    assert len(transport.sent) == 3


async def test_transient_init_failure_retried(clock):
    api = FakeApi(init_failures=[retryable_error()])

    result = await make_orchestrator(api, FakeTransport(), clock).run(make_file(), CancellationToken(), RecordingTracker())

    assert result.outcome == ScheduleOutcome.COMPLETED
    assert len(api.initialized) == 2
    assert clock.sleeps == [2.0]


async def test_rejected_init_sends_no_chunks(clock):
    api = FakeApi(init_failures=[rejected_error()])
    transport = FakeTransport()

    with pytest.raises(InitError, match="Failed to initialize upload"):
        await make_orchestrator(api, transport, clock).run(make_file(), CancellationToken(), RecordingTracker())

    assert transport.sent == []
    assert api.completed == []


async def test_chunk_count_mismatch_fails_without_retry(clock):
    api = FakeApi(complete_failures=[rejected_error("400 Not all chunks received")])

    with pytest.raises(CompletionError, match="Not all chunks received"):
        await make_orchestrator(api, FakeTransport(), clock).run(make_file(), CancellationToken(), RecordingTracker())

    assert api.complete_failures == []
    assert clock.sleeps == []


async def test_chunk_failure_skips_completion(clock):
    api = FakeApi()
    transport = FakeTransport(failures={0: [rejected_error()]})

    with pytest.raises(ChunkUploadError):
        await make_orchestrator(api, transport, clock).run(make_file(), CancellationToken(), RecordingTracker())

    assert api.completed == []


@pytest.mark.parametrize("outcome", [ScheduleOutcome.PAUSED, ScheduleOutcome.ABORTED])
async def test_stopped_run_does_not_complete(clock, outcome):
    api = FakeApi()
    orchestrator = FileUploadOrchestrator(api, StoppedScheduler(outcome), RetryPolicy(), clock)

    result = await orchestrator.run(make_file(), CancellationToken(), RecordingTracker())

    assert result.outcome == outcome
    assert result.completion is None
    assert api.completed == []


async def test_cancelled_token_aborts_before_init(clock):
    api = FakeApi()
    token = CancellationToken()
    token.cancel()

    result = await make_orchestrator(api, FakeTransport(), clock).run(make_file(), token, RecordingTracker())

    assert result.outcome == ScheduleOutcome.ABORTED
    assert api.initialized == []
