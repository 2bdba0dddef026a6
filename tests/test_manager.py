import pytest
from app.uploader.events import AllCompleteEvent, FileCompletedEvent, FileErrorEvent, FileStatusEvent
from app.uploader.manager import UploadQueueManager
from app.uploader.models import ChunkStatus, FileStatus, UploadOptions
from app.uploader.orchestrator import FileRunResult
from app.uploader.scheduler import ScheduleOutcome
from app.uploader.sources import BytesSource
from fakes import FakeApi, FakeTransport, rejected_error, wait_until


def photo(name, size=10):
    return BytesSource(name, bytes(i % 251 for i in range(size)), "image/jpeg")


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def manager(api, transport, clock):
    return UploadQueueManager(api, transport, UploadOptions(chunk_size=4, max_concurrent_chunks=2), clock=clock)


async def test_files_upload_one_at_a_time_in_order(manager, api, transport):
    subscription = manager.events.subscribe()
    first, second = manager.add_files([photo("first.jpg"), photo("second.jpg")])

    await manager.join()

    assert [f.status for f in manager.get_files()] == [FileStatus.COMPLETED, FileStatus.COMPLETED]
    assert api.completed == [first.id, second.id]
    assert transport.max_active_uploads == 1

    events = subscription.drain()
    first_done = events.index(next(e for e in events if isinstance(e, FileCompletedEvent) and e.file_id == first.id))
    second_started = events.index(FileStatusEvent(second.id, FileStatus.UPLOADING))
    assert first_done < second_started
    assert [e for e in events if isinstance(e, AllCompleteEvent)] == [AllCompleteEvent(success=2, failed=0)]


async def test_added_files_report_queue_positions(manager, transport):
    transport.gate.clear()
    first, second, third = manager.add_files([photo("a.jpg"), photo("b.jpg"), photo("c.jpg")])
    await wait_until(lambda: manager.state.active_id == first.id)

    assert manager.state.queue == (second.id, third.id)
    assert [manager.get_file(i).queue_position for i in (second.id, third.id)] == [0, 1]

    transport.gate.set()
    await manager.join()


async def test_pause_and_resume_keeps_completed_chunks(manager, api, transport):
    transport.gate.clear()
    (managed,) = manager.add_files([photo("video.mp4", size=16)])
    await wait_until(lambda: transport.in_flight == 2)

    manager.pause_all()
    transport.gate.set()
    await manager.join()

    paused = manager.get_file(managed.id)
    assert paused.status == FileStatus.PAUSED
    assert paused.uploaded_chunks == 2
    assert api.completed == []

    manager.resume_all()
    await manager.join()

    assert manager.get_file(managed.id).status == FileStatus.COMPLETED
    assert sorted(transport.sends_for(managed.id)) == [0, 1, 2, 3]
    assert api.completed == [managed.id]


async def test_cancel_with_cleanup_resets_files(manager, api, transport):
    transport.gate.clear()
    (managed,) = manager.add_files([photo("video.mp4", size=24)])
    await wait_until(lambda: transport.in_flight == 2)

    await manager.cancel_all_with_cleanup()

    cancelled = manager.get_file(managed.id)
    assert cancelled.status == FileStatus.PENDING
    assert all(c.status == ChunkStatus.PENDING for c in cancelled.chunks)
    assert api.cleaned == [managed.id]
    assert api.completed == []
    assert manager.paused

    transport.gate.set()
    manager.start_upload()
    await manager.join()

    assert manager.get_file(managed.id).status == FileStatus.COMPLETED


async def test_cleanup_failure_is_logged_not_raised(manager, api, transport, caplog):
    async def failing_cleanup(upload_id):
        raise rejected_error("500 cleanup failed")

    api.cleanup_upload = failing_cleanup
    transport.gate.clear()
    manager.add_files([photo("a.jpg")])
    await wait_until(lambda: transport.in_flight > 0)

    await manager.cancel_all_with_cleanup()

    assert "Failed to clean up chunks" in caplog.text


async def test_cancel_leaves_uploaded_chunks(manager, api, transport):
    transport.gate.clear()
    (managed,) = manager.add_files([photo("a.jpg")])
    await wait_until(lambda: transport.in_flight > 0)

    manager.cancel_all()
    await manager.join()

    assert manager.get_file(managed.id).status == FileStatus.PENDING
    assert api.cleaned == []


async def test_failed_file_does_not_block_queue_and_can_be_retried(manager, api, transport):
    subscription = manager.events.subscribe()
    transport.always_fail = rejected_error()
    first, second = manager.add_files([photo("a.jpg"), photo("b.jpg")])
    await manager.join()

    assert manager.get_file(first.id).status == FileStatus.ERROR
    assert manager.get_file(first.id).error == "Failed to upload 3 chunks"
    events = subscription.drain()
    assert FileErrorEvent(first.id, "Failed to upload 3 chunks") in events
    assert AllCompleteEvent(success=0, failed=2) in events

    transport.always_fail = None
    manager.retry_failed()
    await manager.join()

    assert [f.status for f in manager.get_files()] == [FileStatus.COMPLETED, FileStatus.COMPLETED]
    assert AllCompleteEvent(success=2, failed=0) in subscription.drain()


async def test_unexpected_error_moves_on_after_delay(api, transport, clock):
    class FlakyOrchestrator:
        def __init__(self):
            self.runs = []

        async def run(self, managed, token, tracker):
            self.runs.append(managed.name)
            if managed.name == "broken.jpg":
                raise RuntimeError("source vanished")
            return FileRunResult(ScheduleOutcome.COMPLETED, await api.complete_upload(managed))

    orchestrator = FlakyOrchestrator()
    manager = UploadQueueManager(api, transport, UploadOptions(chunk_size=4), clock=clock, orchestrator=orchestrator)
    broken, ok = manager.add_files([photo("broken.jpg"), photo("ok.jpg")])

    await manager.join()

    assert orchestrator.runs == ["broken.jpg", "ok.jpg"]
    assert manager.get_file(broken.id).status == FileStatus.ERROR
    assert manager.get_file(broken.id).error == "source vanished"
    assert manager.get_file(ok.id).status == FileStatus.COMPLETED
    assert clock.sleeps == [1.0]


async def test_remove_queued_file_releases_source(manager, transport):
    transport.gate.clear()
    sources = [photo("a.jpg"), photo("b.jpg")]
    first, second = manager.add_files(sources)
    await wait_until(lambda: manager.state.active_id == first.id)

    manager.remove_file(second.id)

    assert manager.get_file(second.id) is None
    assert manager.state.queue == ()
    with pytest.raises(ValueError):
        await sources[1].read(0, 1)

    transport.gate.set()
    await manager.join()


async def test_remove_active_file_with_cleanup(manager, api, transport):
    transport.gate.clear()
    first, second = manager.add_files([photo("a.jpg"), photo("b.jpg")])
    await wait_until(lambda: transport.in_flight > 0)

    await manager.remove_file_with_cleanup(first.id)
    transport.gate.set()
    await manager.join()

    assert api.cleaned == [first.id]
    assert [f.id for f in manager.get_files()] == [second.id]
    assert manager.get_file(second.id).status == FileStatus.COMPLETED


async def test_clear_completed(manager):
    manager.add_files([photo("a.jpg")])
    await manager.join()

    manager.clear_completed()

    assert manager.get_files() == []


async def test_close_ends_subscriptions(manager):
    subscription = manager.events.subscribe()
    manager.add_files([photo("a.jpg")])
    await manager.join()

    await manager.close()

    received = [event async for event in subscription]
    assert any(isinstance(e, AllCompleteEvent) for e in received)
