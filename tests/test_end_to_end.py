import httpx
import pytest
from main import app
from app.core.config import settings
from app.services.media_library import MediaLibrary
from app.uploader.api_client import UploadApiClient
from app.uploader.errors import TransportError
from app.uploader.events import AllCompleteEvent
from app.uploader.manager import UploadQueueManager
from app.uploader.models import FileStatus, ManagedFile, UploadOptions
from app.uploader.sources import BytesSource, PathSource
from app.uploader.transport import ChunkReceipt, ChunkTransport


@pytest.fixture
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


async def stored_items():
    library = MediaLibrary(settings.MEDIA_DIR)
    items = {}
    for item_dir in settings.MEDIA_DIR.iterdir():
        metadata = await library.get_metadata(item_dir.name)
        items[metadata["filename"]] = await library.read(item_dir.name)
    assert library.count() == len(items)
    return items


async def test_queue_uploads_files_to_media_library(client, clock, tmp_path):
    video = tmp_path / "first-dance.mp4"
    video_bytes = bytes(i % 256 for i in range(10_000))
    video.write_bytes(video_bytes)
    photo_bytes = b"\xff\xd8\xff" + b"x" * 500

    manager = UploadQueueManager.from_client(client, UploadOptions(chunk_size=1024), clock=clock)
    subscription = manager.events.subscribe()
    manager.add_files([PathSource(video), BytesSource("toast.jpg", photo_bytes)])
    await manager.join()

    assert [f.status for f in manager.get_files()] == [FileStatus.COMPLETED, FileStatus.COMPLETED]
    assert manager.get_files()[0].total_chunks == 10
    assert await stored_items() == {"first-dance.mp4": video_bytes, "toast.jpg": photo_bytes}
    assert list(settings.TEMP_DIR.iterdir()) == []
    assert AllCompleteEvent(success=2, failed=0) in subscription.drain()

    await manager.close()


async def test_api_client_against_server(client, admin_token):
    transport = ChunkTransport(client)
    api = UploadApiClient(client)
    managed = ManagedFile.create(BytesSource("vows.jpg", b"aaaabbbbcc"), 4, FileStatus.PENDING)

    await api.init_upload(managed)
    receipt = await transport.send(managed.id, 0, managed.total_chunks, b"aaaa")
    await transport.send(managed.id, 2, managed.total_chunks, b"cc")
    assert receipt == ChunkReceipt(chunk_index=0, progress=33)

    with pytest.raises(TransportError) as exc_info:
        await api.complete_upload(managed)
    assert exc_info.value.status_code == 400
    assert not exc_info.value.retryable

    cleanup = await api.cleanup_upload(managed.id)
    assert (cleanup.deleted_count, cleanup.failed_count) == (2, 0)

    with pytest.raises(TransportError) as exc_info:
        await api.cleanup_orphaned()
    assert exc_info.value.status_code == 401

    sweep = await api.cleanup_orphaned(admin_token)
    assert sweep.deleted_count == 0


async def test_uploaded_empty_file(client, clock):
    manager = UploadQueueManager.from_client(client, UploadOptions(chunk_size=4), clock=clock)
    manager.add_files([BytesSource("empty.jpg", b"")])
    await manager.join()

    assert manager.get_files()[0].status == FileStatus.COMPLETED
    assert await stored_items() == {"empty.jpg": b""}
