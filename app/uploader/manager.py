import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

import httpx

from app.uploader.api_client import UploadApiClient
from app.uploader.control import AsyncioClock, CancellationToken, Clock, RetryPolicy
from app.uploader.errors import UploadError
from app.uploader.events import EventStream
from app.uploader.models import ChunkStatus, FileStatus, ManagedFile, UploadOptions
from app.uploader.orchestrator import FileUploadOrchestrator
from app.uploader.scheduler import ChunkScheduler, ScheduleOutcome
from app.uploader.sources import FileSource
from app.uploader.state import (
    AbortUpload,
    Action,
    CancelRequested,
    ChunkChanged,
    ChunkRetried,
    ChunksDiscarded,
    CleanupUpload,
    Command,
    CompletedCleared,
    Emit,
    FileActivated,
    FileFailed,
    FileInterrupted,
    FileRemoved,
    FilesAdded,
    FileSucceeded,
    PauseRequested,
    PauseUpload,
    ProcessingFailed,
    QueueSnapshot,
    ReleaseSource,
    ResumeRequested,
    RetryRequested,
    ScheduleProcessing,
    UploadStarted,
    reduce,
)
from app.uploader.transport import CHUNKED_UPLOAD_PATH, ChunkTransport

logger = logging.getLogger(__name__)


class UploadQueueManager:
    """
    Uploads a queue of files one at a time, in the order they were added.

    All methods must be called from the event loop the manager runs on.
    State changes go through ``app.uploader.state.reduce``; the manager only
    carries out the commands it returns and publishes events to ``events``.
    """

    def __init__(
        self,
        api: UploadApiClient,
        transport: ChunkTransport,
        options: UploadOptions = UploadOptions(),
        clock: Optional[Clock] = None,
        events: Optional[EventStream] = None,
        orchestrator: Optional[FileUploadOrchestrator] = None,
    ):
        self.api = api
        self.options = options
        self.clock = clock or AsyncioClock()
        self.events = events or EventStream()

        if orchestrator is None:
            policy = RetryPolicy(options.max_retries, options.retry_delay)
            scheduler = ChunkScheduler(transport, policy, options.max_concurrent_chunks, self.clock)
            orchestrator = FileUploadOrchestrator(api, scheduler, policy, self.clock)
        self.orchestrator = orchestrator

        self._state = QueueSnapshot()
        self._tokens: Dict[str, CancellationToken] = {}
        self._processing = False
        self._rerun_after: Optional[float] = None
        self._pass_task: Optional[asyncio.Task] = None
        self._timers: Set[asyncio.Task] = set()

    @classmethod
    def from_client(cls, client: httpx.AsyncClient, options: UploadOptions = UploadOptions(), base_path: str = CHUNKED_UPLOAD_PATH, **kwargs) -> "UploadQueueManager":
        timeout = options.request_timeout
        return cls(UploadApiClient(client, base_path, timeout), ChunkTransport(client, base_path, timeout), options, **kwargs)

    @property
    def state(self) -> QueueSnapshot:
        return self._state

    @property
    def paused(self) -> bool:
        return self._state.paused

    def get_files(self) -> List[ManagedFile]:
        return list(self._state.files)

    def get_file(self, file_id: str) -> Optional[ManagedFile]:
        return self._state.get(file_id)

    def add_files(self, sources: Iterable[FileSource]) -> List[ManagedFile]:
        added = tuple(ManagedFile.create(source, self.options.chunk_size, FileStatus.QUEUED) for source in sources)
        if not added:
            return []
        self._dispatch(FilesAdded(added))
        logger.info(f"Added {len(added)} files to the upload queue")
        return [self._state.get(managed.id) for managed in added]

    def remove_file(self, file_id: str) -> None:
        self._dispatch(FileRemoved(file_id))

    async def remove_file_with_cleanup(self, file_id: str) -> None:
        """Remove a file and delete whatever chunks of it the server holds."""
        managed = self._state.get(file_id)
        if managed is None:
            return
        needs_cleanup = managed.status != FileStatus.COMPLETED and (
            managed.uploaded_chunks > 0 or managed.status in (FileStatus.UPLOADING, FileStatus.PAUSED)
        )
        running = self._pass_task if self._state.active_id == file_id else None

        self._dispatch(FileRemoved(file_id))
        if running is not None:
            await asyncio.wait({running})
        if needs_cleanup:
            await self._cleanup(file_id)

    def start_upload(self) -> None:
        self._dispatch(UploadStarted())

    def pause_all(self) -> None:
        self._dispatch(PauseRequested())
        logger.info("Upload queue paused")

    def resume_all(self) -> None:
        self._dispatch(ResumeRequested())
        logger.info("Upload queue resumed")

    def retry_failed(self) -> None:
        self._dispatch(RetryRequested())

    def cancel_all(self) -> None:
        """Abort the active upload and halt the queue; files go back to pending."""
        self._dispatch(CancelRequested())
        logger.info("Upload queue cancelled")

    async def cancel_all_with_cleanup(self) -> None:
        """
        Like ``cancel_all``, then deletes the server-side chunks of every file
        that had started uploading. Cleanup failures are logged, never raised.
        """
        running = self._pass_task
        commands = self._dispatch(CancelRequested(cleanup=True))
        upload_ids = tuple(c.upload_id for c in commands if isinstance(c, CleanupUpload))

        if running is not None and not running.done():
            await asyncio.wait({running})

        self._dispatch(ChunksDiscarded(upload_ids))
        if upload_ids:
            await asyncio.gather(*(self._cleanup(upload_id) for upload_id in upload_ids))
        logger.info(f"Upload queue cancelled, cleaned up {len(upload_ids)} uploads")

    def clear_completed(self) -> None:
        self._dispatch(CompletedCleared())

    async def join(self) -> None:
        """Wait until no processing pass is running or scheduled."""
        while True:
            pending = {t for t in self._timers if not t.done()}
            if self._pass_task is not None and not self._pass_task.done():
                pending.add(self._pass_task)
            if not pending:
                return
            await asyncio.wait(pending)

    async def close(self) -> None:
        self.cancel_all()
        for timer in list(self._timers):
            timer.cancel()
        await self.join()
        for managed in self._state.files:
            managed.source.close()
        self.events.close()

    # Scheduler callbacks

    def chunk_status_changed(self, file_id: str, chunk_index: int, status: ChunkStatus) -> None:
        self._dispatch(ChunkChanged(file_id, chunk_index, status))

    def chunk_retried(self, file_id: str, chunk_index: int, retries: int) -> None:
        self._dispatch(ChunkRetried(file_id, chunk_index, retries))

    def _dispatch(self, action: Action) -> List[Command]:
        transition = reduce(self._state, action)
        self._state = transition.snapshot

        for command in transition.commands:
            if isinstance(command, Emit):
                self.events.publish(command.event)
            elif isinstance(command, AbortUpload):
                token = self._tokens.get(command.file_id)
                if token is not None:
                    token.cancel()
            elif isinstance(command, PauseUpload):
                token = self._tokens.get(command.file_id)
                if token is not None:
                    token.pause()
            elif isinstance(command, ReleaseSource):
                command.source.close()
            elif isinstance(command, ScheduleProcessing):
                self._schedule_processing(self.options.error_retry_delay if command.after_error else 0.0)
            # CleanupUpload is carried out by the caller
        return transition.commands

    def _schedule_processing(self, delay: float = 0.0) -> None:
        if self._processing:
            self._rerun_after = max(self._rerun_after or 0.0, delay)
            return
        if delay > 0:
            timer = asyncio.ensure_future(self._process_later(delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return
        if self._pass_task is None or self._pass_task.done():
            self._pass_task = asyncio.ensure_future(self._process_queue())

    async def _process_later(self, delay: float) -> None:
        await self.clock.sleep(delay)
        self._schedule_processing()

    async def _process_queue(self) -> None:
        state = self._state
        if self._processing or state.paused or state.active_id is not None or not state.queue:
            return

        self._processing = True
        self._rerun_after = None
        file_id = state.queue[0]
        try:
            await self._upload(file_id)
        except Exception as e:
            logger.error(f"Error processing upload queue at file {file_id}: {e!r}")
            self._dispatch(ProcessingFailed(file_id, str(e) or e.__class__.__name__))
        finally:
            self._processing = False
            self._tokens.pop(file_id, None)

        if self._rerun_after is not None:
            delay, self._rerun_after = self._rerun_after, None
            if delay > 0:
                self._schedule_processing(delay)
            else:
                self._pass_task = asyncio.ensure_future(self._process_queue())

    async def _upload(self, file_id: str) -> None:
        token = CancellationToken()
        self._tokens[file_id] = token
        self._dispatch(FileActivated(file_id))
        managed = self._state.get(file_id)
        logger.info(f"Starting upload of {managed.name} ({file_id})")

        try:
            result = await self.orchestrator.run(managed, token, self)
        except UploadError as e:
            logger.error(f"Upload of {managed.name} ({file_id}) failed: {e}")
            self._dispatch(FileFailed(file_id, str(e)))
            return

        if result.outcome == ScheduleOutcome.COMPLETED:
            self._dispatch(FileSucceeded(file_id, result.completion))
        else:
            self._dispatch(FileInterrupted(file_id, result.outcome))

    async def _cleanup(self, upload_id: str) -> None:
        try:
            result = await self.api.cleanup_upload(upload_id)
            logger.info(f"Cleaned up {result.deleted_count} chunks for upload {upload_id}")
        except UploadError as e:
            logger.error(f"Failed to clean up chunks for upload {upload_id}: {e}")
