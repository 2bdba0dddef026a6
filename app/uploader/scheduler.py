import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Deque, Dict, Optional, Protocol, Set

from app.uploader.control import AsyncioClock, CancellationToken, Clock, RetryPolicy
from app.uploader.errors import ChunkUploadError, OperationCancelled, TransportError
from app.uploader.models import ChunkDescriptor, ChunkStatus, ManagedFile
from app.uploader.transport import ChunkReceipt, ChunkTransport

logger = logging.getLogger(__name__)


class ScheduleOutcome(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    ABORTED = "aborted"


class ChunkTracker(Protocol):
    """Receives chunk state changes; the queue manager is the only implementation."""

    def chunk_status_changed(self, file_id: str, chunk_index: int, status: ChunkStatus) -> None: ...

    def chunk_retried(self, file_id: str, chunk_index: int, retries: int) -> None: ...


class ChunkScheduler:
    """
    Uploads the unfinished chunks of one file.

    At most ``max_concurrent`` chunks are in flight. A failed chunk goes back
    to the end of the work queue after the policy's backoff, without holding a
    slot while it waits. Completed chunks are never sent again, so calling
    ``upload_all`` after a pause resumes where the file stopped.
    """

    def __init__(
        self,
        transport: ChunkTransport,
        retry_policy: RetryPolicy = RetryPolicy(),
        max_concurrent: int = 3,
        clock: Optional[Clock] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.transport = transport
        self.retry_policy = retry_policy
        self.max_concurrent = max_concurrent
        self.clock = clock or AsyncioClock()

    async def upload_all(self, managed: ManagedFile, token: CancellationToken, tracker: ChunkTracker) -> ScheduleOutcome:
        """
        Returns COMPLETED once every chunk is stored, PAUSED or ABORTED when the
        token stops the run, and raises ``ChunkUploadError`` when chunks fail
        for good.
        """
        chunks = {chunk.index: chunk for chunk in managed.chunks}
        retries = {chunk.index: chunk.retries for chunk in managed.chunks}
        work: Deque[int] = deque(chunk.index for chunk in managed.chunks if chunk.status != ChunkStatus.COMPLETED)
        in_flight: Dict[asyncio.Task, int] = {}
        backoffs: Dict[asyncio.Task, int] = {}
        failed: Set[int] = set()

        logger.debug(f"Uploading {len(work)} of {managed.total_chunks} chunks for {managed.id}")
        stopper = asyncio.ensure_future(token.wait())
        stopped_early = False

        try:
            while work or in_flight or backoffs:
                if token.stop_requested:
                    stopped_early = True
                    break

                while work and len(in_flight) < self.max_concurrent:
                    index = work.popleft()
                    tracker.chunk_status_changed(managed.id, index, ChunkStatus.UPLOADING)
                    task = asyncio.ensure_future(self._send(managed, chunks[index], token))
                    in_flight[task] = index

                done, _ = await asyncio.wait(
                    set(in_flight) | set(backoffs) | {stopper},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                for task in done:
                    if task is stopper:
                        continue
                    if task in backoffs:
                        work.append(backoffs.pop(task))
                        continue

                    index = in_flight.pop(task)
                    self._settle(managed.id, index, task, retries, backoffs, failed, token, tracker)
        except asyncio.CancelledError:
            for task in in_flight:
                task.cancel()
            raise
        finally:
            stopper.cancel()
            await self._drain(in_flight, backoffs, stopper, managed, token, tracker)

        if token.cancelled:
            logger.info(f"Chunk upload aborted for {managed.id}")
            return ScheduleOutcome.ABORTED
        if stopped_early:
            logger.info(f"Chunk upload paused for {managed.id}")
            return ScheduleOutcome.PAUSED
        if failed:
            raise ChunkUploadError(failed)
        return ScheduleOutcome.COMPLETED

    async def _send(self, managed: ManagedFile, chunk: ChunkDescriptor, token: CancellationToken) -> ChunkReceipt:
        token.raise_if_cancelled()
        data = await managed.source.read(chunk.start, chunk.end)
        return await token.guard(self.transport.send(managed.id, chunk.index, managed.total_chunks, data))

    def _settle(self, file_id, index, task, retries, backoffs, failed, token, tracker) -> None:
        error = task.exception()
        if error is None:
            tracker.chunk_status_changed(file_id, index, ChunkStatus.COMPLETED)
            return
        if isinstance(error, OperationCancelled):
            tracker.chunk_status_changed(file_id, index, ChunkStatus.PENDING)
            return

        tracker.chunk_status_changed(file_id, index, ChunkStatus.ERROR)
        retryable = not isinstance(error, TransportError) or error.retryable
        if not isinstance(error, TransportError):
            logger.error(f"Error preparing chunk {index} for file {file_id}: {error!r}")

        if retryable and self.retry_policy.can_retry(retries[index]):
            if token.stop_requested:
                # Left unfinished; the next run picks it up
                return
            retries[index] += 1
            tracker.chunk_retried(file_id, index, retries[index])
            delay = self.retry_policy.delay_for(retries[index])
            logger.warning(
                f"Chunk {index} of file {file_id} failed ({error}); "
                f"retry {retries[index]}/{self.retry_policy.max_retries} in {delay}s"
            )
            backoffs[asyncio.ensure_future(self.clock.sleep(delay))] = index
            return

        logger.error(f"Chunk {index} of file {file_id} failed permanently: {error}")
        failed.add(index)

    async def _drain(self, in_flight, backoffs, stopper, managed, token, tracker) -> None:
        """
        Wait for every started send to settle. Cancelled tokens abort them
        first; paused ones let them finish and record their result.
        """
        for task in backoffs:
            task.cancel()
        if token.cancelled:
            for task in in_flight:
                task.cancel()

        pending = list(in_flight) + list(backoffs) + [stopper]
        await asyncio.gather(*pending, return_exceptions=True)

        for task, index in in_flight.items():
            if task.cancelled() or isinstance(task.exception(), OperationCancelled):
                tracker.chunk_status_changed(managed.id, index, ChunkStatus.PENDING)
            elif task.exception() is None:
                tracker.chunk_status_changed(managed.id, index, ChunkStatus.COMPLETED)
            else:
                tracker.chunk_status_changed(managed.id, index, ChunkStatus.ERROR)
        in_flight.clear()
        backoffs.clear()
