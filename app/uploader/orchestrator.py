import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Type, TypeVar

from app.uploader.api_client import CompletionResult, UploadApiClient
from app.uploader.control import AsyncioClock, CancellationToken, Clock, RetryPolicy
from app.uploader.errors import CompletionError, InitError, OperationCancelled, TransportError, UploadError
from app.uploader.models import ManagedFile
from app.uploader.scheduler import ChunkScheduler, ChunkTracker, ScheduleOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FileRunResult:
    outcome: ScheduleOutcome
    completion: Optional[CompletionResult] = None


class FileUploadOrchestrator:
    """
    Runs one file through init, chunk transfer and completion.

    Transient failures of the init and complete calls are retried with the
    same policy as chunks; a rejected request (for example a chunk count
    mismatch at completion) fails the file straight away. A paused or aborted
    run returns early without completing.
    """

    def __init__(
        self,
        api: UploadApiClient,
        scheduler: ChunkScheduler,
        retry_policy: RetryPolicy = RetryPolicy(),
        clock: Optional[Clock] = None,
    ):
        self.api = api
        self.scheduler = scheduler
        self.retry_policy = retry_policy
        self.clock = clock or AsyncioClock()

    async def run(self, managed: ManagedFile, token: CancellationToken, tracker: ChunkTracker) -> FileRunResult:
        started = self.clock.now()
        try:
            await self._call(lambda: self.api.init_upload(managed), token, InitError, "initialize")
            logger.info(f"Initialized upload {managed.id} ({managed.name}, {managed.total_chunks} chunks)")

            outcome = await self.scheduler.upload_all(managed, token, tracker)
            if outcome != ScheduleOutcome.COMPLETED:
                return FileRunResult(outcome)

            completion = await self._call(lambda: self.api.complete_upload(managed), token, CompletionError, "complete")
        except OperationCancelled:
            logger.info(f"Upload aborted for file {managed.id}")
            return FileRunResult(ScheduleOutcome.ABORTED)

        logger.info(
            f"Upload {managed.id} stored as media item {completion.media_item_id} "
            f"after {self.clock.now() - started:.1f}s"
        )
        return FileRunResult(ScheduleOutcome.COMPLETED, completion)

    async def _call(
        self,
        request: Callable[[], Awaitable[T]],
        token: CancellationToken,
        error_type: Type[UploadError],
        action: str,
    ) -> T:
        retries = 0
        while True:
            try:
                return await token.guard(request())
            except TransportError as e:
                if not (e.retryable and self.retry_policy.can_retry(retries)):
                    raise error_type(f"Failed to {action} upload: {e}") from e
                retries += 1
                delay = self.retry_policy.delay_for(retries)
                logger.warning(f"Failed to {action} upload ({e}); retry {retries}/{self.retry_policy.max_retries} in {delay}s")
                await token.guard(self.clock.sleep(delay))
