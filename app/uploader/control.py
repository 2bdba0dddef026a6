"""
Cancellation, retry policy and time source shared by the upload pipeline.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Protocol, TypeVar

from app.uploader.errors import OperationCancelled

T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Wall-clock time and real asyncio sleeps."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often and how patiently to retry a failed request.

    ``max_retries`` counts retries, not attempts: a request is tried at most
    ``max_retries + 1`` times. The wait before retry ``n`` (1-based) is
    ``base_delay * n``.
    """

    max_retries: int = 3
    base_delay: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def can_retry(self, retries_so_far: int) -> bool:
        return retries_so_far < self.max_retries

    def delay_for(self, retry_number: int) -> float:
        return self.base_delay * retry_number


class CancellationToken:
    """
    Cooperative stop signal handed from the manager down to the transport.

    ``pause()`` asks the pipeline to stop starting new work and let what is
    in flight finish. ``cancel()`` also aborts in-flight requests.
    """

    def __init__(self):
        self._stop = asyncio.Event()
        self._cancel = asyncio.Event()
        self._pause_requested = False

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def pause_requested(self) -> bool:
        return self._pause_requested

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        self._cancel.set()
        self._stop.set()

    def pause(self) -> None:
        self._pause_requested = True
        self._stop.set()

    async def wait(self) -> None:
        await self._stop.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled("Upload cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token is cancelled first.

        On cancellation the request is cancelled, drained, and
        ``OperationCancelled`` is raised. Pausing does not interrupt it.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled("Upload cancelled")
        work = asyncio.ensure_future(awaitable)
        stopper = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            stopper.cancel()
            await asyncio.gather(stopper, return_exceptions=True)

        if work.done():
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelled("Upload cancelled")
