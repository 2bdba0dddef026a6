"""
Events the queue manager publishes for the UI layer.

Consumers subscribe to an ``EventStream`` and read events in the order the
manager produced them; publishing never runs consumer code.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Set, Tuple, Union

from app.uploader.api_client import CompletionResult
from app.uploader.models import ChunkStatus, FileStatus


@dataclass(frozen=True)
class ProgressEvent:
    file_id: str
    progress: int


@dataclass(frozen=True)
class FileStatusEvent:
    file_id: str
    status: FileStatus
    queue_position: Optional[int] = None


@dataclass(frozen=True)
class ChunkStatusEvent:
    file_id: str
    chunk_index: int
    status: ChunkStatus


@dataclass(frozen=True)
class FileCompletedEvent:
    file_id: str
    result: CompletionResult


@dataclass(frozen=True)
class FileErrorEvent:
    file_id: str
    error: str


@dataclass(frozen=True)
class QueueUpdatedEvent:
    queue: Tuple[str, ...]


@dataclass(frozen=True)
class AllCompleteEvent:
    success: int
    failed: int


UploadEvent = Union[
    ProgressEvent,
    FileStatusEvent,
    ChunkStatusEvent,
    FileCompletedEvent,
    FileErrorEvent,
    QueueUpdatedEvent,
    AllCompleteEvent,
]


class Subscription:
    def __init__(self, stream: "EventStream"):
        self._stream = stream
        self._queue: "asyncio.Queue[Optional[UploadEvent]]" = asyncio.Queue()

    def put(self, event: Optional[UploadEvent]) -> None:
        self._queue.put_nowait(event)

    async def get(self) -> Optional[UploadEvent]:
        """Next event, or None once the stream is closed."""
        return await self._queue.get()

    def drain(self) -> List[UploadEvent]:
        """Everything published so far that has not been read yet."""
        events = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        self._stream.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[UploadEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[UploadEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class EventStream:
    def __init__(self):
        self._subscribers: Set[Subscription] = set()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def publish(self, event: UploadEvent) -> None:
        for subscription in list(self._subscribers):
            subscription.put(event)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.put(None)
        self._subscribers.clear()
