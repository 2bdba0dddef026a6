import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

from app.uploader.sources import FileSource
from app.uploader.splitter import split

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024  # 2MB


class FileStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (FileStatus.COMPLETED, FileStatus.ERROR)


class ChunkStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


def new_upload_id() -> str:
    """Time-ordered id with a random suffix, safe to use as a storage path."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


@dataclass(frozen=True)
class UploadOptions:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = 3
    retry_delay: float = 2.0  # seconds, multiplied by the retry number
    max_concurrent_chunks: int = 3
    error_retry_delay: float = 1.0  # pause before the queue moves on after an unexpected error
    request_timeout: float = 60.0

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.max_concurrent_chunks < 1:
            raise ValueError("max_concurrent_chunks must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")


@dataclass(frozen=True)
class ChunkDescriptor:
    index: int
    start: int
    end: int
    status: ChunkStatus = ChunkStatus.PENDING
    retries: int = 0


@dataclass(frozen=True)
class ManagedFile:
    """
    One file under the queue manager. Instances are never mutated; every
    change produces a new copy through the manager.
    """

    id: str
    source: FileSource = field(repr=False, compare=False)
    name: str
    size: int
    content_type: str
    chunk_size: int
    chunks: Tuple[ChunkDescriptor, ...]
    status: FileStatus = FileStatus.PENDING
    queue_position: Optional[int] = None
    retries: int = 0
    error: Optional[str] = None

    @classmethod
    def create(cls, source: FileSource, chunk_size: int, status: FileStatus, upload_id: Optional[str] = None) -> "ManagedFile":
        chunks = tuple(ChunkDescriptor(r.index, r.start, r.end) for r in split(source.size, chunk_size))
        return cls(
            id=upload_id or new_upload_id(),
            source=source,
            name=source.name,
            size=source.size,
            content_type=source.content_type,
            chunk_size=chunk_size,
            chunks=chunks,
            status=status,
        )

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def uploaded_chunks(self) -> int:
        return sum(1 for chunk in self.chunks if chunk.status == ChunkStatus.COMPLETED)

    @property
    def progress(self) -> int:
        return round(self.uploaded_chunks / self.total_chunks * 100)

    def with_chunk(self, index: int, **changes) -> "ManagedFile":
        chunks = list(self.chunks)
        chunks[index] = replace(chunks[index], **changes)
        return replace(self, chunks=tuple(chunks))

    def with_chunks_reset(self, *statuses: ChunkStatus) -> "ManagedFile":
        """Put chunks in any of ``statuses`` back to pending with no retries."""
        chunks = tuple(
            replace(chunk, status=ChunkStatus.PENDING, retries=0) if chunk.status in statuses else chunk
            for chunk in self.chunks
        )
        return replace(self, chunks=chunks)
