"""
Queue state for the upload manager as a pure transition function.

``reduce(snapshot, action)`` returns the next snapshot and the commands the
manager must carry out (publish an event, abort or pause the active upload,
release a file source, clean up chunks, schedule a processing pass). No I/O
happens here.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple, Union

from app.uploader.api_client import CompletionResult
from app.uploader.events import (
    AllCompleteEvent,
    ChunkStatusEvent,
    FileCompletedEvent,
    FileErrorEvent,
    FileStatusEvent,
    ProgressEvent,
    QueueUpdatedEvent,
    UploadEvent,
)
from app.uploader.models import ChunkStatus, FileStatus, ManagedFile
from app.uploader.scheduler import ScheduleOutcome
from app.uploader.sources import FileSource

WAITING = (FileStatus.PENDING, FileStatus.QUEUED, FileStatus.PAUSED)


@dataclass(frozen=True)
class QueueSnapshot:
    files: Tuple[ManagedFile, ...] = ()
    queue: Tuple[str, ...] = ()
    active_id: Optional[str] = None
    paused: bool = False
    all_complete_reported: bool = False

    def get(self, file_id: str) -> Optional[ManagedFile]:
        for managed in self.files:
            if managed.id == file_id:
                return managed
        return None


# Actions

@dataclass(frozen=True)
class FilesAdded:
    files: Tuple[ManagedFile, ...]


@dataclass(frozen=True)
class FileRemoved:
    file_id: str


@dataclass(frozen=True)
class UploadStarted:
    pass


@dataclass(frozen=True)
class PauseRequested:
    pass


@dataclass(frozen=True)
class ResumeRequested:
    pass


@dataclass(frozen=True)
class RetryRequested:
    pass


@dataclass(frozen=True)
class CancelRequested:
    cleanup: bool = False


@dataclass(frozen=True)
class ChunksDiscarded:
    """The server copies of these uploads' chunks were (or are about to be) deleted."""

    file_ids: Tuple[str, ...]


@dataclass(frozen=True)
class CompletedCleared:
    pass


@dataclass(frozen=True)
class FileActivated:
    file_id: str


@dataclass(frozen=True)
class ChunkChanged:
    file_id: str
    chunk_index: int
    status: ChunkStatus


@dataclass(frozen=True)
class ChunkRetried:
    file_id: str
    chunk_index: int
    retries: int


@dataclass(frozen=True)
class FileSucceeded:
    file_id: str
    result: CompletionResult


@dataclass(frozen=True)
class FileFailed:
    file_id: str
    error: str


@dataclass(frozen=True)
class FileInterrupted:
    file_id: str
    outcome: ScheduleOutcome


@dataclass(frozen=True)
class ProcessingFailed:
    """An unexpected error escaped a processing pass."""

    file_id: str
    error: str


Action = Union[
    FilesAdded, FileRemoved, UploadStarted, PauseRequested, ResumeRequested,
    RetryRequested, CancelRequested, ChunksDiscarded, CompletedCleared,
    FileActivated, ChunkChanged, ChunkRetried, FileSucceeded, FileFailed,
    FileInterrupted, ProcessingFailed,
]


# Commands

@dataclass(frozen=True)
class Emit:
    event: UploadEvent


@dataclass(frozen=True)
class AbortUpload:
    file_id: str


@dataclass(frozen=True)
class PauseUpload:
    file_id: str


@dataclass(frozen=True)
class ReleaseSource:
    source: FileSource


@dataclass(frozen=True)
class CleanupUpload:
    upload_id: str


@dataclass(frozen=True)
class ScheduleProcessing:
    after_error: bool = False


Command = Union[Emit, AbortUpload, PauseUpload, ReleaseSource, CleanupUpload, ScheduleProcessing]


@dataclass
class Transition:
    snapshot: QueueSnapshot
    commands: List[Command] = field(default_factory=list)

    def emit(self, event: UploadEvent) -> None:
        self.commands.append(Emit(event))

    def update_file(self, file_id: str, **changes) -> Optional[ManagedFile]:
        """Replace one file, announcing a status change if there is one."""
        current = self.snapshot.get(file_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self.snapshot = replace(
            self.snapshot,
            files=tuple(updated if f.id == file_id else f for f in self.snapshot.files),
        )
        if updated.status != current.status:
            position = updated.queue_position if updated.status == FileStatus.QUEUED else None
            self.emit(FileStatusEvent(file_id, updated.status, position))
        return updated

    def replace_file(self, managed: ManagedFile) -> None:
        self.snapshot = replace(
            self.snapshot,
            files=tuple(managed if f.id == managed.id else f for f in self.snapshot.files),
        )

    def requeue(self) -> None:
        """
        Rebuild the waiting queue: every waiting file except the active one,
        in the order files were added. While the manager runs, waiting files
        behind another file become ``queued``; a halted manager leaves
        statuses alone.
        """
        snapshot = self.snapshot
        queue = tuple(
            f.id for f in snapshot.files
            if f.status in WAITING and f.id != snapshot.active_id
        )

        for position, file_id in enumerate(queue):
            managed = self.snapshot.get(file_id)
            status = managed.status
            behind_another = snapshot.active_id is not None or position > 0
            if status == FileStatus.PENDING and behind_another and not snapshot.paused:
                status = FileStatus.QUEUED
            new_position = position if status == FileStatus.QUEUED else None
            if status != managed.status:
                self.update_file(file_id, status=status, queue_position=new_position)
            elif new_position != managed.queue_position:
                self.replace_file(replace(managed, queue_position=new_position))
                if status == FileStatus.QUEUED:
                    self.emit(FileStatusEvent(file_id, status, new_position))

        for managed in self.snapshot.files:
            if managed.id not in queue and managed.queue_position is not None:
                self.replace_file(replace(managed, queue_position=None))

        if queue != snapshot.queue:
            self.emit(QueueUpdatedEvent(queue))
        self.snapshot = replace(self.snapshot, queue=queue)

    def kick(self, after_error: bool = False) -> None:
        snapshot = self.snapshot
        if not snapshot.paused and snapshot.active_id is None and snapshot.queue:
            self.commands.append(ScheduleProcessing(after_error))

    def release_active(self, file_id: str) -> None:
        if self.snapshot.active_id == file_id:
            self.snapshot = replace(self.snapshot, active_id=None)

    def check_all_complete(self) -> None:
        files = self.snapshot.files
        if not files or self.snapshot.all_complete_reported:
            return
        completed = sum(1 for f in files if f.status == FileStatus.COMPLETED)
        failed = sum(1 for f in files if f.status == FileStatus.ERROR)
        if completed + failed == len(files):
            self.emit(AllCompleteEvent(success=completed, failed=failed))
            self.snapshot = replace(self.snapshot, all_complete_reported=True)


def reduce(snapshot: QueueSnapshot, action: Action) -> Transition:
    t = Transition(snapshot)

    if isinstance(action, FilesAdded):
        idle = snapshot.active_id is None and not snapshot.queue
        added = []
        for position, managed in enumerate(action.files):
            status = FileStatus.PENDING if idle and position == 0 else FileStatus.QUEUED
            added.append(replace(managed, status=status, queue_position=None))
        t.snapshot = replace(snapshot, files=snapshot.files + tuple(added), all_complete_reported=False)
        for managed in added:
            if managed.status == FileStatus.PENDING:
                t.emit(FileStatusEvent(managed.id, managed.status))
        t.requeue()
        t.kick()

    elif isinstance(action, FileRemoved):
        managed = snapshot.get(action.file_id)
        if managed is None:
            return t
        if snapshot.active_id == action.file_id:
            t.commands.append(AbortUpload(action.file_id))
            t.release_active(action.file_id)
        t.commands.append(ReleaseSource(managed.source))
        t.snapshot = replace(t.snapshot, files=tuple(f for f in t.snapshot.files if f.id != action.file_id))
        t.requeue()
        t.check_all_complete()
        t.kick()

    elif isinstance(action, UploadStarted):
        t.snapshot = replace(snapshot, paused=False)
        t.requeue()
        t.kick()

    elif isinstance(action, PauseRequested):
        t.snapshot = replace(snapshot, paused=True)
        if snapshot.active_id is not None:
            t.update_file(snapshot.active_id, status=FileStatus.PAUSED)
            t.commands.append(PauseUpload(snapshot.active_id))

    elif isinstance(action, ResumeRequested):
        t.snapshot = replace(snapshot, paused=False)
        # The active file stays paused until its run returns (FileInterrupted)
        for managed in snapshot.files:
            if managed.status == FileStatus.PAUSED and managed.id != snapshot.active_id:
                t.update_file(managed.id, status=FileStatus.PENDING)
        t.requeue()
        t.kick()

    elif isinstance(action, RetryRequested):
        t.snapshot = replace(snapshot, all_complete_reported=False)
        for managed in snapshot.files:
            if managed.status != FileStatus.ERROR:
                continue
            for chunk in managed.chunks:
                if chunk.status == ChunkStatus.ERROR:
                    t.emit(ChunkStatusEvent(managed.id, chunk.index, ChunkStatus.PENDING))
            t.replace_file(managed.with_chunks_reset(ChunkStatus.ERROR))
            t.update_file(managed.id, status=FileStatus.PENDING, error=None, retries=managed.retries + 1)
        t.requeue()
        t.kick()

    elif isinstance(action, CancelRequested):
        if snapshot.active_id is not None:
            t.commands.append(AbortUpload(snapshot.active_id))
        for managed in snapshot.files:
            if action.cleanup and managed.status != FileStatus.COMPLETED and (
                managed.uploaded_chunks > 0 or managed.status in (FileStatus.UPLOADING, FileStatus.PAUSED)
            ):
                t.commands.append(CleanupUpload(managed.id))
            if managed.status in (FileStatus.UPLOADING, FileStatus.PAUSED, FileStatus.QUEUED):
                t.update_file(managed.id, status=FileStatus.PENDING)
        # Halted: reset files wait for start_upload / resume_all
        t.snapshot = replace(t.snapshot, active_id=None, paused=True)
        t.requeue()

    elif isinstance(action, ChunksDiscarded):
        for file_id in action.file_ids:
            managed = t.snapshot.get(file_id)
            if managed is None:
                continue
            reset = managed.with_chunks_reset(ChunkStatus.COMPLETED, ChunkStatus.UPLOADING, ChunkStatus.ERROR)
            t.replace_file(reset)
            if reset.progress != managed.progress:
                t.emit(ProgressEvent(file_id, reset.progress))

    elif isinstance(action, CompletedCleared):
        for managed in snapshot.files:
            if managed.status == FileStatus.COMPLETED:
                t.commands.append(ReleaseSource(managed.source))
        t.snapshot = replace(snapshot, files=tuple(f for f in snapshot.files if f.status != FileStatus.COMPLETED))
        t.requeue()
        t.kick()

    elif isinstance(action, FileActivated):
        if snapshot.get(action.file_id) is None:
            return t
        t.snapshot = replace(snapshot, active_id=action.file_id)
        t.update_file(action.file_id, status=FileStatus.UPLOADING, queue_position=None, error=None)
        t.requeue()

    elif isinstance(action, ChunkChanged):
        managed = snapshot.get(action.file_id)
        if managed is None or managed.chunks[action.chunk_index].status == action.status:
            return t
        updated = managed.with_chunk(action.chunk_index, status=action.status)
        t.replace_file(updated)
        t.emit(ChunkStatusEvent(action.file_id, action.chunk_index, action.status))
        if updated.progress != managed.progress:
            t.emit(ProgressEvent(action.file_id, updated.progress))

    elif isinstance(action, ChunkRetried):
        managed = snapshot.get(action.file_id)
        if managed is not None:
            t.replace_file(managed.with_chunk(action.chunk_index, retries=action.retries))

    elif isinstance(action, FileSucceeded):
        t.release_active(action.file_id)
        if t.update_file(action.file_id, status=FileStatus.COMPLETED, queue_position=None, error=None):
            t.emit(FileCompletedEvent(action.file_id, action.result))
        t.requeue()
        t.check_all_complete()
        t.kick()

    elif isinstance(action, (FileFailed, ProcessingFailed)):
        t.release_active(action.file_id)
        if t.update_file(action.file_id, status=FileStatus.ERROR, queue_position=None, error=action.error):
            t.emit(FileErrorEvent(action.file_id, action.error))
        t.requeue()
        t.check_all_complete()
        t.kick(after_error=isinstance(action, ProcessingFailed))

    elif isinstance(action, FileInterrupted):
        t.release_active(action.file_id)
        managed = t.snapshot.get(action.file_id)
        if managed is not None and not managed.status.terminal:
            halted = action.outcome == ScheduleOutcome.PAUSED and t.snapshot.paused
            t.update_file(action.file_id, status=FileStatus.PAUSED if halted else FileStatus.PENDING)
        t.requeue()
        t.kick()

    else:
        raise TypeError(f"Unknown action: {action!r}")

    return t
