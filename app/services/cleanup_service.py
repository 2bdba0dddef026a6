import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.config import settings
from app.services.chunk_store import ChunkObject, ChunkStore

logger = logging.getLogger("cleanup_service")


@dataclass
class CleanupReport:
    deleted: int = 0
    failed: int = 0
    total: int = 0


@dataclass
class SweepReport:
    deleted: int = 0
    failed: int = 0
    groups: int = 0
    leftovers: int = 0  # partial writes and empty upload directories


class CleanupCoordinator:
    """
    Best-effort removal of chunk objects.

    Deletion failures are logged and counted but never retried or raised:
    cleanup is advisory and must not turn a finished upload into a failure.
    """

    def __init__(self, chunk_store: ChunkStore, orphan_threshold_seconds: int = 86400):
        self.chunk_store = chunk_store
        self.orphan_threshold_seconds = orphan_threshold_seconds

    async def delete_chunks(self, chunks: Iterable[ChunkObject]) -> CleanupReport:
        chunks = list(chunks)
        results = await asyncio.gather(
            *(self.chunk_store.delete_chunk(chunk) for chunk in chunks),
            return_exceptions=True,
        )

        report = CleanupReport(total=len(chunks))
        for chunk, result in zip(chunks, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to delete chunk {chunk.key}: {result}")
                report.failed += 1
            else:
                logger.debug(f"Deleted chunk {chunk.key}")
                report.deleted += 1
        return report

    async def cleanup_upload(self, upload_id: str) -> CleanupReport:
        """
        Delete every chunk stored for one upload. No chunks is not an error.
        """
        chunks = self.chunk_store.list_chunks(upload_id)
        if not chunks:
            logger.info(f"No chunks found for upload {upload_id}")
            return CleanupReport()

        logger.info(f"Found {len(chunks)} chunks to delete for upload {upload_id}")
        report = await self.delete_chunks(chunks)
        logger.info(f"Cleanup completed for upload {upload_id}: {report.deleted} deleted, {report.failed} failed")
        return report

    async def sweep_orphans(self, now: Optional[float] = None) -> SweepReport:
        """
        Delete whole upload groups whose oldest chunk is past the orphan threshold.

        Younger groups are left alone: they may belong to uploads still in flight.
        Stale partial writes and empty upload directories go the same way.
        """
        now = time.time() if now is None else now
        groups = self.chunk_store.list_all_chunks()
        report = SweepReport(groups=len(groups))
        logger.info(f"Found {len(groups)} upload groups with chunks")

        for upload_id, chunks in groups.items():
            try:
                oldest = min(chunk.uploaded_at for chunk in chunks)
                age_hours = round((now - oldest) / 3600)

                if now - oldest > self.orphan_threshold_seconds:
                    logger.info(f"Cleaning up orphaned upload {upload_id} (age: {age_hours} hours)")
                    group_report = await self.delete_chunks(chunks)
                    report.deleted += group_report.deleted
                    report.failed += group_report.failed
                else:
                    logger.info(f"Keeping recent upload {upload_id} (age: {age_hours} hours)")
            except Exception as e:
                logger.error(f"Error processing upload group {upload_id}: {str(e)}")
                report.failed += len(chunks)

        for path in self.chunk_store.list_leftovers():
            try:
                if now - path.stat().st_mtime > self.orphan_threshold_seconds:
                    await self.chunk_store.delete_leftover(path)
                    report.leftovers += 1
            except OSError as e:
                logger.error(f"Failed to delete leftover {path}: {str(e)}")

        logger.info(
            f"Orphaned cleanup completed: {report.deleted} deleted, {report.failed} failed, "
            f"{report.leftovers} leftovers removed"
        )
        return report


def default_coordinator() -> CleanupCoordinator:
    return CleanupCoordinator(
        ChunkStore(settings.TEMP_DIR),
        orphan_threshold_seconds=settings.ORPHAN_THRESHOLD_SECONDS,
    )


async def sweep_orphans_periodically():
    """
    Run the orphan sweep forever, every CLEANUP_INTERVAL_SECONDS.

    Recovers chunks of uploads abandoned mid-flight, where the client never
    got to ask for cleanup.
    """
    while True:
        try:
            logger.info("Running cleanup task for orphaned chunks")
            await default_coordinator().sweep_orphans()
        except Exception as e:
            logger.error(f"Error in cleanup task: {str(e)}")

        # Wait for next run
        await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)
