import logging
from typing import Any, Dict, Optional
from fastapi import HTTPException, status

from app.services.chunk_store import ChunkStore
from app.services.cleanup_service import CleanupCoordinator
from app.services.media_library import MediaLibrary, sanitize_filename

logger = logging.getLogger(__name__)


class UploadService:
    """
    Server side of the chunked upload: accepts chunks and turns a complete
    chunk set into a media item.
    """

    def __init__(self, chunk_store: ChunkStore, media_library: MediaLibrary, cleanup: CleanupCoordinator):
        self.chunk_store = chunk_store
        self.media_library = media_library
        self.cleanup = cleanup

    async def save_chunk(self, upload_id: str, chunk_index: int, total_chunks: int, chunk_data: bytes) -> Dict[str, Any]:
        """
        Store one chunk. Re-sending an index overwrites the stored copy.
        """
        if total_chunks < 1 or not 0 <= chunk_index < total_chunks:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Chunk index {chunk_index} out of range for {total_chunks} chunks"
            )

        await self.chunk_store.save_chunk(upload_id, chunk_index, chunk_data)

        return {
            "chunk_index": chunk_index,
            "status": "received",
            "progress": round((chunk_index + 1) / total_chunks * 100),
        }

    async def complete_upload(
        self,
        upload_id: str,
        filename: str,
        content_type: str,
        total_chunks: int,
        total_size: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Reassemble a finished upload and hand it to the media library.

        The number of stored chunks must equal ``total_chunks``; anything else
        is a structural mismatch and is rejected without creating a media item.
        Chunks are concatenated by ascending numeric index whatever order they
        arrived in.
        """
        chunks = self.chunk_store.list_chunks(upload_id)

        if len(chunks) != total_chunks:
            logger.warning(
                f"Upload {upload_id} incomplete: received {len(chunks)} of {total_chunks} chunks"
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "Not all chunks received",
                    "received": len(chunks),
                    "expected": total_chunks,
                }
            )

        # list_chunks orders by index; keep the sort explicit at the point of use
        chunks = sorted(chunks, key=lambda c: c.index)
        parts = [await self.chunk_store.read_chunk(chunk) for chunk in chunks]
        combined = b"".join(parts)

        if total_size is not None and len(combined) != total_size:
            logger.warning(
                f"Upload {upload_id} reassembled to {len(combined)} bytes, client declared {total_size}"
            )

        sanitized_filename = sanitize_filename(filename)
        media_item_id = await self.media_library.store(combined, sanitized_filename, content_type)

        logger.info(f"Cleaning up {len(chunks)} temporary chunks for upload {upload_id}")
        report = await self.cleanup.delete_chunks(chunks)
        if report.failed:
            logger.error(f"Cleanup for upload {upload_id} left {report.failed} chunks behind")

        return {
            "success": True,
            "media_item_id": media_item_id,
            "filename": sanitized_filename,
            "chunks_cleaned_up": report.deleted,
        }

