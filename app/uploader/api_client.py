import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.uploader.models import ManagedFile
from app.uploader.transport import CHUNKED_UPLOAD_PATH, post

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    media_item_id: str
    filename: str
    chunks_cleaned_up: int


@dataclass(frozen=True)
class CleanupResult:
    deleted_count: int
    failed_count: int


class UploadApiClient:
    """
    The init, complete and cleanup calls of the chunked upload API.

    Every method raises ``TransportError`` on failure; callers decide whether
    to retry.
    """

    def __init__(self, client: httpx.AsyncClient, base_path: str = CHUNKED_UPLOAD_PATH, timeout: Optional[float] = None):
        self.client = client
        self.base_path = base_path
        self.timeout = timeout

    async def init_upload(self, managed: ManagedFile) -> dict:
        return await post(
            self.client,
            f"{self.base_path}/init",
            "Initialize upload",
            timeout=self.timeout,
            json={
                "filename": managed.name,
                "contentType": managed.content_type,
                "totalSize": managed.size,
                "totalChunks": managed.total_chunks,
                "chunkSize": managed.chunk_size,
                "uploadId": managed.id,
            },
        )

    async def complete_upload(self, managed: ManagedFile) -> CompletionResult:
        body = await post(
            self.client,
            f"{self.base_path}/complete",
            "Complete upload",
            timeout=self.timeout,
            json={
                "uploadId": managed.id,
                "filename": managed.name,
                "contentType": managed.content_type,
                "totalSize": managed.size,
                "totalChunks": managed.total_chunks,
            },
        )
        return CompletionResult(
            media_item_id=body.get("mediaItemId", ""),
            filename=body.get("filename", managed.name),
            chunks_cleaned_up=body.get("chunksCleanedUp", 0),
        )

    async def cleanup_upload(self, upload_id: str) -> CleanupResult:
        body = await post(self.client, f"{self.base_path}/cleanup", "Cleanup", timeout=self.timeout, json={"uploadId": upload_id})
        return CleanupResult(body.get("deletedCount", 0), body.get("failedCount", 0))

    async def cleanup_orphaned(self, access_token: Optional[str] = None) -> CleanupResult:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        body = await post(self.client, f"{self.base_path}/cleanup-orphaned", "Orphan cleanup", timeout=self.timeout, headers=headers)
        return CleanupResult(body.get("deletedCount", 0), body.get("failedCount", 0))
