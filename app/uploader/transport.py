import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.uploader.errors import TransportError

logger = logging.getLogger(__name__)

CHUNKED_UPLOAD_PATH = "/api/chunked-upload"

RETRYABLE_STATUS_CODES = {408, 425, 429}


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


def read_json(response: httpx.Response, action: str) -> Dict[str, Any]:
    """
    Turn a response into its JSON body or a classified TransportError.
    """
    if response.is_error:
        raise TransportError(
            f"{action} failed: {response.status_code} {response.text}",
            status_code=response.status_code,
            retryable=is_retryable_status(response.status_code),
        )
    try:
        body = response.json()
    except ValueError as e:
        raise TransportError(f"{action} returned a malformed body: {e}", status_code=response.status_code)
    if not isinstance(body, dict):
        raise TransportError(f"{action} returned unexpected JSON: {body!r}", status_code=response.status_code)
    return body


async def post(client: httpx.AsyncClient, url: str, action: str, timeout: Optional[float] = None, **kwargs) -> Dict[str, Any]:
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        response = await client.post(url, **kwargs)
    except httpx.HTTPError as e:
        # Connection failures and timeouts
        raise TransportError(f"{action} failed: {e.__class__.__name__}: {e}") from e
    return read_json(response, action)


@dataclass(frozen=True)
class ChunkReceipt:
    chunk_index: int
    progress: int


class ChunkTransport:
    """
    Sends one chunk to the chunk endpoint.

    The server keys chunks by ``(upload_id, chunk_index)``, so re-sending the
    same pair replaces the stored chunk. No retries happen here: failures are
    raised as ``TransportError`` for the scheduler to act on.
    """

    def __init__(self, client: httpx.AsyncClient, base_path: str = CHUNKED_UPLOAD_PATH, timeout: Optional[float] = None):
        self.client = client
        self.base_path = base_path
        self.timeout = timeout

    async def send(self, upload_id: str, chunk_index: int, total_chunks: int, data: bytes) -> ChunkReceipt:
        body = await post(
            self.client,
            f"{self.base_path}/chunk",
            f"Chunk {chunk_index} upload",
            timeout=self.timeout,
            data={
                "uploadId": upload_id,
                "chunkIndex": str(chunk_index),
                "totalChunks": str(total_chunks),
            },
            files={"chunk": (f"chunk-{chunk_index}.bin", data, "application/octet-stream")},
        )
        try:
            return ChunkReceipt(chunk_index=int(body["chunkIndex"]), progress=int(body.get("progress", 0)))
        except (KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Chunk {chunk_index} upload returned a malformed body: {body!r}") from e
