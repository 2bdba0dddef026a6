import re
import json
import time
import uuid
import asyncio
import logging
import aiofiles
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    """
    Replace anything outside word characters, whitespace, dots and dashes.
    """
    return re.sub(r"[^\w\s.-]", "_", filename)


class MediaLibrary:
    """
    Storage backend for finished photos.

    Takes the complete bytes of a file with its name and mime type and
    returns an opaque media item id. Items are written under ``root`` as
    ``<media_item_id>/content`` with a ``meta.json`` sidecar.
    Concurrent writes are bounded by ``max_concurrent``.
    """

    def __init__(self, root: Path, max_concurrent: int = 2):
        self.root = Path(root)
        self.root.mkdir(exist_ok=True, parents=True)
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def store(self, data: bytes, filename: str, mime_type: str) -> str:
        filename = sanitize_filename(filename)
        media_item_id = uuid.uuid4().hex

        async with self._semaphore:
            item_dir = self.root / media_item_id
            item_dir.mkdir(parents=True)

            async with aiofiles.open(item_dir / "content", "wb") as f:
                await f.write(data)

            metadata = {
                "id": media_item_id,
                "filename": filename,
                "mimeType": mime_type,
                "size": len(data),
                "creationTime": time.time(),
            }
            async with aiofiles.open(item_dir / "meta.json", "w") as f:
                await f.write(json.dumps(metadata))

        logger.info(f"Stored media item {media_item_id}: {filename} ({mime_type}, {len(data)} bytes)")
        return media_item_id

    async def get_metadata(self, media_item_id: str) -> Dict[str, Any]:
        async with aiofiles.open(self.root / media_item_id / "meta.json", "r") as f:
            return json.loads(await f.read())

    async def read(self, media_item_id: str) -> bytes:
        async with aiofiles.open(self.root / media_item_id / "content", "rb") as f:
            return await f.read()

    def count(self) -> int:
        return sum(1 for item in self.root.iterdir() if (item / "meta.json").exists())
