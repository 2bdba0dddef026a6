import re
import uuid
import logging
import aiofiles
import aiofiles.os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CHUNK_NAME_RE = re.compile(r"^chunk-(\d+)\.bin$")


@dataclass(frozen=True)
class ChunkObject:
    """A stored chunk, addressed by upload id and chunk index."""

    upload_id: str
    index: int
    path: Path
    size: int
    uploaded_at: float  # epoch seconds

    @property
    def key(self) -> str:
        return f"{self.upload_id}/{self.path.name}"


class ChunkStore:
    """
    Temporary storage for uploaded chunks.

    Each upload id owns one directory under the store root and every chunk
    lives at ``<root>/<upload_id>/chunk-<index>.bin``. Writing the same
    ``(upload_id, index)`` twice replaces the object, so retries never grow
    the set beyond ``total_chunks`` objects.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(exist_ok=True, parents=True)

    def chunk_path(self, upload_id: str, chunk_index: int) -> Path:
        return self.root / upload_id / f"chunk-{chunk_index}.bin"

    async def save_chunk(self, upload_id: str, chunk_index: int, chunk_data: bytes) -> ChunkObject:
        """
        Store one chunk, replacing any previous copy of the same index.
        """
        final_path = self.chunk_path(upload_id, chunk_index)
        final_path.parent.mkdir(exist_ok=True, parents=True)

        # Write beside the target, then swap it in so readers never see a torn chunk
        part_path = final_path.parent / f".{final_path.name}.{uuid.uuid4().hex}.part"
        try:
            async with aiofiles.open(part_path, "wb") as f:
                await f.write(chunk_data)
            await aiofiles.os.replace(part_path, final_path)
        except BaseException:
            # Failed or cancelled mid-write
            part_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Stored chunk {chunk_index} for upload {upload_id} ({len(chunk_data)} bytes)")
        return self._describe(upload_id, final_path)

    def list_chunks(self, upload_id: str) -> List[ChunkObject]:
        """
        List stored chunks for one upload, ordered by numeric index.
        """
        upload_dir = self.root / upload_id
        if not upload_dir.is_dir():
            return []

        chunks = []
        for chunk_path in upload_dir.glob("chunk-*.bin"):
            chunk = self._describe(upload_id, chunk_path)
            if chunk is not None:
                chunks.append(chunk)
        chunks.sort(key=lambda c: c.index)
        return chunks

    def list_all_chunks(self) -> Dict[str, List[ChunkObject]]:
        """
        List every stored chunk grouped by upload id.
        """
        groups = {}
        for upload_dir in sorted(self.root.iterdir()):
            if not upload_dir.is_dir():
                continue
            chunks = self.list_chunks(upload_dir.name)
            if chunks:
                groups[upload_dir.name] = chunks
        return groups

    def list_leftovers(self) -> List[Path]:
        """
        Partial writes and empty upload directories. Neither holds a chunk, so
        they never show up in ``list_all_chunks``.
        """
        leftovers = []
        for upload_dir in sorted(self.root.iterdir()):
            if not upload_dir.is_dir():
                continue
            entries = list(upload_dir.iterdir())
            leftovers.extend(p for p in entries if p.name.endswith(".part"))
            if not entries:
                leftovers.append(upload_dir)
        return leftovers

    async def delete_leftover(self, path: Path) -> None:
        if path.is_dir():
            path.rmdir()
            return
        await aiofiles.os.remove(path)
        self._remove_dir_if_empty(path.parent)

    async def read_chunk(self, chunk: ChunkObject) -> bytes:
        async with aiofiles.open(chunk.path, "rb") as f:
            return await f.read()

    async def delete_chunk(self, chunk: ChunkObject) -> None:
        """
        Delete one chunk object. Errors propagate to the caller, which decides
        whether a failed deletion matters.
        """
        await aiofiles.os.remove(chunk.path)
        self._remove_dir_if_empty(chunk.path.parent)

    def _remove_dir_if_empty(self, upload_dir: Path) -> None:
        try:
            upload_dir.rmdir()
        except OSError:
            # Still holds chunks (or a write in progress)
            pass

    def _describe(self, upload_id: str, chunk_path: Path) -> Optional[ChunkObject]:
        match = CHUNK_NAME_RE.match(chunk_path.name)
        if match is None:
            return None
        try:
            stat = chunk_path.stat()
        except FileNotFoundError:
            # Deleted between listing and stat
            return None
        return ChunkObject(
            upload_id=upload_id,
            index=int(match.group(1)),
            path=chunk_path,
            size=stat.st_size,
            uploaded_at=stat.st_mtime,
        )
