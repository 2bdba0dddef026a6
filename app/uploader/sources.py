import mimetypes
from pathlib import Path
from typing import Optional

import aiofiles


def guess_content_type(filename: str, provided_type: Optional[str] = None) -> str:
    if provided_type and provided_type != "application/octet-stream":
        return provided_type
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or provided_type or "application/octet-stream"


class FileSource:
    """Raw bytes of a file picked for upload, readable by byte range."""

    name: str
    size: int
    content_type: str

    async def read(self, start: int, end: int) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        """Release anything held for previews or reads."""


class BytesSource(FileSource):
    def __init__(self, name: str, data: bytes, content_type: Optional[str] = None):
        self.name = name
        self._data: Optional[bytes] = data
        self.size = len(data)
        self.content_type = guess_content_type(name, content_type)

    async def read(self, start: int, end: int) -> bytes:
        if self._data is None:
            raise ValueError(f"Source {self.name} has been closed")
        return self._data[start:end]

    def close(self) -> None:
        self._data = None


class PathSource(FileSource):
    """A file on disk, read lazily so large videos never sit in memory whole."""

    def __init__(self, path: Path, content_type: Optional[str] = None):
        self.path = Path(path)
        self.name = self.path.name
        self.size = self.path.stat().st_size
        self.content_type = guess_content_type(self.name, content_type)

    async def read(self, start: int, end: int) -> bytes:
        async with aiofiles.open(self.path, "rb") as f:
            await f.seek(start)
            return await f.read(end - start)
