import math
from typing import List, NamedTuple


class ChunkRange(NamedTuple):
    index: int
    start: int
    end: int  # exclusive

    @property
    def length(self) -> int:
        return self.end - self.start


def count_chunks(file_size: int, chunk_size: int) -> int:
    """
    Number of chunks for a file. An empty file still gets one (empty) chunk so
    the server always has something to reassemble.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if file_size < 0:
        raise ValueError(f"file_size must not be negative, got {file_size}")
    return max(1, math.ceil(file_size / chunk_size))


def split(file_size: int, chunk_size: int) -> List[ChunkRange]:
    """
    Split ``file_size`` bytes into consecutive ranges of ``chunk_size``.

    Every range but the last is exactly ``chunk_size`` long; the last one is
    clamped to the end of the file.
    """
    return [
        ChunkRange(index, index * chunk_size, min(index * chunk_size + chunk_size, file_size))
        for index in range(count_chunks(file_size, chunk_size))
    ]
