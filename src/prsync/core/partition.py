"""
Static partitioning of a file list across workers.
"""

import heapq
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from prsync.core.filesystem import FileRecord


@dataclass(frozen=True)
class Chunk:
    """Files pre-assigned to one worker"""

    id: int
    total_size: int
    files: Tuple[FileRecord, ...]

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(f.path for f in self.files)


def partition(files: Sequence[FileRecord], workers: int) -> List[Chunk]:
    """
    Split files into size-balanced chunks, one per worker

    Files are taken largest first and each goes to the worker with the
    smallest running total (lowest index on ties). Odd-numbered chunks are
    then reversed so those workers start with their smallest files.

    Args:
        files: Files sorted by descending size
        workers: Number of chunks to produce

    Returns:
        `workers` chunks; some may be empty
    """
    if workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {workers}")

    assigned: List[List[FileRecord]] = [[] for _ in range(workers)]
    heap = [(0, worker) for worker in range(workers)]

    for record in files:
        total, worker = heapq.heappop(heap)
        assigned[worker].append(record)
        heapq.heappush(heap, (total + record.size, worker))

    totals = dict((worker, total) for total, worker in heap)

    chunks = []
    for worker, chunk_files in enumerate(assigned):
        if worker % 2 == 1:
            chunk_files.reverse()
        chunks.append(
            Chunk(id=worker, total_size=totals[worker], files=tuple(chunk_files))
        )
    return chunks
