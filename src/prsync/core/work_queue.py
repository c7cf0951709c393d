"""
Shared work queue for dynamic scheduling.
"""

import threading
from collections import deque
from typing import Iterable, List

from prsync.core.filesystem import FileRecord


class WorkQueue:
    """
    Files waiting to be transferred, shared by all workers

    Items are only ever removed, from the front, in the order they were
    given (largest first when fed from the enumerator). Every read and
    removal happens under one lock so that two workers can never claim
    the same file.
    """

    def __init__(self, files: Iterable[FileRecord] = ()):
        self._files = deque(files)
        self._lock = threading.Lock()

    def claim_batch(self, max_count: int) -> List[FileRecord]:
        """
        Remove and return up to `max_count` files from the front

        Returns:
            The claimed files; an empty list when the queue is drained
        """
        if max_count < 1:
            raise ValueError(f"Batch size must be at least 1, got {max_count}")

        with self._lock:
            count = min(max_count, len(self._files))
            batch = [self._files.popleft() for _ in range(count)]
        return batch

    def remaining(self) -> int:
        """Number of unclaimed files"""
        with self._lock:
            return len(self._files)

    def residual(self) -> List[FileRecord]:
        """Snapshot of the unclaimed files"""
        with self._lock:
            return list(self._files)

    def __len__(self) -> int:
        return self.remaining()
