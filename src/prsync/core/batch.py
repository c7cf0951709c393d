"""
Batch configuration for dynamic transfers
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Tuple

if TYPE_CHECKING:
    from prsync.core.filesystem import FileRecord


class BatchConfig:
    """Configuration for batch transfers"""
    # Maximum number of files a worker claims from the queue at once
    DEFAULT_BATCH_SIZE = 10

    # Worker count used when the user gives none (static mode only)
    DEFAULT_PARALLEL = 4


@dataclass(frozen=True)
class Batch:
    """A slice of the work queue owned by one worker for one transfer"""
    worker_id: int
    files: Tuple["FileRecord", ...]

    @property
    def size(self) -> int:
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(f.path for f in self.files)
