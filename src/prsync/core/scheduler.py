"""
Worker pool for prsync.

Runs a fixed number of rsync workers, either on pre-assigned chunks
(static mode) or pulling batches from a shared queue (dynamic mode),
and checks after they all finish that every file was accounted for.
"""

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Sequence

from prsync.core.config import TransferConfig
from prsync.core.filesystem import FileRecord
from prsync.core.batch import Batch
from prsync.core.partition import Chunk, partition
from prsync.core.remote import host_for_worker
from prsync.core.transfer import TransferError, TransferExecutor, TransferTask
from prsync.core.work_queue import WorkQueue

logger = logging.getLogger(__name__)

# Called after every batch with (worker_id, files, bytes); must be thread-safe
ProgressCallback = Callable[[int, int, int], None]


class WorkerState(Enum):
    """Lifecycle of a worker"""

    IDLE = auto()
    CLAIMING = auto()
    TRANSFERRING = auto()
    DONE = auto()


class Mode(Enum):
    """Scheduling strategy"""

    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass
class WorkerResult:
    """What one worker did"""

    worker_id: int
    host: str
    batches: int = 0
    files_transferred: int = 0
    bytes_transferred: int = 0
    failed_batches: List[Batch] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed_files(self) -> int:
        return sum(b.size for b in self.failed_batches)


@dataclass
class RunReport:
    """Outcome of a whole run"""

    mode: Mode
    total_files: int
    total_bytes: int
    workers: List[WorkerResult] = field(default_factory=list)
    residual: int = 0
    duration: float = 0.0

    @property
    def files_transferred(self) -> int:
        return sum(w.files_transferred for w in self.workers)

    @property
    def bytes_transferred(self) -> int:
        return sum(w.bytes_transferred for w in self.workers)

    @property
    def failed_batches(self) -> List[Batch]:
        return [b for w in self.workers for b in w.failed_batches]

    @property
    def failed_files(self) -> int:
        return sum(w.failed_files for w in self.workers)

    @property
    def unaccounted(self) -> int:
        """Files neither transferred, failed nor left in the queue"""
        return (
            self.total_files
            - self.files_transferred
            - self.failed_files
            - self.residual
        )

    @property
    def success(self) -> bool:
        return self.files_transferred == self.total_files


class IncompleteTransfer(Exception):
    """Raised when a run ends with files left untransferred"""

    def __init__(self, report: RunReport):
        self.report = report
        missing = report.total_files - report.files_transferred
        super().__init__(
            f"{missing} of {report.total_files} files were not transferred "
            f"({report.residual} never claimed, "
            f"{len(report.failed_batches)} failed batches)"
        )


class Worker:
    """Transfers batches of files to one remote host"""

    def __init__(
        self,
        worker_id: int,
        config: TransferConfig,
        executor: TransferExecutor,
        progress_callback: Optional[ProgressCallback] = None,
        stop_on_failure: bool = True,
    ):
        """
        Initialize worker

        Args:
            worker_id: Index of this worker in the pool
            config: Shared run configuration
            executor: Carries out each TransferTask
            progress_callback: Optional per-batch progress hook
            stop_on_failure: Stop claiming after a failed batch; otherwise
                record it and keep going
        """
        self.worker_id = worker_id
        self.config = config
        self.host = host_for_worker(config.endpoint.host, config.host_start, worker_id)
        self.state = WorkerState.IDLE
        self.result = WorkerResult(worker_id=worker_id, host=self.host)
        self._executor = executor
        self._progress_callback = progress_callback
        self._stop_on_failure = stop_on_failure

    def _set_state(self, state: WorkerState):
        logger.debug("Worker %d: %s -> %s", self.worker_id, self.state.name, state.name)
        self.state = state

    def build_task(self, batch: Batch) -> TransferTask:
        """Turn a batch into an rsync task for this worker's host"""
        return TransferTask(
            direction=self.config.direction,
            remote_host=self.host,
            remote_path=self.config.endpoint.path,
            local_path=self.config.local_path,
            files=batch.paths,
            bandwidth_limit_kbs=self.config.bandwidth_limit_kbs,
            options=self.config.options,
            remote_user=self.config.endpoint.user,
        )

    def _transfer(self, files: Sequence[FileRecord]) -> bool:
        """
        Transfer one batch

        Returns:
            True if rsync succeeded, False if the batch failed
        """
        batch = Batch(worker_id=self.worker_id, files=tuple(files))
        self._set_state(WorkerState.TRANSFERRING)
        self.result.batches += 1
        logger.info(
            "Worker %d: transferring %d files (%d bytes) via %s",
            self.worker_id,
            batch.size,
            batch.total_bytes,
            self.host,
        )

        try:
            outcome = self._executor.execute(self.build_task(batch))
        except TransferError as e:
            logger.error("Worker %d: %s", self.worker_id, e)
            self.result.failed_batches.append(batch)
            self.result.error = str(e)
            self._set_state(WorkerState.IDLE)
            return False

        if not outcome.success:
            self.result.failed_batches.append(batch)
            self.result.error = f"rsync exited with {outcome.returncode}"
            self._set_state(WorkerState.IDLE)
            return False

        self.result.files_transferred += batch.size
        self.result.bytes_transferred += batch.total_bytes
        if self._progress_callback:
            self._progress_callback(self.worker_id, batch.size, batch.total_bytes)
        self._set_state(WorkerState.IDLE)
        return True

    def run_chunk(self, chunk: Chunk) -> WorkerResult:
        """Transfer a pre-assigned chunk in one rsync call"""
        if chunk.files:
            self._transfer(chunk.files)
        else:
            logger.info("Worker %d: nothing assigned", self.worker_id)
        self._set_state(WorkerState.DONE)
        return self.result

    def run_queue(self, queue: WorkQueue) -> WorkerResult:
        """
        Claim and transfer batches until the queue is empty

        A failed batch stops this worker unless it was created with
        stop_on_failure=False; the rest of the queue is left to the other
        workers.
        """
        while True:
            self._set_state(WorkerState.CLAIMING)
            files = queue.claim_batch(self.config.batch_size)
            if not files:
                break
            if not self._transfer(files) and self._stop_on_failure:
                logger.warning(
                    "Worker %d: stopping after failed batch", self.worker_id
                )
                break
        self._set_state(WorkerState.DONE)
        return self.result


class CompletionTracker:
    """Checks a finished run for files that were not transferred"""

    def __init__(self, strict: bool = True):
        """
        Args:
            strict: Treat failed batches as a failed run, not only files
                left in the queue
        """
        self.strict = strict

    def check(self, report: RunReport) -> RunReport:
        """
        Validate a finished run

        Raises:
            IncompleteTransfer: If files were left in the queue, lost by a
                crashed worker, or (when strict) in a failed batch
        """
        if report.unaccounted:
            logger.error("%d files lost by crashed workers", report.unaccounted)
        if report.residual or report.unaccounted:
            raise IncompleteTransfer(report)
        if self.strict and report.failed_batches:
            raise IncompleteTransfer(report)
        return report


class WorkerPool:
    """Runs a fixed set of workers to completion"""

    def __init__(
        self,
        config: TransferConfig,
        executor: TransferExecutor,
        tracker: Optional[CompletionTracker] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.executor = executor
        self.tracker = tracker or CompletionTracker()
        self.progress_callback = progress_callback

    def _make_workers(self) -> List[Worker]:
        return [
            Worker(
                i,
                self.config,
                self.executor,
                self.progress_callback,
                stop_on_failure=self.tracker.strict,
            )
            for i in range(self.config.workers)
        ]

    def _run(self, workers: List[Worker], target: Callable[[Worker], WorkerResult]):
        """Start every worker and wait for all of them"""
        with ThreadPoolExecutor(
            max_workers=len(workers), thread_name_prefix="prsync-worker"
        ) as pool:
            futures = {pool.submit(target, worker): worker for worker in workers}
            for future in as_completed(futures):
                worker = futures[future]
                try:
                    future.result()
                except Exception as e:
                    # A crashed worker never takes the others down
                    logger.exception("Worker %d crashed", worker.worker_id)
                    worker.result.error = str(e)

    def run_static(self, files: Sequence[FileRecord]) -> RunReport:
        """
        Transfer files as size-balanced chunks, one rsync call per worker

        Raises:
            IncompleteTransfer: If any chunk was not transferred
        """
        report = RunReport(
            mode=Mode.STATIC,
            total_files=len(files),
            total_bytes=sum(f.size for f in files),
        )
        if not files:
            logger.info("Nothing to transfer")
            return report

        started = time.monotonic()
        chunks = partition(files, self.config.workers)
        for chunk in chunks:
            logger.debug(
                "Chunk %d: %d files, %d bytes",
                chunk.id,
                len(chunk.files),
                chunk.total_size,
            )

        workers = self._make_workers()
        self._run(workers, lambda w: w.run_chunk(chunks[w.worker_id]))

        report.workers = [w.result for w in workers]
        report.duration = time.monotonic() - started
        return self.tracker.check(report)

    def run_dynamic(self, files: Sequence[FileRecord]) -> RunReport:
        """
        Transfer files with workers claiming batches from a shared queue

        Raises:
            IncompleteTransfer: If the queue is not empty after all workers
                stopped, or a batch failed
        """
        report = RunReport(
            mode=Mode.DYNAMIC,
            total_files=len(files),
            total_bytes=sum(f.size for f in files),
        )
        if not files:
            logger.info("Nothing to transfer")
            return report

        started = time.monotonic()
        queue = WorkQueue(files)
        workers = self._make_workers()
        self._run(workers, lambda w: w.run_queue(queue))

        report.workers = [w.result for w in workers]
        report.residual = queue.remaining()
        report.duration = time.monotonic() - started
        return self.tracker.check(report)

    def run(self, files: Sequence[FileRecord], mode: Mode = Mode.DYNAMIC) -> RunReport:
        if mode == Mode.STATIC:
            return self.run_static(files)
        return self.run_dynamic(files)
