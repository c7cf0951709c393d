import threading

import pytest

from prsync.core.config import Direction, RemoteEndpoint, TransferConfig
from prsync.core.filesystem import FileRecord
from prsync.core.transfer import TransferError, TransferOutcome


class FakeExecutor:
    """Records tasks instead of running rsync"""

    def __init__(
        self, fail_hosts=(), raise_hosts=(), crash_hosts=(), rendezvous=0, exit_code=0
    ):
        self.tasks = []
        self.exit_code = exit_code
        self.fail_hosts = set(fail_hosts)
        self.raise_hosts = set(raise_hosts)
        self.crash_hosts = set(crash_hosts)
        self._lock = threading.Lock()
        # Hold each worker on its first batch until `rendezvous` workers arrive
        self._barrier = threading.Barrier(rendezvous) if rendezvous else None
        self._seen = set()

    def execute(self, task):
        with self._lock:
            self.tasks.append(task)
            first = threading.get_ident() not in self._seen
            self._seen.add(threading.get_ident())
        if self._barrier and first:
            self._barrier.wait(timeout=5)
        if task.remote_host in self.crash_hosts:
            raise RuntimeError("worker blew up")
        if task.remote_host in self.raise_hosts:
            raise TransferError("rsync missing")
        returncode = 23 if task.remote_host in self.fail_hosts else self.exit_code
        return TransferOutcome(returncode=returncode, files=len(task.files))

    @property
    def transferred(self):
        return [path for task in self.tasks for path in task.files]


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest.fixture
def make_config():
    def _make(workers=2, batch_size=2, host_start=None, bandwidth=0):
        return TransferConfig(
            options=("-a",),
            direction=Direction.UPLOAD,
            endpoint=RemoteEndpoint(host="dtn", path="/archive/", user="alice"),
            local_path="data/",
            workers=workers,
            batch_size=batch_size,
            host_start=host_start,
            bandwidth_limit_kbs=bandwidth,
        )

    return _make


@pytest.fixture
def files():
    return [
        FileRecord(500, "big.iso"),
        FileRecord(300, "a.bin"),
        FileRecord(200, "b.bin"),
        FileRecord(100, "c.txt"),
        FileRecord(0, "empty.txt"),
    ]
