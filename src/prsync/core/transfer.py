"""
Transfer module for prsync.
Runs rsync on one batch of files.
"""

import logging
import posixpath
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from prsync.core.config import Direction

logger = logging.getLogger(__name__)

# rsync exit code for "some source files vanished before they could be transferred"
RSYNC_VANISHED = 24

# Exit codes after which every listed file that still exists was copied
RSYNC_OK_CODES = (0, RSYNC_VANISHED)


@dataclass(frozen=True)
class TransferTask:
    """One rsync invocation for one batch"""

    direction: Direction
    remote_host: str
    remote_path: str
    local_path: str
    files: Tuple[str, ...]
    bandwidth_limit_kbs: int = 0  # 0 = unlimited
    options: Tuple[str, ...] = ()
    remote_user: Optional[str] = None

    @property
    def remote(self) -> str:
        prefix = f"{self.remote_user}@" if self.remote_user else ""
        return f"{prefix}{self.remote_host}:{self.remote_path}"

    @property
    def source(self) -> str:
        if self.direction == Direction.DOWNLOAD:
            return self.remote
        return self.local_path

    @property
    def destination(self) -> str:
        if self.direction == Direction.UPLOAD:
            return self.remote
        return self.local_path


@dataclass
class TransferOutcome:
    """Result of one rsync invocation"""

    returncode: int
    files: int
    duration: float = 0.0
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode in RSYNC_OK_CODES


class TransferError(Exception):
    """Raised when rsync cannot be run at all"""

    pass


class TransferExecutor(Protocol):
    """Anything that can carry out a TransferTask"""

    def execute(self, task: TransferTask) -> TransferOutcome:
        ...


def files_from_root(path: str, remote: bool = False) -> str:
    """
    Directory that listed file names are relative to

    rsync lists `dir/file` for a source `dir` and `file` for `dir/`, so a
    source without a trailing slash is replaced by its parent when the
    files are passed through --files-from.
    """
    if path.endswith("/"):
        return path
    parent = posixpath.dirname(path)
    if parent:
        return parent.rstrip("/") + "/"
    # Remote paths are relative to the login directory
    return "" if remote else "./"


@dataclass
class RsyncExecutor:
    """Runs rsync as a subprocess, feeding the file list on stdin"""

    rsync_path: str = "rsync"

    def build_command(self, task: TransferTask) -> List[str]:
        """Build the rsync command line for a task"""
        cmd = [self.rsync_path, *task.options]
        if task.bandwidth_limit_kbs > 0:
            cmd.append(f"--bwlimit={task.bandwidth_limit_kbs}")
        cmd.append("--files-from=-")

        prefix = f"{task.remote_user}@" if task.remote_user else ""
        if task.direction == Direction.DOWNLOAD:
            root = files_from_root(task.remote_path, remote=True)
            cmd.extend([f"{prefix}{task.remote_host}:{root}", task.local_path])
        else:
            cmd.extend([files_from_root(task.local_path), task.remote])
        return cmd

    def execute(self, task: TransferTask) -> TransferOutcome:
        """
        Transfer the task's files

        Returns:
            TransferOutcome carrying rsync's exit code

        Raises:
            TransferError: If rsync cannot be started
        """
        cmd = self.build_command(task)
        started = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                input="\n".join(task.files) + "\n",
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise TransferError(f"Failed to run {self.rsync_path}: {e}") from e

        outcome = TransferOutcome(
            returncode=result.returncode,
            files=len(task.files),
            duration=time.monotonic() - started,
            stderr=result.stderr.strip(),
        )
        if result.stdout:
            logger.debug("rsync output:\n%s", result.stdout.rstrip())
        if outcome.returncode == RSYNC_VANISHED:
            logger.warning(
                "Some files vanished before rsync to %s could copy them: %s",
                task.remote_host,
                outcome.stderr,
            )
        elif not outcome.success:
            logger.warning(
                "rsync to %s exited with %d: %s",
                task.remote_host,
                outcome.returncode,
                outcome.stderr,
            )
        return outcome
