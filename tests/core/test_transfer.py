import subprocess
from unittest.mock import patch

import pytest

from prsync.core.config import Direction
from prsync.core.transfer import (
    RsyncExecutor,
    TransferError,
    TransferTask,
    files_from_root,
)


@pytest.fixture
def upload_task():
    return TransferTask(
        direction=Direction.UPLOAD,
        remote_host="dtn2",
        remote_path="/archive/",
        local_path="data",
        files=("data/big.iso", "data/small.txt"),
        bandwidth_limit_kbs=2500,
        options=("-a", "--partial"),
        remote_user="alice",
    )


@pytest.fixture
def download_task():
    return TransferTask(
        direction=Direction.DOWNLOAD,
        remote_host="dtn",
        remote_path="/data/",
        local_path="local/",
        files=("x.bin",),
    )


@pytest.mark.parametrize(
    "path,remote,expected",
    [
        ("data/", False, "data/"),
        ("data", False, "./"),
        ("/srv/data", False, "/srv/"),
        ("/data", False, "/"),
        ("data", True, ""),
        ("/archive/data", True, "/archive/"),
    ],
)
def test_files_from_root(path, remote, expected):
    assert files_from_root(path, remote=remote) == expected


def test_task_sides(upload_task, download_task):
    assert upload_task.source == "data"
    assert upload_task.destination == "alice@dtn2:/archive/"
    assert download_task.source == "dtn:/data/"
    assert download_task.destination == "local/"


def test_build_upload_command(upload_task):
    cmd = RsyncExecutor().build_command(upload_task)

    assert cmd == [
        "rsync",
        "-a",
        "--partial",
        "--bwlimit=2500",
        "--files-from=-",
        "./",
        "alice@dtn2:/archive/",
    ]


def test_build_download_command(download_task):
    cmd = RsyncExecutor("/opt/bin/rsync").build_command(download_task)

    assert cmd == ["/opt/bin/rsync", "--files-from=-", "dtn:/data/", "local/"]


def test_execute_feeds_file_list(upload_task):
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
    with patch("prsync.core.transfer.subprocess.run", return_value=completed) as mock_run:
        outcome = RsyncExecutor().execute(upload_task)

    assert outcome.success
    assert outcome.files == 2
    assert mock_run.call_args.kwargs["input"] == "data/big.iso\ndata/small.txt\n"


def test_execute_reports_rsync_failure(download_task):
    completed = subprocess.CompletedProcess(
        args=[], returncode=23, stdout="", stderr="some files could not be transferred\n"
    )
    with patch("prsync.core.transfer.subprocess.run", return_value=completed):
        outcome = RsyncExecutor().execute(download_task)

    assert not outcome.success
    assert outcome.returncode == 23
    assert outcome.stderr == "some files could not be transferred"


def test_execute_cannot_start(download_task):
    with patch("prsync.core.transfer.subprocess.run", side_effect=FileNotFoundError("rsync")):
        with pytest.raises(TransferError, match="Failed to run"):
            RsyncExecutor().execute(download_task)


def test_execute_vanished_files_is_success(download_task):
    completed = subprocess.CompletedProcess(
        args=[], returncode=24, stdout="", stderr="file has vanished: /data/tmp.log\n"
    )
    with patch("prsync.core.transfer.subprocess.run", return_value=completed):
        outcome = RsyncExecutor().execute(download_task)

    assert outcome.success
    assert outcome.returncode == 24
