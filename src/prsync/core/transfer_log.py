"""
Transfer logging module for prsync.
Keeps a JSON record of every run.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from prsync.core.scheduler import RunReport

logger = logging.getLogger(__name__)


@dataclass
class TransferLogEntry:
    """Single run log entry"""
    timestamp: str
    source: str
    destination: str
    mode: str
    workers: int
    total_files: int
    files_transferred: int
    residual: int
    total_size: int
    duration: float
    failed_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @classmethod
    def from_report(cls, report: RunReport, source: str, destination: str) -> "TransferLogEntry":
        """Summarize a finished run"""
        return cls(
            timestamp=datetime.now().isoformat(),
            source=source,
            destination=destination,
            mode=report.mode.value,
            workers=len(report.workers),
            total_files=report.total_files,
            files_transferred=report.files_transferred,
            residual=report.residual,
            total_size=report.bytes_transferred,
            duration=report.duration,
            failed_files=[f.path for b in report.failed_batches for f in b.files],
            errors=[
                f"worker {w.worker_id} ({w.host}): {w.error}"
                for w in report.workers
                if w.error
            ],
        )


class TransferLogError(Exception):
    """Raised when a run log file cannot be read"""

    pass


class TransferLogger:
    """
    Keeps one JSON file per day with an entry for every run

    A day's file that cannot be parsed is never silently treated as empty:
    reading it raises TransferLogError, and appending to it first moves it
    aside to `<name>.corrupt` so the new entry is not lost with it.
    """

    def __init__(self, log_dir: str = None):
        """
        Initialize transfer logger

        Args:
            log_dir: Directory to store log files (default: ~/.config/prsync/logs)
        """
        if log_dir is None:
            log_dir = os.path.join(os.path.expanduser("~/.config/prsync"), "logs")

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _log_file(self, date: Optional[str] = None) -> Path:
        """Log file for a YYYY-MM-DD date, today by default"""
        if date is None:
            date = datetime.now().strftime("%Y-%m-%d")
        return self.log_dir / f"transfer_log_{date}.json"

    def _read(self, log_file: Path) -> List[dict]:
        if not log_file.exists():
            return []
        try:
            with open(log_file, 'r', encoding='utf-8') as f:
                logs = json.load(f)
        except json.JSONDecodeError as e:
            raise TransferLogError(f"Corrupt run log {log_file}: {e}") from e
        if not isinstance(logs, list):
            raise TransferLogError(f"Corrupt run log {log_file}: not a list of entries")
        return logs

    def add_entry(self, entry: TransferLogEntry):
        """Append a run to today's log"""
        log_file = self._log_file()
        try:
            logs = self._read(log_file)
        except TransferLogError as e:
            backup = log_file.with_name(log_file.name + ".corrupt")
            log_file.replace(backup)
            logger.warning("%s; moved it to %s", e, backup)
            logs = []

        logs.append(asdict(entry))
        with open(log_file, 'w', encoding='utf-8') as f:
            json.dump(logs, f, indent=2, ensure_ascii=False)

    def get_entries(self, date: Optional[str] = None) -> List[TransferLogEntry]:
        """
        Get run log entries for a specific date

        Args:
            date: Date string in YYYY-MM-DD format (default: today)

        Raises:
            TransferLogError: If the day's log cannot be parsed
        """
        log_file = self._log_file(date)
        try:
            return [TransferLogEntry(**entry) for entry in self._read(log_file)]
        except TypeError as e:
            raise TransferLogError(f"Unexpected entry in run log {log_file}: {e}") from e

    def get_log_dates(self) -> List[str]:
        """Dates that have a run log, oldest first"""
        return sorted(
            log_file.stem.split("_")[-1]
            for log_file in self.log_dir.glob("transfer_log_*.json")
        )
