"""
File enumeration for prsync.
Turns an rsync dry-run listing into size-sorted file records.
"""

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence

from prsync.core.config import ConfigurationError
from prsync.core.transfer import RSYNC_OK_CODES

logger = logging.getLogger(__name__)

LISTING_FORMAT = "%l %n"


@dataclass(frozen=True)
class FileRecord:
    """A single file to transfer"""

    size: int
    path: str


class EnumerationError(Exception):
    """Raised when the set of files to transfer cannot be determined"""

    pass


class MalformedListing(EnumerationError):
    """Raised when a listing line is not a `<size> <path>` pair"""

    def __init__(self, line: str, line_number: int):
        self.line = line
        self.line_number = line_number
        super().__init__(f"Malformed listing at line {line_number}: {line!r}")


class FileEnumerator:
    """Lists the files rsync would transfer, largest first"""

    # Lines rsync prints around the listing itself
    INFORMATIONAL_PATTERNS = [
        re.compile(r"^(sending|receiving) incremental file list$"),
        re.compile(r"^(receiving|building) file list"),
        re.compile(r"^created directory "),
        re.compile(r"^deleting "),
        re.compile(r"^skipping non-regular file "),
        re.compile(r"^sent [\d,.]+\S* bytes"),
        re.compile(r"^total size is "),
        re.compile(r"^\(DRY RUN\)$"),
    ]

    def __init__(self, rsync_path: str = "rsync"):
        """
        Initialize enumerator

        Args:
            rsync_path: rsync binary used for the dry run
        """
        self.rsync_path = rsync_path

    @classmethod
    def is_informational(cls, line: str) -> bool:
        """Check if a line is rsync chatter rather than a listing entry"""
        if not line.strip():
            return True
        return any(p.search(line) for p in cls.INFORMATIONAL_PATTERNS)

    @classmethod
    def parse_listing(cls, lines: Iterable[str]) -> List[FileRecord]:
        """
        Parse `<size> <path>` lines into file records

        Directory entries (paths ending in '/') are dropped. The result is
        sorted by size, largest first; equal sizes keep listing order.

        Args:
            lines: Raw listing lines

        Returns:
            List of FileRecord sorted by descending size

        Raises:
            MalformedListing: If a non-informational line cannot be parsed
        """
        records = []
        for line_number, raw in enumerate(lines, 1):
            line = raw.rstrip("\r\n")
            if cls.is_informational(line):
                continue

            size_str, sep, path = line.strip().partition(" ")
            if not sep or not path:
                raise MalformedListing(line, line_number)
            try:
                size = int(size_str.replace(",", ""))
            except ValueError:
                raise MalformedListing(line, line_number) from None
            if size < 0:
                raise MalformedListing(line, line_number)

            if path.endswith("/"):
                continue
            records.append(FileRecord(size=size, path=path))

        return sorted(records, key=lambda r: r.size, reverse=True)

    def dry_run_command(
        self, options: Sequence[str], source: str, destination: str
    ) -> List[str]:
        """Build the rsync dry-run listing command"""
        return [
            self.rsync_path,
            "--dry-run",
            f"--out-format={LISTING_FORMAT}",
            *options,
            source,
            destination,
        ]

    def enumerate(
        self, options: Sequence[str], source: str, destination: str
    ) -> List[FileRecord]:
        """
        List the files a transfer would move

        Args:
            options: Pass-through rsync options
            source: rsync source argument
            destination: rsync destination argument

        Returns:
            List of FileRecord sorted by descending size; empty when there
            is nothing to transfer

        Raises:
            ConfigurationError: If rsync cannot be executed
            EnumerationError: If the dry run fails or its output is malformed
        """
        cmd = self.dry_run_command(options, source, destination)
        logger.debug("Running dry run: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ConfigurationError(f"rsync not found: {self.rsync_path}") from e

        if result.returncode not in RSYNC_OK_CODES:
            raise EnumerationError(
                f"Dry run failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}"
            )

        records = self.parse_listing(result.stdout.splitlines())
        logger.info(
            "Dry run found %d files (%d bytes)",
            len(records),
            sum(r.size for r in records),
        )
        return records

    def from_listing_file(self, path: str) -> List[FileRecord]:
        """
        Load a saved `<size> <path>` listing instead of running a dry run

        Raises:
            EnumerationError: If the file cannot be read or parsed
        """
        try:
            with open(Path(path).expanduser(), "r", encoding="utf-8") as f:
                lines = f.read().splitlines()
        except OSError as e:
            raise EnumerationError(f"Failed to read file list {path}: {e}") from e

        records = self.parse_listing(lines)
        logger.info("Loaded %d files from %s", len(records), path)
        return records
