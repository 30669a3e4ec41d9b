"""Durable, resumable migration state.

Two plain text files live in the ledger directory so they can be inspected
and edited between runs:

``github-issue-mappings.properties``
    One ``KEY:NUMBER`` line per successfully imported issue. Backport holder
    issues are stored as ``milestone:<title>:NUMBER``. An issue whose
    cross-link comment was posted is stored as ``links:KEY:NUMBER``.
``github-migration-failures.txt``
    ``=> KEY [reason]`` per failed issue, ``=> <title> backports [reason]``
    per failed holder, and free-form data-integrity messages. Each run starts
    with a separator line and a timestamp.

Both files are only appended to, and every write is flushed and synced
before returning so a crash loses at most the job that was in flight.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final, Self, TextIO

from .exceptions import LedgerError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from .models import SourceIssue

logger: logging.Logger = logging.getLogger(__name__)

MAPPINGS_FILE_NAME: Final = "github-issue-mappings.properties"
FAILURES_FILE_NAME: Final = "github-migration-failures.txt"
HOLDER_PREFIX: Final = "milestone:"
LINK_PREFIX: Final = "links:"
RUN_SEPARATOR: Final = "=================================="


@dataclass
class LedgerCounts:
    """Outcomes recorded during the current run."""

    imported: int = 0
    failed: int = 0
    holders_imported: int = 0
    holders_failed: int = 0


class MigrationLedger:
    """Maps Jira keys to GitHub issue numbers and logs failures.

    Use :meth:`open` (or the constructor followed by entering the context
    manager) so the backing files are opened for appending.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.mappings_path = self.directory / MAPPINGS_FILE_NAME
        self.failures_path = self.directory / FAILURES_FILE_NAME
        self.counts = LedgerCounts()
        self._issue_numbers: dict[str, int] = {}
        self._holder_numbers: dict[str, int] = {}
        self._linked: dict[str, int] = {}
        self._mappings_file: TextIO | None = None
        self._failures_file: TextIO | None = None
        self._load()

    @classmethod
    def open(cls, directory: Path | str) -> Self:
        ledger = cls(directory)
        ledger.start_run()
        return ledger

    def __enter__(self) -> Self:
        if self._mappings_file is None:
            self.start_run()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _load(self) -> None:
        if not self.mappings_path.exists():
            return
        try:
            lines = self.mappings_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            msg = f"Cannot read ledger file {self.mappings_path}: {e}"
            raise LedgerError(msg) from e

        for line_number, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, number = line.rpartition(":")
            if not sep or not key or not number.isdigit():
                msg = f"Malformed line {line_number} in {self.mappings_path}: {raw!r}"
                raise LedgerError(msg)

            if key.startswith(HOLDER_PREFIX):
                target = self._holder_numbers
                key = key.removeprefix(HOLDER_PREFIX)
            elif key.startswith(LINK_PREFIX):
                target = self._linked
                key = key.removeprefix(LINK_PREFIX)
            else:
                target = self._issue_numbers
            if key in target:
                logger.warning(f"Duplicate ledger entry for {key} on line {line_number}, keeping #{target[key]}")
                continue
            target[key] = int(number)

        logger.info(
            f"Loaded {len(self._issue_numbers)} issue mappings and {len(self._holder_numbers)} "
            f"backport holder mappings from {self.mappings_path}"
        )

    def start_run(self) -> None:
        """Open the backing files for appending and write the run header."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._mappings_file = self.mappings_path.open("a", encoding="utf-8")
            self._failures_file = self.failures_path.open("a", encoding="utf-8")
        except OSError as e:
            msg = f"Cannot open ledger files in {self.directory}: {e}"
            raise LedgerError(msg) from e
        timestamp = dt.datetime.now(dt.UTC).isoformat(sep=" ", timespec="seconds")
        self._append(self._failures_file, f"{RUN_SEPARATOR}\n{timestamp}\n")

    def close(self) -> None:
        for handle in (self._mappings_file, self._failures_file):
            if handle is not None:
                handle.close()
        self._mappings_file = None
        self._failures_file = None

    def _append(self, handle: TextIO | None, text: str) -> None:
        if handle is None:
            msg = "Ledger is not open for writing"
            raise LedgerError(msg)
        try:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            msg = f"Cannot write to ledger file {handle.name}: {e}"
            raise LedgerError(msg) from e

    @property
    def is_empty(self) -> bool:
        return not self._issue_numbers and not self._holder_numbers

    def remaining(self, issues: Iterable[SourceIssue]) -> list[SourceIssue]:
        """Return the issues not yet imported, in their original order."""
        return [issue for issue in issues if issue.key not in self._issue_numbers]

    def issue_number_for(self, key: str) -> int | None:
        return self._issue_numbers.get(key)

    def holder_number_for(self, milestone_title: str) -> int | None:
        return self._holder_numbers.get(milestone_title)

    def is_linked(self, key: str) -> bool:
        """Whether the cross-link comment of ``key`` has already been posted."""
        return key in self._linked

    def record_link(self, key: str, issue_number: int) -> None:
        """Record that the cross-link comment was posted on ``issue_number``."""
        if key in self._linked:
            return
        self._append(self._mappings_file, f"{LINK_PREFIX}{key}:{issue_number}\n")
        self._linked[key] = issue_number

    def record(self, key: str, issue_number: int | None = None, failure: str | None = None) -> None:
        """Record the outcome of a primary issue import.

        Exactly one of ``issue_number`` and ``failure`` must be given. A key
        that is already mapped is not written again.
        """
        if (issue_number is None) == (failure is None):
            msg = "Exactly one of issue_number and failure must be given"
            raise ValueError(msg)

        if issue_number is not None:
            if key in self._issue_numbers:
                logger.warning(f"{key} already recorded as #{self._issue_numbers[key]}, ignoring #{issue_number}")
                return
            self._append(self._mappings_file, f"{key}:{issue_number}\n")
            self._issue_numbers[key] = issue_number
            self.counts.imported += 1
        else:
            self._append(self._failures_file, f"=> {key} [{failure}]\n")
            self.counts.failed += 1

    def record_holder(self, milestone_title: str, issue_number: int | None = None, failure: str | None = None) -> None:
        """Record the outcome of a backport holder import, keyed by milestone title."""
        if (issue_number is None) == (failure is None):
            msg = "Exactly one of issue_number and failure must be given"
            raise ValueError(msg)

        if issue_number is not None:
            if milestone_title in self._holder_numbers:
                logger.warning(f"Backport holder for {milestone_title} already recorded, ignoring #{issue_number}")
                return
            self._append(self._mappings_file, f"{HOLDER_PREFIX}{milestone_title}:{issue_number}\n")
            self._holder_numbers[milestone_title] = issue_number
            self.counts.holders_imported += 1
        else:
            self._append(self._failures_file, f"=> {milestone_title} backports [{failure}]\n")
            self.counts.holders_failed += 1

    def add_failure_message(self, message: str) -> None:
        """Append a free-form data-integrity message to the failure log."""
        self._append(self._failures_file, f"{message}\n")

    def summary(self) -> str:
        c = self.counts
        return (
            f"{c.imported} imported issues, {c.failed} failed imports, "
            f"{c.holders_imported} backported issue holders, {c.holders_failed} failed holder imports"
        )
