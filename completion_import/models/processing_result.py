from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .platform_entities import Course, User

"""Processing result models for the activity completion import tool.

ProcessingResult is the per-row outcome produced by the record processor. The
processor never raises for a row: every failure is expressed as a skipped
result with a message so that a batch can continue past individual rows.

ImportSummary / FileStat aggregate those outcomes for the SUMMARY line.
"""

__all__ = [
    "SkipReason",
    "ProcessingResult",
    "FileStat",
    "ImportSummary",
]


class SkipReason(Enum):
    """Why a row stopped short of writing a completion state.

    - INVALID_RECORD: required field missing on the row (validation failure)
    - COURSE_NOT_FOUND / USER_NOT_FOUND / ACTIVITY_NOT_FOUND: lookup failure
    - COMPLETION_DISABLED / OVERRIDE_NOT_ALLOWED: policy failure
    - ALREADY_COMPLETED: idempotence short-circuit, not a real failure
    - PLATFORM_ERROR: the gateway itself raised while handling the row
    """
    INVALID_RECORD = "INVALID_RECORD"
    COURSE_NOT_FOUND = "COURSE_NOT_FOUND"
    COMPLETION_DISABLED = "COMPLETION_DISABLED"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACTIVITY_NOT_FOUND = "ACTIVITY_NOT_FOUND"
    ALREADY_COMPLETED = "ALREADY_COMPLETED"
    OVERRIDE_NOT_ALLOWED = "OVERRIDE_NOT_ALLOWED"
    PLATFORM_ERROR = "PLATFORM_ERROR"


@dataclass
class ProcessingResult:
    """Outcome of processing a single ImportRecord.

    added / skipped are 0 or 1 and mutually exclusive once processing ran.
    error is reserved: the record processor never sets it, the batch importer
    flags validation failures and gateway errors with it.
    """
    added: int = 0
    skipped: int = 0
    error: int = 0
    message: str | None = None
    course: Course | None = None
    user: User | None = None
    reason: SkipReason | None = None
    row_number: int = 0

    def mark_added(self, message: str) -> ProcessingResult:
        self.added = 1
        self.skipped = 0
        self.reason = None
        self.message = message
        return self

    def mark_skipped(self, reason: SkipReason, message: str) -> ProcessingResult:
        self.added = 0
        self.skipped = 1
        self.reason = reason
        self.message = message
        return self

    @property
    def is_failure(self) -> bool:
        """True when the row needs operator attention (anything but added / already done)."""
        if self.error:
            return True
        return bool(self.skipped) and self.reason is not SkipReason.ALREADY_COMPLETED


@dataclass(frozen=True)
class FileStat:
    """Per-file statistics (internal helper for ImportSummary)."""
    file_name: str
    status: str  # success/failed
    total_rows: int = 0
    added: int = 0
    skipped: int = 0
    errors: int = 0
    elapsed_seconds: float = 0.0


@dataclass(frozen=True)
class ImportSummary:
    """Aggregated results of one import run (SUMMARY line source)."""
    total_rows: int
    added: int
    skipped: int
    errors: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    results: list[ProcessingResult] = field(default_factory=list)
    file_stats: list[FileStat] = field(default_factory=list)

    @property
    def failed_files(self) -> int:
        return sum(1 for s in self.file_stats if s.status == "failed")

    @property
    def has_failures(self) -> bool:
        return self.failed_files > 0 or any(r.is_failure for r in self.results)
