from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the skipped-row log.

Every row that was not added (and every file that could not be read) is written
to the JSON Lines error log as one ErrorRecord. row=-1 is the sentinel for
file-level errors where no specific row applies.

The JSON shape is fixed by completion_import/logging/error_log_schema.json.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Import file name being processed
        row: Data row number (1-based). Use -1 for file-level errors
        error_type: Error classification in UPPER_SNAKE_CASE (SkipReason value)
        message: Human-readable explanation of the outcome
    """
    timestamp: str  # ISO8601 UTC
    file: str
    row: int  # 行番号。ファイル単位のエラーは -1
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(file: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize ErrorRecord to JSON Lines format (no extra keys)."""
        return json.dumps(asdict(self), ensure_ascii=False)
