from __future__ import annotations

import numbers
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.config_models import ImportConfig
from ..models.import_record import ImportRecord

"""Tabular (CSV / XLSX) reader for completion import files.

- The header row is configurable (1-based, default 1); rows below it are data.
- Header names are stripped and lower-cased.
- Required columns: course, user, section, activity. completiondate is optional.
- Completion dates: numbers and digit-only strings are Unix seconds, other
  strings are parsed with pandas and localised to the configured timezone.
"""

__all__ = [
    "SUPPORTED_SUFFIXES",
    "REQUIRED_COLUMNS",
    "SheetHeaderError",
    "MissingColumnsError",
    "UnsupportedFileError",
    "SheetData",
    "read_tabular_file",
    "normalize_sheet",
    "parse_completion_date",
    "read_import_file",
]

SUPPORTED_SUFFIXES = (".csv", ".xlsx")
REQUIRED_COLUMNS = {"course", "user", "section", "activity"}
DATE_COLUMN = "completiondate"
# 表記ゆれ吸収
_COLUMN_ALIASES = {
    "datecompleted": DATE_COLUMN,
    "completion_date": DATE_COLUMN,
    "date": DATE_COLUMN,
    "topic": "section",
}


class SheetHeaderError(Exception):
    """Raised when the configured header row is missing."""

class MissingColumnsError(Exception):
    """Raised when required columns are missing in the header."""

class UnsupportedFileError(Exception):
    """Raised for file types other than .csv / .xlsx."""


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]
    rows: list[dict[str, Any]]  # 正規化済 (列名→値)
    first_row_number: int = 1


def read_tabular_file(path: Path, config: ImportConfig) -> pd.DataFrame:
    """Read a CSV or XLSX file without header interpretation.

    CSV cells are read as raw strings (no NA conversion); XLSX cells keep the
    types openpyxl reports (numbers, datetimes, strings, NaN for empty cells).
    Only the first worksheet of an XLSX workbook is read.
    """
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(
            path,
            header=None,
            dtype=str,
            keep_default_na=False,
            sep=config.csv_delimiter,
            encoding=config.csv_encoding,
            skip_blank_lines=False,
        )
    if suffix == ".xlsx":
        return pd.read_excel(path, header=None, sheet_name=0, dtype=object, engine="openpyxl")
    raise UnsupportedFileError(f"unsupported file type: {path.name}")


def _clean_cell(val: Any) -> Any:
    if val is None:
        return None
    if not isinstance(val, str) and pd.isna(val):
        return None  # NaN / NaT
    if isinstance(val, str):
        stripped = val.strip()
        return stripped if stripped else None
    if isinstance(val, numbers.Real) and not isinstance(val, bool):
        # Excel は整数 ID を 12.0 として返す
        if float(val).is_integer():
            return int(val)
    return val


def normalize_sheet(df: pd.DataFrame, sheet_name: str, header_row: int = 1) -> SheetData:
    """Normalize a raw DataFrame using `header_row` (1-based) as header.

    Steps:
    1. Validate the header row exists
    2. Extract and canonicalise column names
    3. Remaining rows become data rows; fully empty rows become empty dicts
    4. Validate required columns
    """
    header_index = header_row - 1
    if df.shape[0] <= header_index:
        raise SheetHeaderError(f"sheet '{sheet_name}' lacks header row {header_row}")
    columns = []
    for c in df.iloc[header_index].tolist():
        name = "" if _clean_cell(c) is None else str(c).strip().lower()
        columns.append(_COLUMN_ALIASES.get(name, name))

    missing = REQUIRED_COLUMNS - set(columns)
    if missing:
        raise MissingColumnsError(f"sheet '{sheet_name}' missing columns: {sorted(missing)}")

    rows: list[dict[str, Any]] = []
    for _, raw in df.iloc[header_index + 1:].iterrows():
        values = [_clean_cell(v) for v in raw.tolist()]
        if all(v is None for v in values):
            rows.append({})  # 行番号を保つため空行は空 dict で残す
            continue
        rows.append({col: val for col, val in zip(columns, values, strict=False) if col})
    return SheetData(sheet_name=sheet_name, columns=columns, rows=rows, first_row_number=1)


def parse_completion_date(value: Any, timezone: str, default: int) -> int | None:
    """Convert a completion date cell to Unix seconds.

    Returns `default` for empty cells and None when the value cannot be parsed.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    elif isinstance(value, numbers.Real):
        if pd.isna(value):
            return default
        return int(value)
    else:
        text = str(value).strip()
        if not text:
            return default
        if text.isdecimal():
            return int(text)
        try:
            ts = pd.Timestamp(pd.to_datetime(text))
        except (ValueError, TypeError, OverflowError):
            return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone, ambiguous="NaT", nonexistent="NaT")
        if pd.isna(ts):
            return None
    return int(ts.timestamp())


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)


def read_import_file(path: Path, config: ImportConfig, now: datetime | None = None) -> list[ImportRecord]:
    """Read one import file into ImportRecords (one per non-empty data row).

    Args:
        path: .csv or .xlsx file
        config: Import configuration (field names, header row, timezone, CSV options)
        now: Timestamp used for rows without a completion date (default: current UTC time)

    Raises:
        UnsupportedFileError / SheetHeaderError / MissingColumnsError, or the
        pandas / openpyxl error for unreadable files
    """
    default_ts = int((now or datetime.now(UTC)).timestamp())
    sheet = normalize_sheet(read_tabular_file(path, config), path.name, config.header_row)

    records: list[ImportRecord] = []
    for offset, row in enumerate(sheet.rows):
        if not row:
            continue
        records.append(
            ImportRecord(
                course_field=config.course_field,
                course_value=_as_text(row.get("course")),
                user_field=config.user_field,
                user_value=_as_text(row.get("user")),
                section_name=_as_text(row.get("section")),
                activity_name=_as_text(row.get("activity")),
                date_completed=parse_completion_date(row.get(DATE_COLUMN), config.timezone, default_ts),
                row_number=sheet.first_row_number + offset,
            )
        )
    return records
