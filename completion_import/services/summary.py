from __future__ import annotations

from ..models.processing_result import ImportSummary

"""SUMMARY line rendering for the activity completion import tool.

Format:
SUMMARY files={files} failed_files={failed} rows={rows} added={added}
skipped={skipped} errors={errors} elapsed_sec={elapsed}
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Render a metric without scientific notation or a trailing `.0`."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_summary_line(summary: ImportSummary) -> str:
    """Render the SUMMARY line for an import run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2023, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2023, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> s = ImportSummary(total_rows=3, added=2, skipped=1, errors=0,
        ...                   start_time=start, end_time=end, elapsed_seconds=2.0)
        >>> render_summary_line(s)
        'SUMMARY files=0 failed_files=0 rows=3 added=2 skipped=1 errors=0 elapsed_sec=2'
    """
    return (
        f"SUMMARY files={len(summary.file_stats)} "
        f"failed_files={summary.failed_files} "
        f"rows={summary.total_rows} "
        f"added={summary.added} "
        f"skipped={summary.skipped} "
        f"errors={summary.errors} "
        f"elapsed_sec={format_number(summary.elapsed_seconds)}"
    )
