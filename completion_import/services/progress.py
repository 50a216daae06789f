from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

One tqdm bar per run counting imported rows. In non-TTY environments (CI, cron,
redirected output) the bar is disabled so the log stays free of control
sequences.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Row progress tracker for an import run."""

    def __init__(self, total_rows: int = 0, *, description: str = "Importing completions") -> None:
        self.total_rows = total_rows
        self.description = description
        self.processed_rows = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows or None,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start_file(self, file_path: Path, rows: int) -> None:
        """Show the current file and grow the total by its row count."""
        if self.enabled and self.pbar is not None:
            self.pbar.total = (self.pbar.total or 0) + rows
            self.pbar.set_description(f"{self.description} ({file_path.name})")
            self.pbar.refresh()

    def advance(self, rows: int = 1) -> None:
        self.processed_rows += rows
        if self.enabled and self.pbar is not None:
            self.pbar.update(rows)

    def set_postfix(self, **kwargs: Any) -> None:
        """Show running counters (added / skipped ...) next to the bar."""
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
