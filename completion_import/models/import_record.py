from __future__ import annotations

from dataclasses import dataclass

"""ImportRecord model for the activity completion import tool.

ImportRecord represents one row of an uploaded completion file after the reader
has normalised header names and cell values.
"""

__all__ = [
    "ImportRecord",
]


@dataclass(frozen=True)
class ImportRecord:
    """One imported (course, user, section, activity, completion date) row.

    course_field / user_field name the platform column the value is matched on
    (e.g. shortname / username). date_completed is a Unix timestamp; None means
    the reader could not parse the source value.
    """
    course_field: str
    course_value: str | None
    user_field: str
    user_value: str | None
    section_name: str | None
    activity_name: str | None
    date_completed: int | None
    row_number: int = 0  # 1-based data row in the source file (reporting only)

    @property
    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty on this record."""
        required = {
            "course": self.course_value,
            "user": self.user_value,
            "section": self.section_name,
            "activity": self.activity_name,
        }
        return [name for name, value in required.items() if not value or not str(value).strip()]
