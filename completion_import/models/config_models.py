from __future__ import annotations

from dataclasses import dataclass

"""Config dataclasses for the activity completion import tool.

Populated by completion_import/config/loader.py after YAML parsing and JSON
schema validation; defaults below match the schema defaults.
"""

__all__ = [
    "DatabaseConfig",
    "ImportConfig",
    "COURSE_FIELDS",
    "USER_FIELDS",
]

# Columns a course / user may be matched on. The gateway refuses anything else.
COURSE_FIELDS = ("shortname", "idnumber", "fullname", "id")
USER_FIELDS = ("username", "idnumber", "email", "id")


@dataclass(frozen=True)
class DatabaseConfig:
    """Moodle database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import run."""
    source_directory: str  # Directory scanned for .csv / .xlsx files
    acting_user: str  # Username of the principal performing the import
    course_field: str = "shortname"
    user_field: str = "username"
    student_role: str = "student"  # Role shortname used for enrolment
    timezone: str = "UTC"  # Applied to naive completion dates
    header_row: int = 1  # 1-based header row in each file
    csv_delimiter: str = ","
    csv_encoding: str = "utf-8"
    table_prefix: str = "mdl_"
    database: DatabaseConfig = DatabaseConfig()
