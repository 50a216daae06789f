"""Domain models for the activity completion import tool.

This package contains the row, result, configuration and platform entity models
used throughout the application.
"""

from .config_models import DatabaseConfig, ImportConfig
from .error_record import ErrorRecord
from .import_record import ImportRecord
from .platform_entities import (
    COMPLETION_COMPLETE,
    COMPLETION_INCOMPLETE,
    Activity,
    CompletionState,
    Course,
    Role,
    User,
)
from .processing_result import FileStat, ImportSummary, ProcessingResult, SkipReason

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    # Row processing models
    "ImportRecord",
    "ProcessingResult",
    "SkipReason",
    "FileStat",
    "ImportSummary",
    "ErrorRecord",
    # Platform entities
    "Activity",
    "CompletionState",
    "Course",
    "Role",
    "User",
    "COMPLETION_COMPLETE",
    "COMPLETION_INCOMPLETE",
]
