"""Learning platform gateways (interface, Moodle database backend, dry-run wrapper)."""

from .base import (
    OVERRIDE_COMPLETION_CAPABILITY,
    REQUIRED_CAPABILITIES,
    LearningPlatform,
    PlatformError,
)
from .dry_run import DryRunPlatform
from .moodle_db import MoodleDatabasePlatform

__all__ = [
    "LearningPlatform",
    "PlatformError",
    "OVERRIDE_COMPLETION_CAPABILITY",
    "REQUIRED_CAPABILITIES",
    "DryRunPlatform",
    "MoodleDatabasePlatform",
]
