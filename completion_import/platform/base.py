from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from typing import Literal, Protocol

from ..models.platform_entities import Activity, CompletionState, Course, Role, User

"""Learning platform gateway interface.

The import tool never owns courses, users, enrolments or completion states. All
access goes through an object satisfying LearningPlatform:

- entity store:            find_records
- completion subsystem:    completion_enabled / get_completion_state / set_completion_state
- enrolment subsystem:     ensure_enrolled
- authorization subsystem: can_override_completion / has_system_capabilities
- course structure:        get_course_activities
- roles:                   find_role
- per-row write scope:     row_scope
"""

__all__ = [
    "EntityKind",
    "LearningPlatform",
    "PlatformError",
    "OVERRIDE_COMPLETION_CAPABILITY",
    "REQUIRED_CAPABILITIES",
]

EntityKind = Literal["course", "user"]

OVERRIDE_COMPLETION_CAPABILITY = "moodle/course:overridecompletion"
# Capabilities the acting user needs at system level before any import runs.
REQUIRED_CAPABILITIES = (OVERRIDE_COMPLETION_CAPABILITY,)


class PlatformError(Exception):
    """Raised when the platform backend fails (connection lost, SQL error ...)."""


class LearningPlatform(Protocol):
    def find_records(self, kind: EntityKind, field: str, value: str) -> list[Course] | list[User]:
        """Return every record of `kind` whose `field` equals `value` (zero, one or many)."""
        ...

    def completion_enabled(self, course: Course) -> bool:
        ...

    def get_completion_state(self, activity: Activity, user_id: int) -> CompletionState:
        """Current state, or a default incomplete state (id=None) when none is stored."""
        ...

    def set_completion_state(self, activity: Activity, state: CompletionState) -> None:
        """Insert or update the completion state."""
        ...

    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> bool:
        """Best-effort, idempotent enrolment. False when enrolment was not possible."""
        ...

    def can_override_completion(self, user: User, course: Course) -> bool:
        ...

    def get_course_activities(self, course: Course) -> list[Activity]:
        """All activities of the course in course order."""
        ...

    def find_role(self, shortname: str) -> Role | None:
        ...

    def has_system_capabilities(self, user: User, capabilities: Sequence[str]) -> bool:
        ...

    def row_scope(self) -> AbstractContextManager[None]:
        """Scope for one imported row; a PlatformError inside undoes only that row's writes."""
        ...
