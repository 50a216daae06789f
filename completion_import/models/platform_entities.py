from __future__ import annotations

from dataclasses import dataclass, replace

"""Read-only snapshots of learning platform entities.

The platform (Moodle) owns and persists these records. The import tool only reads
them through the LearningPlatform gateway and hands modified CompletionState
copies back for writing.

Completion state values mirror Moodle's completionlib constants.
"""

__all__ = [
    "COMPLETION_INCOMPLETE",
    "COMPLETION_COMPLETE",
    "COMPLETION_COMPLETE_PASS",
    "COMPLETION_COMPLETE_FAIL",
    "Course",
    "User",
    "Activity",
    "CompletionState",
    "Role",
]

COMPLETION_INCOMPLETE = 0
COMPLETION_COMPLETE = 1
COMPLETION_COMPLETE_PASS = 2
COMPLETION_COMPLETE_FAIL = 3


@dataclass(frozen=True)
class Course:
    """A course row (subset of mdl_course)."""
    id: int
    shortname: str
    fullname: str
    idnumber: str | None = None
    enablecompletion: int = 0


@dataclass(frozen=True)
class User:
    """A user row (subset of mdl_user)."""
    id: int
    username: str
    idnumber: str | None = None
    email: str | None = None
    firstname: str | None = None
    lastname: str | None = None


@dataclass(frozen=True)
class Activity:
    """A course module instance together with its containing section.

    `name` is the module instance name (e.g. the page title), `section_name` the
    raw section name which may be None for unnamed sections.
    """
    id: int  # course_modules.id (cmid)
    course_id: int
    module_name: str  # page, quiz, assign ...
    instance_id: int
    name: str
    section_id: int
    section_number: int
    section_name: str | None = None


@dataclass(frozen=True)
class CompletionState:
    """Per-user, per-activity completion row (mdl_course_modules_completion).

    id=None は未保存 (プラットフォーム側にまだ行が無い) 状態。
    """
    coursemoduleid: int
    userid: int
    completionstate: int = COMPLETION_INCOMPLETE
    overrideby: int | None = None
    timemodified: int = 0
    id: int | None = None

    @property
    def is_complete(self) -> bool:
        return self.completionstate == COMPLETION_COMPLETE

    def completed_at(self, timestamp: int) -> CompletionState:
        """Return a copy marked complete with the given modification time."""
        return replace(self, completionstate=COMPLETION_COMPLETE, timemodified=timestamp)


@dataclass(frozen=True)
class Role:
    id: int
    shortname: str
