from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..models.platform_entities import Activity, CompletionState, Course, Role, User
from .base import EntityKind, LearningPlatform

"""Dry-run wrapper around a LearningPlatform.

Reads are delegated unchanged; enrolment and completion writes are recorded
and logged but never reach the wrapped platform. Used by `--dry-run`.
"""

__all__ = [
    "DryRunPlatform",
]

logger = logging.getLogger(__name__)


@dataclass
class DryRunPlatform:
    inner: LearningPlatform
    suppressed_enrolments: list[tuple[int, int, int]] = field(default_factory=list)
    suppressed_states: list[CompletionState] = field(default_factory=list)

    def find_records(self, kind: EntityKind, field: str, value: str) -> list[Course] | list[User]:
        return self.inner.find_records(kind, field, value)

    def find_role(self, shortname: str) -> Role | None:
        return self.inner.find_role(shortname)

    def completion_enabled(self, course: Course) -> bool:
        return self.inner.completion_enabled(course)

    def get_completion_state(self, activity: Activity, user_id: int) -> CompletionState:
        # 抑止済みの書き込みを反映して同一ファイル内の重複行を already completed にする
        for state in reversed(self.suppressed_states):
            if state.coursemoduleid == activity.id and state.userid == user_id:
                return state
        return self.inner.get_completion_state(activity, user_id)

    def set_completion_state(self, activity: Activity, state: CompletionState) -> None:
        logger.debug(f"dry-run: skip completion write cmid={activity.id} userid={state.userid}")
        self.suppressed_states.append(state)

    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> bool:
        logger.debug(f"dry-run: skip enrolment course={course_id} userid={user_id} roleid={role_id}")
        self.suppressed_enrolments.append((course_id, user_id, role_id))
        return True

    def can_override_completion(self, user: User, course: Course) -> bool:
        return self.inner.can_override_completion(user, course)

    def get_course_activities(self, course: Course) -> list[Activity]:
        return self.inner.get_course_activities(course)

    def has_system_capabilities(self, user: User, capabilities: Sequence[str]) -> bool:
        return self.inner.has_system_capabilities(user, capabilities)

    @contextmanager
    def row_scope(self) -> Iterator[None]:
        with self.inner.row_scope():
            yield
