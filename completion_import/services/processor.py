from __future__ import annotations

import logging
import time

from ..models.import_record import ImportRecord
from ..models.platform_entities import Activity, Course, Role, User
from ..models.processing_result import ProcessingResult, SkipReason
from ..platform.base import EntityKind, LearningPlatform

"""Record processor: validate, resolve, locate and mark one imported row.

mark_activity_as_completed() walks a fixed decision chain and returns a
ProcessingResult for every outcome. Nothing in the chain raises for a row; a
batch importer can therefore always continue with the next row. Exceptions
coming out of the platform gateway itself (database failures) are not row
outcomes and propagate to the caller.
"""

__all__ = [
    "ImportRecordProcessor",
]

logger = logging.getLogger(__name__)


class ImportRecordProcessor:
    """Marks imported activity completions on a learning platform.

    Args:
        platform: Gateway to the platform's entity store, completion,
            enrolment and authorization subsystems
    """

    def __init__(self, platform: LearningPlatform) -> None:
        self.platform = platform

    @staticmethod
    def validate_import_record(record: ImportRecord) -> bool:
        """True when course, user, section and activity are all non-empty."""
        return not record.missing_fields

    def _get_one(self, kind: EntityKind, field: str, value: str) -> Course | User | None:
        matches = self.platform.find_records(kind, field, value)
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            # 曖昧一致は不在扱い (誤ったエンティティに書き込まない)
            logger.debug(f"{kind} lookup {field}={value!r} is ambiguous ({len(matches)} matches)")
        return None

    def get_course_by_field(self, field: str, value: str) -> Course | None:
        """Retrieve a course by a column such as shortname or idnumber.

        Returns None when no course or more than one course matches.
        """
        return self._get_one("course", field, value)  # type: ignore[return-value]

    def get_user_by_field(self, field: str, value: str) -> User | None:
        """Retrieve a user by a column such as username or email.

        Returns None when no user or more than one user matches.
        """
        return self._get_one("user", field, value)  # type: ignore[return-value]

    def find_activity_in_section(
        self, course: Course, section_name: str, activity_name: str
    ) -> Activity | None:
        """First activity whose section and own name match case-insensitively."""
        wanted_section = section_name.casefold()
        wanted_activity = activity_name.casefold()
        for activity in self.platform.get_course_activities(course):
            if (
                (activity.section_name or "").casefold() == wanted_section
                and activity.name.casefold() == wanted_activity
            ):
                return activity
        return None

    def mark_activity_as_completed(
        self, record: ImportRecord, student_role: Role, acting_user: User
    ) -> ProcessingResult:
        """Mark the record's activity complete on behalf of the record's user.

        The acting_user (the principal running the import, not the imported
        user) must be allowed to override completion in the course.

        Args:
            record: Validated imported record
            student_role: Role used when the user has to be enrolled first
            acting_user: Principal performing the import

        Returns:
            ProcessingResult with exactly one of added / skipped set
        """
        response = ProcessingResult(row_number=record.row_number)
        activity_label = f'Activity "{record.activity_name}" in topic "{record.section_name}"'

        course = self.get_course_by_field(record.course_field, record.course_value or "")
        if course is None:
            return response.mark_skipped(
                SkipReason.COURSE_NOT_FOUND,
                f'Unable to find course matching "{record.course_value}"',
            )
        response.course = course

        if not self.platform.completion_enabled(course):
            return response.mark_skipped(
                SkipReason.COMPLETION_DISABLED,
                f'Course "{course.fullname}" does not have completions enabled',
            )

        user = self.get_user_by_field(record.user_field, record.user_value or "")
        if user is None:
            return response.mark_skipped(
                SkipReason.USER_NOT_FOUND,
                f'Unable to find user matching "{record.user_value}"',
            )
        response.user = user

        activity = self.find_activity_in_section(
            course, record.section_name or "", record.activity_name or ""
        )
        if activity is None:
            return response.mark_skipped(
                SkipReason.ACTIVITY_NOT_FOUND,
                f'Unable to find activity "{record.activity_name}" in topic '
                f'"{record.section_name}" in course "{course.fullname}"',
            )

        # ensure the user is enrolled in this course
        if not self.platform.ensure_enrolled(course.id, user.id, student_role.id):
            logger.debug(f"could not enrol user {user.username} in course {course.shortname}")

        current = self.platform.get_completion_state(activity, user.id)
        if current.is_complete:
            return response.mark_skipped(
                SkipReason.ALREADY_COMPLETED,
                f"{activity_label} was already completed",
            )

        if not self.platform.can_override_completion(acting_user, course):
            return response.mark_skipped(
                SkipReason.OVERRIDE_NOT_ALLOWED,
                f"Configured user unable to override completion in course {course.fullname}",
            )

        # 日付なしで直接呼ばれた場合は reader と同じく現在時刻
        completed = record.date_completed if record.date_completed is not None else int(time.time())
        self.platform.set_completion_state(activity, current.completed_at(completed))
        return response.mark_added(f"{activity_label} was completed on behalf of user.")

    # short aliases
    validate = validate_import_record
    mark_completed = mark_activity_as_completed
