# Shared pytest fixtures
from __future__ import annotations

import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager, nullcontext
from dataclasses import replace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from completion_import.models.import_record import ImportRecord
from completion_import.models.platform_entities import (
    Activity,
    CompletionState,
    Course,
    Role,
    User,
)


class InMemoryPlatform:
    """LearningPlatform fake holding courses, users and completion states in dicts."""

    def __init__(self) -> None:
        self.courses: list[Course] = []
        self.users: list[User] = []
        self.activities: dict[int, list[Activity]] = {}
        self.states: dict[tuple[int, int], CompletionState] = {}
        self.enrolments: set[tuple[int, int]] = set()
        self.enrol_calls: list[tuple[int, int, int]] = []
        self.roles: dict[str, Role] = {"student": Role(id=5, shortname="student")}
        self.site_completion = True
        self.overriders: set[int] = set()
        self.system_capable: set[int] = set()
        self.fail_on_write = False
        self.writes: list[CompletionState] = []

    def find_records(self, kind, field, value):
        pool = self.courses if kind == "course" else self.users
        return [e for e in pool if str(getattr(e, field, None)) == str(value)]

    def find_role(self, shortname):
        return self.roles.get(shortname)

    def completion_enabled(self, course):
        return self.site_completion and course.enablecompletion == 1

    def get_completion_state(self, activity, user_id):
        return self.states.get(
            (activity.id, user_id), CompletionState(coursemoduleid=activity.id, userid=user_id)
        )

    def set_completion_state(self, activity, state):
        if self.fail_on_write:
            from completion_import.platform.base import PlatformError

            raise PlatformError("simulated write failure")
        stored = state if state.id is not None else replace(state, id=len(self.states) + 1)
        self.states[(activity.id, state.userid)] = stored
        self.writes.append(stored)

    def ensure_enrolled(self, course_id, user_id, role_id):
        self.enrol_calls.append((course_id, user_id, role_id))
        self.enrolments.add((course_id, user_id))
        return True

    def can_override_completion(self, user, course):
        return user.id in self.overriders

    def get_course_activities(self, course):
        return list(self.activities.get(course.id, []))

    def has_system_capabilities(self, user, capabilities: Sequence[str]):
        return user.id in self.system_capable

    @contextmanager
    def row_scope(self) -> Iterator[None]:
        yield


@pytest.fixture()
def platform() -> InMemoryPlatform:
    """Site with CS101 (completion on), ART1 (completion off), alice and an admin."""
    p = InMemoryPlatform()
    p.courses = [
        Course(id=2, shortname="CS101", fullname="Computer Science 101", idnumber="cs-101", enablecompletion=1),
        Course(id=3, shortname="ART1", fullname="Art Basics", enablecompletion=0),
    ]
    p.users = [
        User(id=10, username="alice", email="alice@example.com"),
        User(id=11, username="bob", email="bob@example.com"),
        User(id=2, username="admin", email="admin@example.com"),
    ]
    p.activities = {
        2: [
            Activity(id=100, course_id=2, module_name="page", instance_id=1, name="Intro Reading",
                     section_id=20, section_number=1, section_name="Week 1"),
            Activity(id=101, course_id=2, module_name="quiz", instance_id=1, name="Quiz 1",
                     section_id=20, section_number=1, section_name="Week 1"),
            Activity(id=102, course_id=2, module_name="page", instance_id=2, name="Intro Reading",
                     section_id=21, section_number=2, section_name="Week 2"),
        ],
        3: [
            Activity(id=200, course_id=3, module_name="page", instance_id=3, name="Colour",
                     section_id=30, section_number=1, section_name="Week 1"),
        ],
    }
    p.overriders = {2}
    p.system_capable = {2}
    return p


@pytest.fixture()
def admin(platform: InMemoryPlatform) -> User:
    return platform.users[2]


@pytest.fixture()
def student_role(platform: InMemoryPlatform) -> Role:
    return platform.roles["student"]


@pytest.fixture()
def make_record():
    def _make(**overrides) -> ImportRecord:
        values = dict(
            course_field="shortname",
            course_value="CS101",
            user_field="username",
            user_value="alice",
            section_name="Week 1",
            activity_name="Intro Reading",
            date_completed=1700000000,
            row_number=1,
        )
        values.update(overrides)
        return ImportRecord(**values)
    return _make


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """source_directory: ./data
acting_user: admin
course_field: shortname
user_field: username
student_role: student
timezone: UTC
database:
  host: localhost
  port: 5432
  user: moodle
  password: secret
  database: moodle
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def write_csv(temp_workdir: Path):
    def _write(name: str, text: str) -> Path:
        f = temp_workdir / "data" / name
        f.write_text(text, encoding="utf-8")
        return f
    return _write


@pytest.fixture(autouse=True)
def _clean_logging():
    # ハンドラは setup 時の sys.stdout を掴むので capsys と合わせてテスト毎に作り直す
    from completion_import.logging.init import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def moodle_stub(platform: InMemoryPlatform):
    """Patch the CLI's database connection and gateway factory.

    Yields the MagicMock connection; the CLI then runs against `platform`
    (wrapped in DryRunPlatform for --dry-run).
    """
    from completion_import.platform.dry_run import DryRunPlatform

    conn = MagicMock()

    def _build(cursor, cfg, dry_run):
        return DryRunPlatform(platform) if dry_run else platform

    with patch("completion_import.cli.__main__._db_connection", return_value=nullcontext(conn)), \
         patch("completion_import.cli.__main__._build_platform", side_effect=_build):
        yield conn
