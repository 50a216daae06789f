from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import sql

from ..models.config_models import COURSE_FIELDS, USER_FIELDS
from ..models.platform_entities import Activity, CompletionState, Course, Role, User
from .base import OVERRIDE_COMPLETION_CAPABILITY, EntityKind, PlatformError

"""Moodle database gateway (PostgreSQL, psycopg2).

Implements the LearningPlatform interface directly on a Moodle site's database.
The cursor is expected to return mapping rows (psycopg2.extras.RealDictCursor);
transaction boundaries belong to the caller.

Table names are built from the configured prefix (default `mdl_`) with
psycopg2.sql.Identifier, never by string formatting of user input.
"""

__all__ = [
    "MoodleDatabasePlatform",
    "CONTEXT_SYSTEM",
    "CONTEXT_COURSE",
    "CAP_ALLOW",
    "CAP_PROHIBIT",
]

logger = logging.getLogger(__name__)

CONTEXT_SYSTEM = 10
CONTEXT_COURSE = 50
CAP_ALLOW = 1
CAP_PROHIBIT = -1000

_COURSE_COLUMNS = ("id", "shortname", "fullname", "idnumber", "enablecompletion")
_USER_COLUMNS = ("id", "username", "idnumber", "email", "firstname", "lastname")
_MODNAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")


class MoodleDatabasePlatform:
    """LearningPlatform backed by a Moodle PostgreSQL database.

    modifier_id is stamped on enrolment / role assignment rows created by this
    gateway (Moodle uses the acting user's id there).
    """

    def __init__(self, cursor: Any, table_prefix: str = "mdl_", modifier_id: int = 0) -> None:
        self._cursor = cursor
        self._prefix = table_prefix
        self.modifier_id = modifier_id
        self._config_cache: dict[str, str | None] = {}
        # get_fast_modinfo 相当のコース単位キャッシュ
        self._activity_cache: dict[int, list[Activity]] = {}

    # ------------------------------------------------------------------ helpers

    def _table(self, name: str) -> sql.Identifier:
        return sql.Identifier(f"{self._prefix}{name}")

    def _execute(self, query: sql.Composable, params: Sequence[Any] = ()) -> None:
        try:
            self._cursor.execute(query, tuple(params))
        except psycopg2.Error as e:
            raise PlatformError(str(e).strip()) from e

    def _fetchall(self, query: sql.Composable, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self._execute(query, params)
        return [dict(r) for r in self._cursor.fetchall()]

    def _fetchone(self, query: sql.Composable, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        self._execute(query, params)
        row = self._cursor.fetchone()
        return dict(row) if row is not None else None

    def _get_config(self, name: str) -> str | None:
        """Site-level setting from the config table (cached per gateway)."""
        if name not in self._config_cache:
            row = self._fetchone(
                sql.SQL("SELECT value FROM {} WHERE name = %s").format(self._table("config")),
                (name,),
            )
            self._config_cache[name] = row["value"] if row else None
        return self._config_cache[name]

    @contextmanager
    def row_scope(self) -> Iterator[None]:
        """SAVEPOINT per row so a failed statement does not abort the file transaction."""
        self._execute(sql.SQL("SAVEPOINT completion_row"))
        try:
            yield
        except PlatformError:
            self._execute(sql.SQL("ROLLBACK TO SAVEPOINT completion_row"))
            raise
        self._execute(sql.SQL("RELEASE SAVEPOINT completion_row"))

    # ------------------------------------------------------------ entity store

    def find_records(self, kind: EntityKind, field: str, value: str) -> list[Course] | list[User]:
        if kind == "course":
            allowed, columns, table = COURSE_FIELDS, _COURSE_COLUMNS, "course"
        elif kind == "user":
            allowed, columns, table = USER_FIELDS, _USER_COLUMNS, "user"
        else:
            raise ValueError(f"unknown entity kind: {kind}")

        if field not in allowed:
            logger.debug(f"refusing lookup on {kind}.{field}: field not allowed")
            return []
        lookup: Any = value
        if field == "id":
            if not str(value).strip().isdecimal():
                return []
            lookup = int(value)

        query = sql.SQL("SELECT {cols} FROM {table} WHERE {field} = %s").format(
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            table=self._table(table),
            field=sql.Identifier(field),
        )
        if kind == "user":
            query = query + sql.SQL(" AND deleted = 0")
        rows = self._fetchall(query, (lookup,))

        if kind == "course":
            return [
                Course(
                    id=int(r["id"]),
                    shortname=r["shortname"],
                    fullname=r["fullname"],
                    idnumber=r.get("idnumber"),
                    enablecompletion=int(r.get("enablecompletion") or 0),
                )
                for r in rows
            ]
        return [
            User(
                id=int(r["id"]),
                username=r["username"],
                idnumber=r.get("idnumber"),
                email=r.get("email"),
                firstname=r.get("firstname"),
                lastname=r.get("lastname"),
            )
            for r in rows
        ]

    def find_role(self, shortname: str) -> Role | None:
        row = self._fetchone(
            sql.SQL("SELECT id, shortname FROM {} WHERE shortname = %s").format(self._table("role")),
            (shortname,),
        )
        if row is None:
            return None
        return Role(id=int(row["id"]), shortname=row["shortname"])

    # ----------------------------------------------------- completion subsystem

    def completion_enabled(self, course: Course) -> bool:
        """Site-wide enablecompletion AND course.enablecompletion."""
        site_value = self._get_config("enablecompletion")
        if not site_value or site_value == "0":
            return False
        return course.enablecompletion == 1

    def get_completion_state(self, activity: Activity, user_id: int) -> CompletionState:
        row = self._fetchone(
            sql.SQL(
                "SELECT id, coursemoduleid, userid, completionstate, overrideby, timemodified "
                "FROM {} WHERE coursemoduleid = %s AND userid = %s"
            ).format(self._table("course_modules_completion")),
            (activity.id, user_id),
        )
        if row is None:
            return CompletionState(coursemoduleid=activity.id, userid=user_id)
        return CompletionState(
            id=int(row["id"]),
            coursemoduleid=int(row["coursemoduleid"]),
            userid=int(row["userid"]),
            completionstate=int(row["completionstate"]),
            overrideby=row.get("overrideby"),
            timemodified=int(row.get("timemodified") or 0),
        )

    def set_completion_state(self, activity: Activity, state: CompletionState) -> None:
        table = self._table("course_modules_completion")
        if state.id is None:
            self._execute(
                sql.SQL(
                    "INSERT INTO {} (coursemoduleid, userid, completionstate, overrideby, timemodified) "
                    "VALUES (%s, %s, %s, %s, %s)"
                ).format(table),
                (activity.id, state.userid, state.completionstate, state.overrideby, state.timemodified),
            )
        else:
            self._execute(
                sql.SQL(
                    "UPDATE {} SET completionstate = %s, overrideby = %s, timemodified = %s WHERE id = %s"
                ).format(table),
                (state.completionstate, state.overrideby, state.timemodified, state.id),
            )
        logger.debug(
            f"completion written cmid={activity.id} userid={state.userid} "
            f"state={state.completionstate} timemodified={state.timemodified}"
        )

    # ------------------------------------------------------ enrolment subsystem

    def _course_context(self, course_id: int) -> dict[str, Any] | None:
        return self._fetchone(
            sql.SQL("SELECT id, path FROM {} WHERE contextlevel = %s AND instanceid = %s").format(
                self._table("context")
            ),
            (CONTEXT_COURSE, course_id),
        )

    def ensure_enrolled(self, course_id: int, user_id: int, role_id: int) -> bool:
        """Enrol through the course's first enabled manual instance (no-op if already enrolled)."""
        instance = self._fetchone(
            sql.SQL(
                "SELECT id FROM {} WHERE courseid = %s AND enrol = 'manual' AND status = 0 "
                "ORDER BY sortorder, id LIMIT 1"
            ).format(self._table("enrol")),
            (course_id,),
        )
        if instance is None:
            logger.debug(f"no manual enrolment instance in course id={course_id}")
            return False

        existing = self._fetchone(
            sql.SQL("SELECT id FROM {} WHERE enrolid = %s AND userid = %s").format(
                self._table("user_enrolments")
            ),
            (instance["id"], user_id),
        )
        if existing is not None:
            return True

        now = int(time.time())
        self._execute(
            sql.SQL(
                "INSERT INTO {} (status, enrolid, userid, timestart, timeend, modifierid, timecreated, timemodified) "
                "VALUES (0, %s, %s, 0, 0, %s, %s, %s)"
            ).format(self._table("user_enrolments")),
            (instance["id"], user_id, self.modifier_id, now, now),
        )

        context = self._course_context(course_id)
        if context is None:
            logger.debug(f"course context missing for course id={course_id}; role not assigned")
            return True
        assigned = self._fetchone(
            sql.SQL(
                "SELECT id FROM {} WHERE roleid = %s AND contextid = %s AND userid = %s "
                "AND component = '' AND itemid = 0"
            ).format(self._table("role_assignments")),
            (role_id, context["id"], user_id),
        )
        if assigned is None:
            self._execute(
                sql.SQL(
                    "INSERT INTO {} (roleid, contextid, userid, timemodified, modifierid, component, itemid, sortorder) "
                    "VALUES (%s, %s, %s, %s, %s, '', 0, 0)"
                ).format(self._table("role_assignments")),
                (role_id, context["id"], user_id, now, self.modifier_id),
            )
        logger.debug(f"enrolled userid={user_id} in course id={course_id} roleid={role_id}")
        return True

    # -------------------------------------------------- authorization subsystem

    def _is_site_admin(self, user_id: int) -> bool:
        admins = self._get_config("siteadmins") or ""
        return str(user_id) in {a.strip() for a in admins.split(",") if a.strip()}

    def _has_capability(self, user_id: int, capability: str, context_ids: list[int]) -> bool:
        """Simplified has_capability: any assigned role allows and none prohibits.

        Roles assigned anywhere on the context path count, plus the site's
        default authenticated-user role.
        """
        if self._is_site_admin(user_id):
            return True
        if not context_ids:
            return False

        rows = self._fetchall(
            sql.SQL("SELECT DISTINCT roleid FROM {} WHERE userid = %s AND contextid = ANY(%s)").format(
                self._table("role_assignments")
            ),
            (user_id, context_ids),
        )
        role_ids = {int(r["roleid"]) for r in rows}
        default_role = self._get_config("defaultuserroleid")
        if default_role and default_role.isdecimal():
            role_ids.add(int(default_role))
        if not role_ids:
            return False

        perms = self._fetchall(
            sql.SQL(
                "SELECT permission FROM {} WHERE roleid = ANY(%s) AND capability = %s AND contextid = ANY(%s)"
            ).format(self._table("role_capabilities")),
            (sorted(role_ids), capability, context_ids),
        )
        values = {int(p["permission"]) for p in perms}
        if CAP_PROHIBIT in values:
            return False
        return CAP_ALLOW in values

    def can_override_completion(self, user: User, course: Course) -> bool:
        context = self._course_context(course.id)
        if context is None:
            return self._is_site_admin(user.id)
        path_ids = [int(p) for p in str(context["path"] or "").split("/") if p]
        return self._has_capability(user.id, OVERRIDE_COMPLETION_CAPABILITY, path_ids)

    def has_system_capabilities(self, user: User, capabilities: Sequence[str]) -> bool:
        row = self._fetchone(
            sql.SQL("SELECT id FROM {} WHERE contextlevel = %s").format(self._table("context")),
            (CONTEXT_SYSTEM,),
        )
        context_ids = [int(row["id"])] if row else []
        return all(self._has_capability(user.id, cap, context_ids) for cap in capabilities)

    # --------------------------------------------------- course structure

    def get_course_activities(self, course: Course) -> list[Activity]:
        """Course modules in course order (section number, then section sequence)."""
        if course.id in self._activity_cache:
            return self._activity_cache[course.id]

        rows = self._fetchall(
            sql.SQL(
                "SELECT cm.id, cm.course, cm.instance, m.name AS modname, "
                "cs.id AS section_id, cs.section, cs.name AS section_name, cs.sequence "
                "FROM {cm} cm "
                "JOIN {m} m ON m.id = cm.module "
                "JOIN {cs} cs ON cs.id = cm.section "
                "WHERE cm.course = %s AND cm.deletioninprogress = 0 "
                "ORDER BY cs.section, cm.id"
            ).format(
                cm=self._table("course_modules"),
                m=self._table("modules"),
                cs=self._table("course_sections"),
            ),
            (course.id,),
        )

        # モジュール種別ごとにインスタンス名を取得 (mdl_page.name 等)
        instances_by_mod: dict[str, list[int]] = {}
        for r in rows:
            instances_by_mod.setdefault(r["modname"], []).append(int(r["instance"]))
        names: dict[tuple[str, int], str] = {}
        for modname, instance_ids in instances_by_mod.items():
            if not _MODNAME_RE.match(modname):
                logger.warning(f"skipping module type with unexpected name: {modname!r}")
                continue
            for n in self._fetchall(
                sql.SQL("SELECT id, name FROM {} WHERE id = ANY(%s)").format(self._table(modname)),
                (instance_ids,),
            ):
                names[(modname, int(n["id"]))] = n["name"]

        def _position(r: dict[str, Any]) -> tuple[int, int, int]:
            sequence = [s for s in str(r.get("sequence") or "").split(",") if s]
            cmid = str(r["id"])
            pos = sequence.index(cmid) if cmid in sequence else len(sequence)
            return (int(r["section"]), pos, int(r["id"]))

        activities = [
            Activity(
                id=int(r["id"]),
                course_id=int(r["course"]),
                module_name=r["modname"],
                instance_id=int(r["instance"]),
                name=names[(r["modname"], int(r["instance"]))],
                section_id=int(r["section_id"]),
                section_number=int(r["section"]),
                section_name=r.get("section_name"),
            )
            for r in sorted(rows, key=_position)
            if (r["modname"], int(r["instance"])) in names
        ]
        self._activity_cache[course.id] = activities
        return activities
