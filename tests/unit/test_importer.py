from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from completion_import.logging.error_log import ErrorLogBuffer
from completion_import.models.config_models import ImportConfig
from completion_import.models.processing_result import SkipReason
from completion_import.platform.moodle_db import MoodleDatabasePlatform
from completion_import.services.importer import (
    ProcessingError,
    process_all,
    process_record,
    scan_import_files,
)
from completion_import.services.processor import ImportRecordProcessor

HEADER = "course,user,section,activity,completiondate\n"


def _config(temp_workdir: Path, **kwargs) -> ImportConfig:
    return ImportConfig(source_directory=str(temp_workdir / "data"), acting_user="admin", **kwargs)


# ------------------------------------------------------------------ scanning

def test_scan_import_files_filters_and_sorts(temp_workdir: Path):
    data = temp_workdir / "data"
    for name in ["b.csv", "a.XLSX", "notes.txt", "c.xls"]:
        (data / name).write_text("", encoding="utf-8")
    (data / "sub.csv").mkdir()

    assert [p.name for p in scan_import_files(data)] == ["a.XLSX", "b.csv"]


def test_scan_import_files_missing_directory(tmp_path: Path):
    with pytest.raises(ProcessingError, match="Directory not found"):
        scan_import_files(tmp_path / "missing")


def test_scan_import_files_not_a_directory(tmp_path: Path):
    f = tmp_path / "file.csv"
    f.write_text("", encoding="utf-8")
    with pytest.raises(ProcessingError, match="not a directory"):
        scan_import_files(f)


# ------------------------------------------------------------ single record

def test_process_record_invalid_record(platform, student_role, admin, make_record):
    result = process_record(
        ImportRecordProcessor(platform), make_record(user_value="  ", section_name=None), student_role, admin
    )
    assert (result.added, result.skipped, result.error) == (0, 1, 1)
    assert result.reason is SkipReason.INVALID_RECORD
    assert result.message == "Row is missing required fields: user, section"


def test_process_record_invalid_date(platform, student_role, admin, make_record):
    result = process_record(ImportRecordProcessor(platform), make_record(date_completed=None), student_role, admin)
    assert result.error == 1
    assert result.message == "Row has an invalid completion date"
    assert platform.writes == []


def test_process_record_platform_error(platform, student_role, admin, make_record):
    platform.fail_on_write = True
    result = process_record(ImportRecordProcessor(platform), make_record(row_number=4), student_role, admin)
    assert result.reason is SkipReason.PLATFORM_ERROR
    assert result.error == 1 and result.skipped == 1
    assert result.row_number == 4
    assert "simulated write failure" in result.message


def test_process_record_success(platform, student_role, admin, make_record):
    result = process_record(ImportRecordProcessor(platform), make_record(), student_role, admin)
    assert result.added == 1 and result.error == 0


def test_process_record_odd_id_cell_is_not_found_on_database_gateway(student_role, admin, make_record):
    cur = MagicMock()
    processor = ImportRecordProcessor(MoodleDatabasePlatform(cur))

    result = process_record(processor, make_record(course_field="id", course_value="²"), student_role, admin)

    assert result.reason is SkipReason.COURSE_NOT_FOUND
    assert result.error == 0
    statements = [repr(c.args[0]) for c in cur.execute.call_args_list]
    assert "SAVEPOINT completion_row" in statements[0]
    assert "RELEASE SAVEPOINT" in statements[-1]


# --------------------------------------------------------------- whole run

def test_process_all_counts_rows_and_files(temp_workdir, write_csv, platform, student_role, admin):
    write_csv(
        "a.csv",
        HEADER
        + "CS101,alice,Week 1,Intro Reading,1700000000\n"
        + "CS101,alice,Week 1,Intro Reading,1700000000\n"
        + "CS101,nobody,Week 1,Quiz 1,\n",
    )
    write_csv("b.csv", HEADER + "ART1,bob,Week 1,Colour,2023-11-14 10:00\n")

    summary = process_all(_config(temp_workdir), platform, admin, student_role)

    assert summary.total_rows == 4
    assert summary.added == 1
    assert summary.skipped == 3
    assert summary.errors == 0
    assert [fs.file_name for fs in summary.file_stats] == ["a.csv", "b.csv"]
    assert [fs.status for fs in summary.file_stats] == ["success", "success"]
    assert summary.file_stats[0].added == 1 and summary.file_stats[0].skipped == 2
    reasons = [r.reason for r in summary.results]
    assert reasons == [
        None,
        SkipReason.ALREADY_COMPLETED,
        SkipReason.USER_NOT_FOUND,
        SkipReason.COMPLETION_DISABLED,
    ]
    assert summary.has_failures is True
    assert platform.states[(100, 10)].timemodified == 1700000000


def test_process_all_writes_error_log(temp_workdir, write_csv, platform, student_role, admin):
    write_csv("a.csv", HEADER + "CS101,alice,Week 9,Missing,\n" + ",alice,Week 1,Quiz 1,\n")

    process_all(_config(temp_workdir), platform, admin, student_role)

    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    entries = [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]
    assert [(e["file"], e["row"], e["error_type"]) for e in entries] == [
        ("a.csv", 1, "ACTIVITY_NOT_FOUND"),
        ("a.csv", 2, "INVALID_RECORD"),
    ]


def test_process_all_no_error_log_when_everything_added(temp_workdir, write_csv, platform, student_role, admin):
    write_csv("a.csv", HEADER + "CS101,alice,Week 1,Quiz 1,1700000000\n")

    summary = process_all(_config(temp_workdir), platform, admin, student_role)

    assert summary.added == 1 and summary.has_failures is False
    assert list((temp_workdir / "logs").glob("errors-*.log")) == []


def test_process_all_unreadable_file_continues(temp_workdir, write_csv, platform, student_role, admin):
    write_csv("a.csv", "name,email\nx,y\n")
    write_csv("b.csv", HEADER + "CS101,alice,Week 1,Quiz 1,1700000000\n")
    log = ErrorLogBuffer(logs_dir=temp_workdir / "logs")
    calls: list[bool] = []

    summary = process_all(
        _config(temp_workdir), platform, admin, student_role, error_log=log, end_file=calls.append
    )

    assert calls == [False, True]
    assert [fs.status for fs in summary.file_stats] == ["failed", "success"]
    assert summary.failed_files == 1
    assert summary.added == 1
    # 呼び出し側のバッファは flush されない
    assert len(log) == 1
    assert list((temp_workdir / "logs").glob("errors-*.log")) == []
    path = log.flush()
    entry = json.loads(path.read_text(encoding="utf-8"))
    assert entry["row"] == -1
    assert entry["error_type"] == "FILE_READ_ERROR"
    assert "missing columns" in entry["message"]


def test_process_all_platform_error_does_not_stop_file(temp_workdir, write_csv, platform, student_role, admin):
    write_csv(
        "a.csv",
        HEADER + "CS101,alice,Week 1,Quiz 1,1700000000\n" + "CS101,bob,Week 9,Nothing,1700000000\n",
    )
    platform.fail_on_write = True

    summary = process_all(_config(temp_workdir), platform, admin, student_role)

    assert summary.total_rows == 2
    assert summary.errors == 1
    assert [r.reason for r in summary.results] == [SkipReason.PLATFORM_ERROR, SkipReason.ACTIVITY_NOT_FOUND]


def test_process_all_uses_configured_fields(temp_workdir, write_csv, platform, student_role, admin):
    write_csv("a.csv", HEADER + "cs-101,bob@example.com,week 2,INTRO READING,1700000000\n")

    summary = process_all(
        _config(temp_workdir, course_field="idnumber", user_field="email"), platform, admin, student_role
    )

    assert summary.added == 1
    assert (102, 11) in platform.states
    assert platform.enrol_calls == [(2, 11, 5)]


def test_process_all_empty_directory(temp_workdir, platform, student_role, admin):
    summary = process_all(_config(temp_workdir), platform, admin, student_role)
    assert summary.total_rows == 0
    assert summary.file_stats == []
    assert summary.has_failures is False


def test_process_all_missing_directory(tmp_path, platform, student_role, admin):
    cfg = ImportConfig(source_directory=str(tmp_path / "nope"), acting_user="admin")
    with pytest.raises(ProcessingError):
        process_all(cfg, platform, admin, student_role)
