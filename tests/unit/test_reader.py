from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pandas as pd
import pytest

from completion_import.models.config_models import ImportConfig
from completion_import.reader.tabular import (
    MissingColumnsError,
    SheetHeaderError,
    UnsupportedFileError,
    normalize_sheet,
    parse_completion_date,
    read_import_file,
)

NOW = datetime(2024, 1, 1, 0, 0, 0, tzinfo=UTC)


@pytest.fixture()
def cfg(tmp_path: Path) -> ImportConfig:
    return ImportConfig(source_directory=str(tmp_path), acting_user="admin")


def test_read_csv_basic(tmp_path: Path, cfg: ImportConfig):
    f = tmp_path / "completions.csv"
    f.write_text(
        "Course,User,Section,Activity,CompletionDate\n"
        "CS101, alice ,Week 1,Intro Reading,1700000000\n"
        "\n"
        "CS101,bob,Week 1,Quiz 1,\n",
        encoding="utf-8",
    )
    records = read_import_file(f, cfg, now=NOW)

    assert len(records) == 2
    first, second = records
    assert first.course_field == "shortname" and first.course_value == "CS101"
    assert first.user_field == "username" and first.user_value == "alice"
    assert first.section_name == "Week 1"
    assert first.activity_name == "Intro Reading"
    assert first.date_completed == 1700000000
    assert first.row_number == 1
    # 空行は行番号を消費する
    assert second.row_number == 3
    assert second.date_completed == int(NOW.timestamp())


def test_read_csv_custom_fields_and_delimiter(tmp_path: Path):
    cfg = ImportConfig(
        source_directory=str(tmp_path), acting_user="admin",
        course_field="idnumber", user_field="email", csv_delimiter=";",
    )
    f = tmp_path / "c.csv"
    f.write_text("course;user;section;activity\ncs-101;a@example.com;Week 1;Quiz 1\n", encoding="utf-8")
    (record,) = read_import_file(f, cfg, now=NOW)
    assert record.course_field == "idnumber" and record.course_value == "cs-101"
    assert record.user_field == "email" and record.user_value == "a@example.com"


def test_read_csv_keeps_na_like_strings(tmp_path: Path, cfg: ImportConfig):
    f = tmp_path / "c.csv"
    f.write_text("course,user,section,activity\nNA,null,Week 1,None\n", encoding="utf-8")
    (record,) = read_import_file(f, cfg, now=NOW)
    assert record.course_value == "NA"
    assert record.user_value == "null"
    assert record.activity_name == "None"


def test_read_csv_missing_columns(tmp_path: Path, cfg: ImportConfig):
    f = tmp_path / "c.csv"
    f.write_text("course,user,activity\nCS101,alice,Quiz 1\n", encoding="utf-8")
    with pytest.raises(MissingColumnsError, match="section"):
        read_import_file(f, cfg, now=NOW)


def test_read_xlsx_with_second_header_row(tmp_path: Path):
    cfg = ImportConfig(source_directory=str(tmp_path), acting_user="admin", header_row=2, user_field="id")
    f = tmp_path / "c.xlsx"
    rows = [
        ["Completion export", None, None, None, None],
        ["course", "user", "section", "activity", "completiondate"],
        ["CS101", 10, "Week 1", "Intro Reading", datetime(2023, 11, 14, 22, 13, 20)],
    ]
    with pd.ExcelWriter(f, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, header=False, index=False)

    (record,) = read_import_file(f, cfg, now=NOW)
    assert record.user_value == "10"  # Excel の 10.0 ではなく "10"
    assert record.date_completed == 1700000000


def test_read_unsupported_suffix(tmp_path: Path, cfg: ImportConfig):
    f = tmp_path / "c.txt"
    f.write_text("course,user,section,activity\n", encoding="utf-8")
    with pytest.raises(UnsupportedFileError):
        read_import_file(f, cfg, now=NOW)


def test_normalize_sheet_header_missing():
    with pytest.raises(SheetHeaderError):
        normalize_sheet(pd.DataFrame([["only title"]]), "S", header_row=2)


def test_normalize_sheet_aliases():
    df = pd.DataFrame([["Course", "User", "Topic", "Activity", "Date"], ["c", "u", "s", "a", "1"]])
    sheet = normalize_sheet(df, "S")
    assert sheet.columns == ["course", "user", "section", "activity", "completiondate"]
    assert sheet.rows == [{"course": "c", "user": "u", "section": "s", "activity": "a", "completiondate": "1"}]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, 42),
        ("", 42),
        ("1700000000", 1700000000),
        (1700000000, 1700000000),
        (1700000000.0, 1700000000),
        ("2023-11-14 22:13:20", 1700000000),
        ("2023-11-14T22:13:20Z", 1700000000),
        (datetime(2023, 11, 14, 22, 13, 20), 1700000000),
        ("not a date", None),
        ("²", None),
        ("１７００００００００", 1700000000),
        (True, None),
    ],
)
def test_parse_completion_date_utc(value, expected):
    assert parse_completion_date(value, "UTC", default=42) == expected


def test_parse_completion_date_localises_naive_values():
    # 2023-11-15 07:13:20 in Tokyo == 2023-11-14 22:13:20 UTC
    assert parse_completion_date("2023-11-15 07:13:20", "Asia/Tokyo", default=0) == 1700000000


def test_read_csv_odd_date_cell_invalidates_only_that_row(tmp_path: Path, cfg: ImportConfig):
    f = tmp_path / "c.csv"
    f.write_text(
        "course,user,section,activity,completiondate\n"
        "CS101,alice,Week 1,Quiz 1,1700000000\n"
        "CS101,bob,Week 1,Quiz 1,²\n",
        encoding="utf-8",
    )
    records = read_import_file(f, cfg)
    assert [r.date_completed for r in records] == [1700000000, None]
