from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv
from psycopg2.extras import RealDictCursor

from completion_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from completion_import.logging.init import get_logger, log_summary, setup_logging
from completion_import.models.config_models import ImportConfig
from completion_import.platform.base import REQUIRED_CAPABILITIES, LearningPlatform, PlatformError
from completion_import.platform.dry_run import DryRunPlatform
from completion_import.platform.moodle_db import MoodleDatabasePlatform
from completion_import.reader.tabular import read_import_file
from completion_import.services.importer import ProcessingError, process_all, scan_import_files
from completion_import.services.summary import render_summary_line

"""CLI entrypoint.

Flow:
- Load .env (overrides process environment) and config/import.yml
- Connect to the Moodle database
- Resolve the acting user and the student role, check the acting user's
  system capabilities
- Import every file in source_directory, one transaction per file
- Print the SUMMARY line and exit with 0 / 2 / 1
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _build_dsn(cfg: ImportConfig) -> str:
    """Resolve connection parameters.

    優先順位:
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config/import.yml の database セクション (不足分のフォールバック)
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "moodle")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "moodle")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ImportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a psycopg2 connection with autocommit off; always closed on exit."""
    conn = psycopg2.connect(_build_dsn(cfg), cursor_factory=RealDictCursor)
    conn.autocommit = False
    try:
        yield conn
    finally:
        if not conn.closed:
            conn.rollback()  # コミット済みなら no-op
            conn.close()


def _build_platform(cursor: Any, cfg: ImportConfig, dry_run: bool) -> LearningPlatform:
    platform: LearningPlatform = MoodleDatabasePlatform(cursor, table_prefix=cfg.table_prefix)
    if dry_run:
        platform = DryRunPlatform(platform)
    return platform


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (values override the process environment)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Import activity completions into Moodle")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--dry-run", action="store_true", help="Resolve every row but write nothing")
    p.add_argument("--inspect-data", action="store_true", help="Print parsed rows of each file then exit")
    return p.parse_args(argv)


def _inspect_data(cfg: ImportConfig) -> int:
    try:
        files = scan_import_files(Path(cfg.source_directory))
    except ProcessingError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    if not files:
        print("inspect: no .csv / .xlsx files")
        return EXIT_SUCCESS_ALL
    for f in files:
        print(f"FILE: {f.name}")
        try:
            records = read_import_file(f, cfg)
        except Exception as e:
            print(f"  read_error: {e}")
            continue
        print(f"  rows={len(records)}")
        for r in records[:3]:
            print(
                f"  row={r.row_number} course={r.course_field}:{r.course_value} "
                f"user={r.user_field}:{r.user_value} section={r.section_name!r} "
                f"activity={r.activity_name!r} date_completed={r.date_completed}"
            )
    return EXIT_SUCCESS_ALL


def run_import(cfg: ImportConfig, platform: LearningPlatform, conn: Any, dry_run: bool) -> int:
    """Resolve the acting principal, gate on capabilities and import all files."""
    logger = get_logger()

    acting = platform.find_records("user", "username", cfg.acting_user)
    if len(acting) != 1:
        logger.error(f"acting user not found: {cfg.acting_user}")
        return EXIT_FATAL
    acting_user = acting[0]

    student_role = platform.find_role(cfg.student_role)
    if student_role is None:
        logger.error(f"role not found: {cfg.student_role}")
        return EXIT_FATAL

    if not platform.has_system_capabilities(acting_user, REQUIRED_CAPABILITIES):
        logger.error(
            f"acting user lacks required capabilities: {cfg.acting_user} "
            f"({', '.join(REQUIRED_CAPABILITIES)})"
        )
        return EXIT_FATAL

    inner = platform.inner if isinstance(platform, DryRunPlatform) else platform
    if isinstance(inner, MoodleDatabasePlatform):
        inner.modifier_id = acting_user.id

    def end_file(read_ok: bool) -> None:
        if conn is None:
            return
        if dry_run or not read_ok:
            conn.rollback()
        else:
            conn.commit()

    result = process_all(cfg, platform, acting_user, student_role, end_file=end_file)

    log_summary(render_summary_line(result)[len("SUMMARY "):])
    if dry_run:
        logger.info("dry-run: no changes were written")
    return EXIT_PARTIAL_FAILURE if result.has_failures else EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # 空リスト [] はそのまま使う (None のときのみ sys.argv を読む)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        setup_logging(debug=True)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    directory = Path(cfg.source_directory)
    if not directory.is_dir():
        logger.error(f"directory not found: {directory}")
        return EXIT_FATAL

    logger.info(f"Processing files from: {directory}")

    if args.inspect_data:
        return _inspect_data(cfg)

    try:
        with _db_connection(cfg) as conn:
            with conn.cursor() as cur:
                platform = _build_platform(cur, cfg, args.dry_run)
                return run_import(cfg, platform, conn, args.dry_run)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except (PlatformError, ProcessingError) as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
