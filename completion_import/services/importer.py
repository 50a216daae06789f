from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import ImportConfig
from ..models.import_record import ImportRecord
from ..models.platform_entities import Role, User
from ..models.processing_result import FileStat, ImportSummary, ProcessingResult, SkipReason
from ..platform.base import LearningPlatform, PlatformError
from ..reader.tabular import SUPPORTED_SUFFIXES, read_import_file
from .processor import ImportRecordProcessor
from .progress import ProgressTracker

"""Batch import orchestration.

process_all() scans the configured directory, reads every import file and runs
each row through ImportRecordProcessor, producing one ProcessingResult per row.
A row never aborts its file and a file never aborts the run; only a missing or
unreadable source directory is fatal (ProcessingError).
"""

__all__ = [
    "ProcessingError",
    "scan_import_files",
    "process_record",
    "process_all",
]

logger = logging.getLogger(__name__)


class ProcessingError(Exception):
    """Fatal error that prevents the import run from starting."""


def scan_import_files(directory: Path) -> list[Path]:
    """Scan directory for .csv / .xlsx files (non-recursive, sorted by name).

    Raises:
        ProcessingError: If directory doesn't exist or can't be read
    """
    if not directory.exists():
        raise ProcessingError(f"Directory not found: {directory}")

    if not directory.is_dir():
        raise ProcessingError(f"Path is not a directory: {directory}")

    try:
        return sorted(
            (p for p in directory.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES),
            key=lambda p: p.name,
        )
    except OSError as e:
        raise ProcessingError(f"Error reading directory {directory}: {e}") from e


def process_record(
    processor: ImportRecordProcessor,
    record: ImportRecord,
    student_role: Role,
    acting_user: User,
) -> ProcessingResult:
    """Validate and process one record; never raises for row-level problems.

    Invalid records and gateway failures come back as skipped results with
    error=1; everything else is whatever mark_activity_as_completed decided.
    """
    if not processor.validate_import_record(record):
        return ProcessingResult(
            skipped=1,
            error=1,
            reason=SkipReason.INVALID_RECORD,
            message=f"Row is missing required fields: {', '.join(record.missing_fields)}",
            row_number=record.row_number,
        )
    if record.date_completed is None:
        return ProcessingResult(
            skipped=1,
            error=1,
            reason=SkipReason.INVALID_RECORD,
            message="Row has an invalid completion date",
            row_number=record.row_number,
        )

    try:
        with processor.platform.row_scope():
            return processor.mark_activity_as_completed(record, student_role, acting_user)
    except PlatformError as e:
        return ProcessingResult(
            skipped=1,
            error=1,
            reason=SkipReason.PLATFORM_ERROR,
            message=f"Platform error: {e}",
            row_number=record.row_number,
        )


def _log_result(file_name: str, result: ProcessingResult) -> None:
    where = f"{file_name}:{result.row_number}"
    if result.added:
        logger.info(f"{where} {result.message}")
    elif result.error:
        logger.error(f"{where} {result.message}")
    elif result.reason is SkipReason.ALREADY_COMPLETED:
        logger.info(f"{where} {result.message}")
    else:
        logger.warning(f"{where} {result.message}")


def process_all(
    config: ImportConfig,
    platform: LearningPlatform,
    acting_user: User,
    student_role: Role,
    *,
    error_log: ErrorLogBuffer | None = None,
    end_file: Callable[[bool], None] | None = None,
) -> ImportSummary:
    """Import every file in the configured source directory.

    Args:
        config: Import configuration
        platform: Learning platform gateway
        acting_user: Principal performing the import (authorization checks)
        student_role: Role used when a user has to be enrolled
        error_log: Buffer receiving one ErrorRecord per row that was not added
            (a fresh buffer is created and flushed when omitted)
        end_file: Called after each file with True if it was read successfully;
            the CLI commits (or rolls back in dry-run) there

    Returns:
        ImportSummary with per-row results and per-file statistics

    Raises:
        ProcessingError: If the source directory is missing or unreadable
    """
    start_time = datetime.now(UTC)
    own_log = error_log is None
    log = error_log if error_log is not None else ErrorLogBuffer()

    file_paths = scan_import_files(Path(config.source_directory))
    processor = ImportRecordProcessor(platform)

    results: list[ProcessingResult] = []
    file_stats: list[FileStat] = []

    with ProgressTracker(description="Importing completions") as progress:
        for file_path in file_paths:
            file_start = datetime.now(UTC)
            logger.info(f"Processing file: {file_path.name}")
            try:
                records = read_import_file(file_path, config, now=file_start)
            except Exception as e:
                # 読めないファイルは失敗扱いにして次のファイルへ
                logger.error(f"{file_path.name}: unable to read file: {e}")
                log.append(
                    ErrorRecord.create(
                        file=file_path.name,
                        row=-1,
                        error_type="FILE_READ_ERROR",
                        message=str(e),
                    )
                )
                file_stats.append(
                    FileStat(
                        file_name=file_path.name,
                        status="failed",
                        elapsed_seconds=(datetime.now(UTC) - file_start).total_seconds(),
                    )
                )
                if end_file is not None:
                    end_file(False)
                continue

            progress.start_file(file_path, len(records))
            file_results: list[ProcessingResult] = []
            for record in records:
                result = process_record(processor, record, student_role, acting_user)
                _log_result(file_path.name, result)
                if not result.added:
                    log.append_result(file_path.name, result)
                file_results.append(result)
                progress.advance()

            added = sum(r.added for r in file_results)
            skipped = sum(r.skipped for r in file_results)
            errors = sum(r.error for r in file_results)
            results.extend(file_results)
            progress.set_postfix(added=sum(r.added for r in results), skipped=sum(r.skipped for r in results))
            file_stats.append(
                FileStat(
                    file_name=file_path.name,
                    status="success",
                    total_rows=len(file_results),
                    added=added,
                    skipped=skipped,
                    errors=errors,
                    elapsed_seconds=(datetime.now(UTC) - file_start).total_seconds(),
                )
            )
            if end_file is not None:
                end_file(True)

    if own_log:
        try:
            path = log.flush()
        except OSError as e:
            logger.warning(f"failed to write error log: {e}")
        else:
            if path is not None:
                logger.info(f"Skipped rows written to {path}")

    end_time = datetime.now(UTC)
    return ImportSummary(
        total_rows=len(results),
        added=sum(r.added for r in results),
        skipped=sum(r.skipped for r in results),
        errors=sum(r.error for r in results),
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        results=results,
        file_stats=file_stats,
    )
