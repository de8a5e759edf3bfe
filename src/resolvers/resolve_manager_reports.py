# src/resolvers/resolve_manager_reports.py
from config import ARCHIVE_ON_UPLOAD_REPORT_TYPES
from models.location import Location
from models.manager_report import ManagerReportRecord
from models.parse_result import ReportParseResult
from utils import OperationLogger
from datetime import datetime
from typing import Optional, Tuple
import sqlite3


def resolve_report_location(
    cursor:         sqlite3.Cursor,
    parsed:         ReportParseResult,
    location_id:    Optional[int],
) -> Tuple[Optional[Location], Optional[str]]:
    """
    Pick the location a report belongs to: the location named in the document wins
    (except for drop lists, which never name one), the caller's selection otherwise.
    Returns (location, error).
    """
    if parsed.report_type == "drop_list" and not location_id:
        return None, "Drop list uploads must include a selected location."

    location = None
    if parsed.report_type != "drop_list" and parsed.location_name:
        location = Location.resolve_by_name(cursor, parsed.location_name)

    if location is None:
        if not location_id:
            return None, "Location required for this report."
        location = Location.get_by_id(cursor, location_id)
    if location is None:
        return None, "Invalid location selection."
    return location, None


def resolve_manager_report(
    cursor:         sqlite3.Cursor,
    parsed:         ReportParseResult,
    location_id:    Optional[int],
    now:            datetime,
) -> Tuple[Optional[ManagerReportRecord], Optional[str]]:
    """
    Store one parsed report as a new history row. Report types in
    ARCHIVE_ON_UPLOAD_REPORT_TYPES archive the location's earlier uploads first.
    Returns (record, error); nothing is written when error is set.
    """
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "manager_report",
        run_type        = "resolve",
    )
    logger_keys = {
        'report_type':      parsed.report_type,
        'location_id':      location_id,
        'location_name':    parsed.location_name,
    }

    location, error = resolve_report_location(cursor, parsed, location_id)
    if error:
        logger.failed(logger_keys, error)
        return None, error
    logger_keys['location_id'] = location.location_id

    warnings = list(parsed.warnings)
    # Drop lists always use the selected location, so their HTML name is not compared
    if parsed.report_type != "drop_list" and parsed.location_name and location_id:
        named = Location.resolve_by_name(cursor, parsed.location_name)
        if named is None or named.location_id != location_id:
            warnings.append(f'HTML location "{parsed.location_name}" does not match selected location.')

    for warning in warnings:
        logger.warning(logger_keys, warning)

    if parsed.report_type in ARCHIVE_ON_UPLOAD_REPORT_TYPES:
        archived = ManagerReportRecord.archive_previous(cursor, location.location_id, parsed.report_type)
        if archived:
            logger.info(parsed.report_type, f"Archived {archived} earlier reports", to_console=False)

    record = ManagerReportRecord(
        location_id     = location.location_id,
        report_type     = parsed.report_type,
        report_date     = parsed.report_date,
        data            = parsed.data,
        warnings        = warnings,
        uploaded_at     = now,
    )
    if record.insert(cursor) is None:
        _, err = record.validate()
        logger.failed(logger_keys, f"Report not stored: {err}")
        return None, err

    logger.success(logger_keys, "Manager report stored")
    logger.inc_processed()
    logger.summarize()
    return record, None
