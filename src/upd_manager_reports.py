# src/upd_manager_reports.py

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from db import get_conn
from models.location import Location
from parsers.parse_manager_reports import parse_manager_report
from resolvers.resolve_manager_reports import resolve_manager_report
from utils import OperationLogger


def preview_manager_report(report_type: str, html: Optional[str], location_id: Optional[int] = None, db_name: Optional[str] = None) -> Dict[str, Any]:
    """Parse a report without storing it: detected location and date, row count, warnings."""
    try:
        parsed = parse_manager_report(report_type, html)
    except ValueError as e:
        return {"ok": False, "error": str(e)}

    location_name = None
    if location_id:
        conn, cursor = get_conn(db_name)
        try:
            location = Location.get_by_id(cursor, location_id)
            location_name = location.name if location else None
        finally:
            conn.close()

    return {
        "ok":               True,
        "report_type":      parsed.report_type,
        "report_date":      parsed.report_date,
        "location_name":    parsed.location_name or location_name,
        "row_count":        parsed.row_count,
        "warnings":         list(parsed.warnings),
    }


def upd_manager_report(
    report_type:    str,
    html:           Optional[str],
    location_id:    Optional[int] = None,
    filename:       Optional[str] = None,
    now:            Optional[datetime] = None,
    db_name:        Optional[str] = None,
) -> Dict[str, Any]:
    """
    Parse and store one uploaded manager report.
    Returns {'ok', 'error', 'report'}; warnings travel inside 'report'.
    """
    now = now or datetime.now()
    conn, cursor = get_conn(db_name)
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "manager_report",
        run_type        = "update",
    )
    logger_keys = {'report_type': report_type, 'location_id': location_id, 'filename': filename}
    outcome: Dict[str, Any] = {"ok": False, "error": None, "report": None}

    try:
        try:
            parsed = parse_manager_report(report_type, html)
        except ValueError as e:
            outcome["error"] = str(e)
            logger.failed(logger_keys, outcome["error"])
            return outcome

        record, error = resolve_manager_report(cursor, parsed, location_id, now)
        if error:
            outcome["error"] = error
            return outcome

        conn.commit()
        outcome["ok"] = True
        outcome["report"] = {
            "report_id":    record.report_id,
            "location_id":  record.location_id,
            "report_type":  record.report_type,
            "report_date":  record.report_date,
            "uploaded_at":  record.uploaded_at,
            "row_count":    parsed.row_count,
            "warnings":     record.warnings,
        }
        logger.success(logger_keys, f"{record.report_type} report stored ({parsed.row_count} rows)")

    except Exception as e:
        conn.rollback()
        outcome["error"] = f"Report upload failed: {e}"
        logging.error(f"Error in upd_manager_report: {e}", exc_info=True)
        logger.failed(logger_keys, outcome["error"])

    finally:
        logger.commit_run_summary(cursor, remarks=outcome["error"])
        conn.commit()
        conn.close()

    return outcome
