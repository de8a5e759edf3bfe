# src/upd_roster.py

import logging
import os
from datetime import date, datetime
from typing import Any, Dict, Optional
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import (
    DOWNLOAD_DIR,
    FETCH_RETRIES,
    FETCH_TIMEOUT_SECONDS,
    HTML_DATE_PRECEDENCE,
    SCHEDULE_DIR,
)
from db import get_conn
from models.location import Location
from models.parse_result import ImportResult
from parsers.field_extractors import parse_date_from_filename, parse_date_from_html
from parsers.parse_roster_html import parse_html_roster
from parsers.parse_roster_pdf import PdfUnreadableError, extract_pdf_text, parse_roster_from_text, roll_sheet_filename
from resolvers.resolve_roster import ReplacementScope, resolve_roster
from utils import OperationLogger, parse_date


def detect_upload_date(
    html:               Optional[str],
    filename:           Optional[str] = None,
    upload_date         = None,
    date_precedence:    str = HTML_DATE_PRECEDENCE,
    today:              Optional[date] = None,
) -> str:
    """
    Date for rows of single-date sections: an explicit upload date, then the file name
    and the document content in date_precedence order, then today.
    """
    explicit = parse_date(upload_date, return_iso=True) if upload_date else None
    if explicit:
        return explicit

    if date_precedence not in ("filename", "content"):
        raise ValueError(f"date_precedence must be 'filename' or 'content', got {date_precedence!r}")

    from_filename = parse_date_from_filename(filename)
    from_content = parse_date_from_html(html)
    ordered = (from_filename, from_content) if date_precedence == "filename" else (from_content, from_filename)
    for candidate in ordered:
        if candidate:
            return candidate
    return (today or date.today()).isoformat()


def _archive_html(html: str, location: Location, roster_date: str, schedule_dir: Optional[str]) -> Optional[str]:
    """Keep the uploaded roll sheet next to the scheduled PDFs; failure is not fatal."""
    folder = os.path.join(schedule_dir or SCHEDULE_DIR, location.code)
    path = os.path.join(folder, f"roll_sheet_{location.code}_{roster_date}.html")
    try:
        os.makedirs(folder, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(html)
    except OSError as e:
        logging.warning(f"Could not archive uploaded roll sheet to {path}: {e}")
        return None
    return path


def preview_html_roster(
    html:               Optional[str],
    filename:           Optional[str] = None,
    date_precedence:    str = "content",
    today:              Optional[date] = None,
) -> Dict[str, Any]:
    """Parse only: date span, swimmer count and warnings. Nothing is written."""
    fallback = detect_upload_date(html, filename, None, date_precedence, today)
    parsed = parse_html_roster(html, default_year=int(fallback[:4]))

    dates = sorted({row.date or fallback for row in parsed.rows})
    return {
        "ok":           parsed.ok,
        "error":        parsed.error,
        "layout":       parsed.layout,
        "date_start":   dates[0] if dates else fallback,
        "date_end":     dates[-1] if dates else fallback,
        "count":        len(parsed.rows),
        "sections":     parsed.sections,
        "warnings":     list(parsed.warnings),
    }


def upd_roster_from_html(
    html:               Optional[str],
    location_id:        int,
    filename:           Optional[str] = None,
    upload_date         = None,
    date_precedence:    str = HTML_DATE_PRECEDENCE,
    today:              Optional[date] = None,
    now:                Optional[datetime] = None,
    db_name:            Optional[str] = None,
    export_dir:         Optional[str] = None,
    schedule_dir:       Optional[str] = None,
) -> ImportResult:
    """
    Import an uploaded HTML roll sheet for one location.

    Every row dated today or later replaces the location's non-add-on roster from today on;
    earlier dates are left alone. The active date becomes today when the sheet covers it,
    the earliest imported date otherwise.
    """
    now = now or datetime.now()
    today = today or now.date()
    today_iso = today.isoformat()

    conn, cursor = get_conn(db_name)
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "roster",
        run_type        = "update",
    )
    logger_keys = {'location_id': location_id, 'filename': filename, 'source': 'html'}
    result = ImportResult(location_id=location_id)

    try:
        location = Location.get_by_id(cursor, location_id)
        if location is None:
            result.reason = "Invalid location"
            logger.failed(logger_keys, result.reason)
            return result

        fallback = detect_upload_date(html, filename, upload_date, date_precedence, today)
        parsed = parse_html_roster(html, default_year=int(fallback[:4]))
        result.warnings.extend(parsed.warnings)
        if not parsed.ok:
            result.reason = parsed.error or "No swimmers found in roll sheet HTML"
            logger.failed(logger_keys, result.reason)
            return result

        for row in parsed.rows:
            row.date = row.date or fallback

        dates = sorted({row.date for row in parsed.rows})
        result.date_start, result.date_end = dates[0], dates[-1]

        upcoming = [d for d in dates if d >= today_iso]
        if not upcoming:
            result.reason = "No roster entries found for today or later."
            logger.failed(logger_keys, result.reason)
            return result
        active_date = today_iso if today_iso in dates else upcoming[0]

        _archive_html(html, location, fallback, schedule_dir)

        resolved = resolve_roster(
            cursor,
            parsed.rows,
            location,
            ReplacementScope.from_date(location.location_id, today_iso),
            source      = "html",
            now         = now,
            export_dir  = export_dir,
            active_date = active_date,
        )
        conn.commit()

        result.ok = True
        result.active_date = resolved.active_date
        result.counts = resolved.counts
        result.backup_path = resolved.backup_path
        result.warnings.extend(resolved.warnings)
        logger.success(logger_keys, f"HTML roster imported ({len(parsed.rows)} rows, {len(dates)} dates)")

    except Exception as e:
        conn.rollback()
        result.ok = False
        result.reason = f"Roster import failed: {e}"
        logging.error(f"Error in upd_roster_from_html: {e}", exc_info=True)
        logger.failed(logger_keys, result.reason)

    finally:
        logger.commit_run_summary(cursor, remarks=result.reason)
        conn.commit()
        conn.close()

    return result


def upd_roster_from_pdf(
    location_id:    int,
    date            = None,
    pdf_path:       Optional[str] = None,
    now:            Optional[datetime] = None,
    db_name:        Optional[str] = None,
    export_dir:     Optional[str] = None,
    schedule_dir:   Optional[str] = None,
    backend:        Optional[str] = None,
) -> ImportResult:
    """
    Scheduled import of one location's PDF roll sheet for one date
    (SCHEDULE_DIR/<CODE>/Roll_Sheets_MM-DD-YYYY.pdf unless pdf_path is given).
    Only that date is replaced.
    """
    now = now or datetime.now()
    roster_date = parse_date(date, return_iso=True) if date else now.date().isoformat()

    conn, cursor = get_conn(db_name)
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "roster",
        run_type        = "update",
    )
    logger_keys = {'location_id': location_id, 'date': roster_date, 'source': 'pdf'}
    result = ImportResult(location_id=location_id, date_start=roster_date, date_end=roster_date)

    try:
        if not roster_date:
            result.reason = f"Invalid roster date: {date}"
            logger.failed(logger_keys, result.reason)
            return result

        location = Location.get_by_id(cursor, location_id)
        if location is None:
            result.reason = "Invalid location"
            logger.failed(logger_keys, result.reason)
            return result

        if pdf_path is None:
            pdf_path = os.path.join(
                schedule_dir or SCHEDULE_DIR, location.code,
                roll_sheet_filename(datetime.strptime(roster_date, "%Y-%m-%d").date()),
            )
        logger_keys['pdf_path'] = pdf_path
        if not os.path.isfile(pdf_path):
            result.reason = f"PDF not found: {pdf_path}"
            logger.failed(logger_keys, result.reason)
            return result

        try:
            text = extract_pdf_text(pdf_path, backend=backend)
        except PdfUnreadableError as e:
            result.reason = f"PDF unreadable: {e}"
            logger.failed(logger_keys, result.reason)
            return result

        parsed = parse_roster_from_text(text, roster_date=roster_date)
        result.warnings.extend(parsed.warnings)
        if not parsed.ok:
            result.reason = parsed.error
            logger.failed(logger_keys, result.reason)
            return result

        resolved = resolve_roster(
            cursor,
            parsed.rows,
            location,
            ReplacementScope.single_date(location.location_id, roster_date),
            source      = "pdf",
            now         = now,
            export_dir  = export_dir,
            active_date = roster_date,
        )
        conn.commit()

        result.ok = True
        result.active_date = resolved.active_date
        result.counts = resolved.counts
        result.backup_path = resolved.backup_path
        result.warnings.extend(resolved.warnings)
        logger.success(logger_keys, f"PDF roster imported ({len(parsed.rows)} rows)")

    except Exception as e:
        conn.rollback()
        result.ok = False
        result.reason = f"Roster import failed: {e}"
        logging.error(f"Error in upd_roster_from_pdf: {e}", exc_info=True)
        logger.failed(logger_keys, result.reason)

    finally:
        logger.commit_run_summary(cursor, remarks=result.reason)
        conn.commit()
        conn.close()

    return result


def _retry_session(retries: int = FETCH_RETRIES) -> requests.Session:
    session = requests.Session()
    retry_strategy = Retry(
        total               = retries,
        backoff_factor      = 1,
        status_forcelist    = [429, 500, 502, 503, 504],
        allowed_methods     = ["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def fetch_roll_sheet(url: str, dest_path: Optional[str] = None, session: Optional[requests.Session] = None) -> Optional[str]:
    """
    Download a roll sheet (PDF or HTML) to dest_path (DOWNLOAD_DIR/<url file name> by default).
    Returns the saved path, or None when the download failed.
    """
    session = session or _retry_session()
    if dest_path is None:
        name = os.path.basename(url.split("?", 1)[0]) or "roll_sheet"
        dest_path = os.path.join(DOWNLOAD_DIR, name)

    try:
        resp = session.get(url, timeout=FETCH_TIMEOUT_SECONDS)
        resp.raise_for_status()
    except requests.Timeout:
        logging.error(f"Timeout fetching roll sheet: {url}")
        return None
    except requests.ConnectionError:
        logging.error(f"Connection error fetching roll sheet: {url}")
        return None
    except requests.HTTPError as e:
        logging.error(f"HTTP error fetching roll sheet {url}: {e}")
        return None

    os.makedirs(os.path.dirname(os.path.abspath(dest_path)), exist_ok=True)
    with open(dest_path, "wb") as f:
        f.write(resp.content)
    logging.info(f"Fetched roll sheet {url} -> {dest_path} ({len(resp.content)} bytes)")
    return dest_path
