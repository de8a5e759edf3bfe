# src/upd_roster_admin.py
# Admin roster clears and snapshot restore. Every clear snapshots the rows before deleting them.

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
import sqlite3

from db import get_conn
from models.location import Location
from models.parse_result import ImportResult
from models.roster_row import RosterRow
from resolvers.resolve_roster import ReplacementScope, location_lock, resolve_roster
from roster_backup import load_snapshot, write_snapshot
from utils import OperationLogger, parse_date


def _clear_rows(
    cursor:         sqlite3.Cursor,
    location:       Location,
    date_from:      Optional[str],
    date_to:        Optional[str],
    now:            datetime,
    export_dir:     Optional[str],
) -> Dict[str, Any]:
    """Snapshot then delete every row (add-ons included) of one location in the window, atomically."""
    with location_lock(location.location_id):
        cursor.execute("SAVEPOINT clear_roster")
        try:
            rows = RosterRow.get_superseded(
                cursor, location.location_id, date_from or "0000-01-01", date_to, include_addons=True
            )
            backup_path = None
            if rows:
                backup_path = write_snapshot(location, rows, date_from, date_to, now, export_dir=export_dir, cleared=True)
            deleted = RosterRow.delete_keys(cursor, [r.key() for r in rows])
            cursor.execute("RELEASE SAVEPOINT clear_roster")
        except Exception:
            cursor.execute("ROLLBACK TO SAVEPOINT clear_roster")
            cursor.execute("RELEASE SAVEPOINT clear_roster")
            raise
    return {"location_id": location.location_id, "deleted": deleted, "backup_path": backup_path}


def _run_clear(
    location_ids:   Optional[List[int]],
    date_from:      Optional[str],
    date_to:        Optional[str],
    now:            Optional[datetime],
    db_name:        Optional[str],
    export_dir:     Optional[str],
    action:         str,
) -> Dict[str, Any]:
    now = now or datetime.now()
    conn, cursor = get_conn(db_name)
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "roster",
        run_type        = action,
    )
    outcome: Dict[str, Any] = {"ok": False, "error": None, "deleted": 0, "date_start": date_from, "date_end": date_to, "locations": []}

    try:
        if location_ids is None:
            locations = Location.get_all(cursor, active_only=False)
        else:
            locations = []
            for location_id in location_ids:
                location = Location.get_by_id(cursor, location_id)
                if location is None:
                    outcome["error"] = "Invalid location"
                    logger.failed({'location_id': location_id}, outcome["error"])
                    return outcome
                locations.append(location)

        for location in locations:
            cleared = _clear_rows(cursor, location, date_from, date_to, now, export_dir)
            outcome["locations"].append(cleared)
            outcome["deleted"] += cleared["deleted"]
            logger.success(
                {'location_id': location.location_id, 'date_from': date_from, 'date_to': date_to},
                f"Cleared {cleared['deleted']} roster rows",
            )
        conn.commit()
        outcome["ok"] = True

    except Exception as e:
        conn.rollback()
        outcome["error"] = f"Roster clear failed: {e}"
        logging.error(f"Error in {action}: {e}", exc_info=True)
        logger.failed({'action': action}, outcome["error"])

    finally:
        logger.commit_run_summary(cursor, remarks=outcome["error"])
        conn.commit()
        conn.close()

    return outcome


def clear_roster_date(location_id: int, date, now: Optional[datetime] = None, db_name: Optional[str] = None, export_dir: Optional[str] = None) -> Dict[str, Any]:
    iso = parse_date(date, return_iso=True)
    if not iso:
        return {"ok": False, "error": f"Invalid date: {date}", "deleted": 0}
    return _run_clear([location_id], iso, iso, now, db_name, export_dir, "clear_date")


def clear_roster_future(location_id: int, today=None, now: Optional[datetime] = None, db_name: Optional[str] = None, export_dir: Optional[str] = None) -> Dict[str, Any]:
    """Everything from today on."""
    now = now or datetime.now()
    iso = parse_date(today, return_iso=True) if today else now.date().isoformat()
    return _run_clear([location_id], iso, None, now, db_name, export_dir, "clear_future")


def clear_roster_all(
    location_id:    Optional[int] = None,
    start_date      = None,
    end_date        = None,
    now:            Optional[datetime] = None,
    db_name:        Optional[str] = None,
    export_dir:     Optional[str] = None,
) -> Dict[str, Any]:
    """
    Clear one location (or every location when location_id is None), for all dates
    or for a start/end window. A window needs both ends.
    """
    if bool(start_date) != bool(end_date):
        return {"ok": False, "error": "Both start_date and end_date are required to clear a window.", "deleted": 0}
    start_iso = parse_date(start_date, return_iso=True) if start_date else None
    end_iso = parse_date(end_date, return_iso=True) if end_date else None
    if start_iso and end_iso and start_iso > end_iso:
        return {"ok": False, "error": "start_date must be on or before end_date", "deleted": 0}

    location_ids = [location_id] if location_id is not None else None
    return _run_clear(location_ids, start_iso, end_iso, now, db_name, export_dir, "clear_all")


def restore_roster_backup(
    location_id:    int,
    filename:       str,
    now:            Optional[datetime] = None,
    db_name:        Optional[str] = None,
    export_dir:     Optional[str] = None,
) -> ImportResult:
    """
    Put a snapshot back: its rows replace the location's roster over the snapshot's
    date window, going through the normal reconcile (so the current state is snapshotted first).
    """
    now = now or datetime.now()
    conn, cursor = get_conn(db_name)
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "roster",
        run_type        = "restore",
    )
    logger_keys = {'location_id': location_id, 'filename': filename}
    result = ImportResult(location_id=location_id)

    try:
        location = Location.get_by_id(cursor, location_id)
        if location is None:
            result.reason = "Invalid location"
            logger.failed(logger_keys, result.reason)
            return result

        try:
            snapshot = load_snapshot(location.code, filename, export_dir=export_dir)
        except (ValueError, OSError) as e:
            result.reason = f"Snapshot not readable: {e}"
            logger.failed(logger_keys, result.reason)
            return result

        rows = snapshot["rows"]
        if not rows:
            result.reason = "Snapshot holds no roster rows"
            logger.failed(logger_keys, result.reason)
            return result

        dates = sorted(r.date for r in rows if r.date)
        date_from = snapshot.get("date_start") or dates[0]
        date_to = snapshot.get("date_end") or (dates[-1] if not snapshot.get("date_start") else None)

        resolved = resolve_roster(
            cursor,
            rows,
            location,
            ReplacementScope(location.location_id, date_from, date_to),
            source      = "restore",
            now         = now,
            export_dir  = export_dir,
        )
        conn.commit()

        result.ok = True
        result.date_start, result.date_end = date_from, date_to
        result.counts = resolved.counts
        result.backup_path = resolved.backup_path
        result.warnings.extend(resolved.warnings)
        logger.success(logger_keys, f"Snapshot restored ({len(rows)} rows)")

    except Exception as e:
        conn.rollback()
        result.ok = False
        result.reason = f"Restore failed: {e}"
        logging.error(f"Error in restore_roster_backup: {e}", exc_info=True)
        logger.failed(logger_keys, result.reason)

    finally:
        logger.commit_run_summary(cursor, remarks=result.reason)
        conn.commit()
        conn.close()

    return result
