# src/resolvers/resolve_roster.py
from models.location import Location
from models.parse_result import ImportResult
from models.roster_row import RosterRow
from models import app_state
from roster_backup import write_snapshot
from utils import OperationLogger
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence
import logging
import sqlite3
import threading


@dataclass(frozen=True)
class ReplacementScope:
    """Date window of one location that an import replaces. date_to None means open-ended."""
    location_id:    int
    date_from:      str
    date_to:        Optional[str] = None

    @classmethod
    def single_date(cls, location_id: int, date: str) -> 'ReplacementScope':
        return cls(location_id, date, date)

    @classmethod
    def from_date(cls, location_id: int, date: str) -> 'ReplacementScope':
        return cls(location_id, date, None)

    def covers(self, date: Optional[str]) -> bool:
        if not date or date < self.date_from:
            return False
        return self.date_to is None or date <= self.date_to


_location_locks: Dict[int, threading.Lock] = {}
_location_locks_guard = threading.Lock()


def location_lock(location_id: int) -> threading.Lock:
    """One lock per location: a single import/reconcile sequence at a time, locations independent."""
    with _location_locks_guard:
        lock = _location_locks.get(location_id)
        if lock is None:
            lock = _location_locks[location_id] = threading.Lock()
        return lock


def resolve_roster(
    cursor:         sqlite3.Cursor,
    rows:           Sequence[RosterRow],
    location:       Location,
    scope:          ReplacementScope,
    source:         str,
    now:            datetime,
    export_dir:     Optional[str] = None,
    active_date:    Optional[str] = None,
) -> ImportResult:
    """
    Apply freshly parsed rows to the stored roster of one location.

    Inside one savepoint: snapshot the rows the scope supersedes, delete the ones the
    import no longer carries, upsert the rest (manual attendance and zone overrides survive),
    then move the active date. Add-ons are never replaced; an import row landing on an
    add-on's key is skipped. Any error rolls the savepoint back and is re-raised.
    """
    logger = OperationLogger(
        verbosity       = 2,
        print_output    = False,
        log_to_db       = True,
        cursor          = cursor,
        object_type     = "roster",
        run_type        = "resolve",
    )
    logger_keys = {
        'location_id':  location.location_id,
        'source':       source,
        'date_from':    scope.date_from,
        'date_to':      scope.date_to,
    }

    result = ImportResult(location_id=location.location_id, date_start=scope.date_from, date_end=scope.date_to)
    counts = {"inserted": 0, "updated": 0, "unchanged": 0, "deleted": 0, "skipped_addon": 0, "skipped_scope": 0, "invalid": 0}

    # Rows outside the window belong to dates this import must not touch
    in_scope: List[RosterRow] = []
    for row in rows:
        row.location_id = location.location_id
        if not scope.covers(row.date):
            counts["skipped_scope"] += 1
            logger.skipped({**logger_keys, 'date': row.date, 'swimmer_name': row.swimmer_name}, "Outside replacement window")
            continue
        in_scope.append(row)

    with location_lock(location.location_id):
        cursor.execute("SAVEPOINT resolve_roster")
        try:
            superseded = RosterRow.get_superseded(cursor, location.location_id, scope.date_from, scope.date_to)
            if superseded:
                result.backup_path = write_snapshot(
                    location, superseded, scope.date_from, scope.date_to, now, export_dir=export_dir
                )
                logger.info(location.code, f"Snapshot of {len(superseded)} superseded rows written to {result.backup_path}", to_console=False)

            new_keys = {row.key() for row in in_scope}
            stale = [r.key() for r in superseded if r.key() not in new_keys]
            counts["deleted"] = RosterRow.delete_keys(cursor, stale)

            for row in in_scope:
                row_keys = {**logger_keys, 'date': row.date, 'start_time': row.start_time, 'swimmer_name': row.swimmer_name}
                existing = RosterRow.get_by_key(cursor, *row.key())

                if existing is not None and existing.is_addon:
                    counts["skipped_addon"] += 1
                    logger.skipped(row_keys, "Add-on already at this key")
                    continue

                status = row.upsert(cursor, now, existing=existing, keep_manual=(source == "restore"))
                if status is None:
                    counts["invalid"] += 1
                    _, err = row.validate()
                    logger.failed(row_keys, f"Invalid roster row: {err}")
                    continue

                counts[status] += 1
                logger.success(row_keys, f"Roster row {status}")
            logger.inc_processed(len(in_scope))

            if active_date:
                result.active_date = app_state.set_active_date(cursor, active_date)

            cursor.execute("RELEASE SAVEPOINT resolve_roster")

        except Exception as e:
            cursor.execute("ROLLBACK TO SAVEPOINT resolve_roster")
            cursor.execute("RELEASE SAVEPOINT resolve_roster")
            logging.error(f"Roster reconcile failed for location {location.code}: {e}", exc_info=True)
            logger.failed(logger_keys, f"Reconcile rolled back: {e}")
            raise

    for key, value in counts.items():
        if value and key in ("skipped_addon", "skipped_scope", "invalid"):
            result.warnings.append(f"{value} rows {key.replace('_', ' ')}")

    result.ok = True
    result.counts = counts
    logger.summarize()
    return result
