# src/models/app_state.py

from datetime import date
import json
import sqlite3
from typing import Optional, Tuple
from utils import parse_date

ACTIVE_DATE_KEY             = "activeDate"
MANAGER_DATE_RANGE_KEY      = "managerDateRange"


def get_value(cursor: sqlite3.Cursor, key: str) -> Optional[str]:
    cursor.execute("SELECT value FROM app_state WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_value(cursor: sqlite3.Cursor, key: str, value: Optional[str]) -> None:
    cursor.execute(
        """
        INSERT INTO app_state (key, value, row_updated) VALUES (?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT (key) DO UPDATE SET value = excluded.value, row_updated = CURRENT_TIMESTAMP
        """,
        (key, value),
    )


def get_active_date(cursor: sqlite3.Cursor) -> Optional[str]:
    return parse_date(get_value(cursor, ACTIVE_DATE_KEY), return_iso=True)


def set_active_date(cursor: sqlite3.Cursor, active_date) -> str:
    iso = parse_date(active_date, return_iso=True)
    if not iso:
        raise ValueError(f"Invalid active date: {active_date}")
    set_value(cursor, ACTIVE_DATE_KEY, iso)
    return iso


def active_or_today(cursor: sqlite3.Cursor, today: Optional[date] = None) -> str:
    """The roster date status and attendance views default to."""
    return get_active_date(cursor) or (today or date.today()).isoformat()


def get_manager_date_range(cursor: sqlite3.Cursor) -> Optional[Tuple[str, str]]:
    raw = get_value(cursor, MANAGER_DATE_RANGE_KEY)
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    start = parse_date(parsed.get("start"), return_iso=True)
    end = parse_date(parsed.get("end"), return_iso=True)
    if not start or not end:
        return None
    return start, end


def set_manager_date_range(cursor: sqlite3.Cursor, start, end) -> Tuple[str, str]:
    start_iso = parse_date(start, return_iso=True)
    end_iso = parse_date(end, return_iso=True)
    if not start_iso or not end_iso:
        raise ValueError("Start and end must be valid dates")
    if start_iso > end_iso:
        raise ValueError("Start date must be on or before end date")
    set_value(cursor, MANAGER_DATE_RANGE_KEY, json.dumps({"start": start_iso, "end": end_iso}))
    return start_iso, end_iso
