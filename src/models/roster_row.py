# src/models/roster_row.py
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
import re
import sqlite3
from utils import parse_date, compute_content_hash

'''
    ### Table definition for roster

    date                                TEXT NOT NULL,
    start_time                          TEXT NOT NULL,
    swimmer_name                        TEXT NOT NULL,
    instructor_name                     TEXT,
    substitute_instructor               TEXT,
    is_substitute                       BOOLEAN DEFAULT 0,
    original_instructor                 TEXT,
    zone                                INTEGER,
    program                             TEXT,
    age_text                            TEXT,
    attendance                          INTEGER,        -- NULL unmarked, 1 present, 0 absent
    attendance_at                       TIMESTAMP,      -- last manual change, NULL if never marked by a person
    attendance_auto_absent              BOOLEAN DEFAULT 0,
    flag_new                            BOOLEAN DEFAULT 0,
    flag_makeup                         BOOLEAN DEFAULT 0,
    flag_policy                         BOOLEAN DEFAULT 0,
    flag_owes                           BOOLEAN DEFAULT 0,
    flag_trial                          BOOLEAN DEFAULT 0,
    is_addon                            BOOLEAN DEFAULT 0,
    zone_overridden                     BOOLEAN DEFAULT 0,
    zone_override_at                    TIMESTAMP,
    zone_override_by                    TEXT,
    balance_amount                      REAL,
    location_id                         INTEGER,
    content_hash                        TEXT,
    created_at                          TIMESTAMP,
    updated_at                          TIMESTAMP,

    PRIMARY KEY (date, start_time, swimmer_name)
'''

FLAG_FIELDS = ("flag_new", "flag_makeup", "flag_policy", "flag_owes", "flag_trial")

# Fields owned by a person rather than by the roll sheet import
MANUAL_FIELDS = {
    "attendance_at",
    "is_addon",
    "zone_overridden",
    "zone_override_at",
    "zone_override_by",
}

_TIME_RE = re.compile(r"^(?:[01]\d|2[0-3]):[0-5]\d$")


@dataclass
class RosterRow:
    date:                       Optional[str] = None        # ISO YYYY-MM-DD
    start_time:                 Optional[str] = None        # 24h HH:MM
    swimmer_name:               Optional[str] = None        # "First Last"
    instructor_name:            Optional[str] = None
    substitute_instructor:      Optional[str] = None
    is_substitute:              bool = False
    original_instructor:        Optional[str] = None        # Set only while a substitute is active
    zone:                       Optional[int] = None        # 1-4
    program:                    Optional[str] = None
    age_text:                   Optional[str] = None        # "Ny" or "Ny Mm"
    attendance:                 Optional[int] = None        # None unmarked, 1 present, 0 absent
    attendance_at:              Optional[datetime] = None
    attendance_auto_absent:     bool = False                # Pre-marked absent by a cancellation icon
    flag_new:                   bool = False
    flag_makeup:                bool = False
    flag_policy:                bool = False
    flag_owes:                  bool = False
    flag_trial:                 bool = False
    is_addon:                   bool = False
    zone_overridden:            bool = False
    zone_override_at:           Optional[datetime] = None
    zone_override_by:           Optional[str] = None
    balance_amount:             Optional[float] = None
    location_id:                Optional[int] = None
    content_hash:               Optional[str] = None
    created_at:                 Optional[datetime] = None
    updated_at:                 Optional[datetime] = None

    @staticmethod
    def from_dict(data: dict) -> 'RosterRow':
        """
        Factory method to create a RosterRow from a dictionary (DB row, snapshot entry or parser output).
        Integer flags from SQLite are cast back to bool.
        """
        def _bool(key: str) -> bool:
            return bool(data.get(key) or 0)

        def _ts(key: str) -> Optional[datetime]:
            value = data.get(key)
            if value is None or isinstance(value, datetime):
                return value
            try:
                return datetime.fromisoformat(str(value))
            except ValueError:
                return None

        attendance = data.get("attendance")
        zone = data.get("zone")
        balance = data.get("balance_amount")

        return RosterRow(
            date                    = parse_date(data.get("date"), return_iso=True),
            start_time              = data.get("start_time"),
            swimmer_name            = data.get("swimmer_name"),
            instructor_name         = data.get("instructor_name"),
            substitute_instructor   = data.get("substitute_instructor"),
            is_substitute           = _bool("is_substitute"),
            original_instructor     = data.get("original_instructor"),
            zone                    = int(zone) if zone is not None else None,
            program                 = data.get("program"),
            age_text                = data.get("age_text"),
            attendance              = int(attendance) if attendance is not None else None,
            attendance_at           = _ts("attendance_at"),
            attendance_auto_absent  = _bool("attendance_auto_absent"),
            flag_new                = _bool("flag_new"),
            flag_makeup             = _bool("flag_makeup"),
            flag_policy             = _bool("flag_policy"),
            flag_owes               = _bool("flag_owes"),
            flag_trial              = _bool("flag_trial"),
            is_addon                = _bool("is_addon"),
            zone_overridden         = _bool("zone_overridden"),
            zone_override_at        = _ts("zone_override_at"),
            zone_override_by        = data.get("zone_override_by"),
            balance_amount          = float(balance) if balance is not None else None,
            location_id             = data.get("location_id"),
            content_hash            = data.get("content_hash"),
            created_at              = _ts("created_at"),
            updated_at              = _ts("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict, timestamps as ISO strings and booleans as 0/1 like the table stores them."""
        out = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat(sep=" ")
            elif isinstance(value, bool):
                value = int(value)
            out[f.name] = value
        return out

    def key(self) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.date, self.start_time, self.swimmer_name)

    def compute_content_hash(self) -> str:
        """
        Hash of the import-owned fields only, so manual edits never make an unchanged import look changed.
        """
        return compute_content_hash(
            self,
            exclude_fields=MANUAL_FIELDS | {"content_hash", "created_at", "updated_at"}
        )

    def validate(self) -> Tuple[bool, str]:
        """
        Valid if date, start_time and swimmer_name form a complete key,
        zone is empty or 1-4 and attendance is tri-state.
        """
        if not self.date or not parse_date(self.date):
            return False, f"Missing or invalid date: {self.date}"
        if not self.start_time or not _TIME_RE.match(self.start_time):
            return False, f"Missing or invalid start_time: {self.start_time}"
        if not self.swimmer_name or not self.swimmer_name.strip():
            return False, "Missing swimmer_name"
        if self.zone is not None and not 1 <= self.zone <= 4:
            return False, f"Zone out of range: {self.zone}"
        if self.attendance not in (None, 0, 1):
            return False, f"Invalid attendance value: {self.attendance}"
        return True, ""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @classmethod
    def _fetch(cls, cursor: sqlite3.Cursor, sql: str, params: Iterable[Any] = ()) -> List['RosterRow']:
        cursor.execute(sql, tuple(params))
        rows = cursor.fetchall()
        column_names = [desc[0] for desc in cursor.description]
        return [cls.from_dict(dict(zip(column_names, row))) for row in rows]

    @classmethod
    def get_by_key(cls, cursor: sqlite3.Cursor, date: str, start_time: str, swimmer_name: str) -> Optional['RosterRow']:
        rows = cls._fetch(
            cursor,
            "SELECT * FROM roster WHERE date = ? AND start_time = ? AND swimmer_name = ?",
            (date, start_time, swimmer_name),
        )
        return rows[0] if rows else None

    @classmethod
    def get_for_date(cls, cursor: sqlite3.Cursor, date: str, location_id: Optional[int] = None) -> List['RosterRow']:
        """All rows of one roster date, ordered the way a roll sheet reads (time, then name)."""
        if location_id is None:
            return cls._fetch(
                cursor,
                "SELECT * FROM roster WHERE date = ? ORDER BY start_time, swimmer_name",
                (date,),
            )
        return cls._fetch(
            cursor,
            "SELECT * FROM roster WHERE date = ? AND location_id = ? ORDER BY start_time, swimmer_name",
            (date, location_id),
        )

    @classmethod
    def get_superseded(
        cls,
        cursor: sqlite3.Cursor,
        location_id: int,
        date_from: str,
        date_to: Optional[str] = None,
        include_addons: bool = False,
    ) -> List['RosterRow']:
        """
        Rows an import for this location and date window would replace.
        Add-ons are excluded unless include_addons is set (admin clears).
        """
        sql = "SELECT * FROM roster WHERE location_id = ? AND date >= ?"
        params: List[Any] = [location_id, date_from]
        if date_to is not None:
            sql += " AND date <= ?"
            params.append(date_to)
        if not include_addons:
            sql += " AND COALESCE(is_addon, 0) = 0"
        sql += " ORDER BY date, start_time, swimmer_name"
        return cls._fetch(cursor, sql, params)

    @classmethod
    def get_dates(cls, cursor: sqlite3.Cursor, location_id: int) -> List[str]:
        cursor.execute(
            "SELECT DISTINCT date FROM roster WHERE location_id = ? ORDER BY date",
            (location_id,),
        )
        return [r[0] for r in cursor.fetchall()]

    @staticmethod
    def delete_keys(cursor: sqlite3.Cursor, keys: Iterable[Tuple[str, str, str]]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        cursor.executemany(
            "DELETE FROM roster WHERE date = ? AND start_time = ? AND swimmer_name = ?",
            keys,
        )
        return len(keys)

    # ------------------------------------------------------------------
    # Import upsert
    # ------------------------------------------------------------------

    def upsert(
        self,
        cursor:         sqlite3.Cursor,
        now:            datetime,
        existing:       Optional['RosterRow'] = None,
        keep_manual:    bool = False,
    ) -> Optional[str]:
        """
        Atomic upsert keyed on (date, start_time, swimmer_name) with hash gating.

        Import-owned fields only change when the content hash changed, so re-importing
        the same roll sheet leaves the row (and updated_at) untouched.
        Manual state survives a re-import:
          - a person's attendance mark (attendance_at set) is kept unless the import carries
            an explicit, non-automatic attendance that disagrees with it
          - an overridden zone keeps its value and override metadata
          - is_addon and created_at are never touched on conflict; a first insert takes
            the manual fields from this row (restoring a snapshot keeps them)
          - a kept mark also clears attendance_auto_absent, so a row is never present and
            auto-absent at once
        With keep_manual=True (snapshot restore) the manual fields of this row win on
        conflict too: attendance, attendance_at and the zone override columns.

        Returns one of:
            "inserted"   – new row created
            "updated"    – existing row updated (content changed)
            "unchanged"  – row existed but no content change
            None         – invalid row, nothing written
        """

        # --- 1. Validation ---
        is_valid, err = self.validate()
        if not is_valid:
            return None

        new_hash = self.compute_content_hash()
        self.content_hash = new_hash

        # --- 2. SQL ---
        changed = "(roster.content_hash IS NULL OR roster.content_hash <> excluded.content_hash)"
        human_mark_kept = (
            "(roster.attendance_at IS NOT NULL AND (excluded.attendance IS NULL"
            " OR excluded.attendance_auto_absent = 1 OR excluded.attendance = roster.attendance))"
        )

        imported_cols = [
            "instructor_name", "substitute_instructor", "is_substitute", "original_instructor",
            "program", "age_text",
            "flag_new", "flag_makeup", "flag_policy", "flag_owes", "flag_trial",
            "balance_amount", "location_id",
        ]
        gated_updates = ",\n                ".join(
            f"{col} = CASE WHEN {changed} THEN excluded.{col} ELSE roster.{col} END"
            for col in imported_cols
        )

        if keep_manual:
            manual_updates = """
                zone = excluded.zone,
                zone_overridden = excluded.zone_overridden,
                zone_override_at = excluded.zone_override_at,
                zone_override_by = excluded.zone_override_by,
                attendance = excluded.attendance,
                attendance_at = excluded.attendance_at,
                attendance_auto_absent = excluded.attendance_auto_absent,"""
        else:
            manual_updates = f"""
                zone = CASE WHEN roster.zone_overridden = 1 THEN roster.zone ELSE excluded.zone END,
                attendance = CASE WHEN {human_mark_kept} THEN roster.attendance ELSE excluded.attendance END,
                attendance_at = CASE WHEN {human_mark_kept} THEN roster.attendance_at ELSE NULL END,
                attendance_auto_absent = CASE
                    WHEN {human_mark_kept} THEN 0
                    WHEN {changed} THEN excluded.attendance_auto_absent
                    ELSE roster.attendance_auto_absent
                END,"""

        sql = f"""
            INSERT INTO roster (
                date, start_time, swimmer_name, instructor_name, substitute_instructor,
                is_substitute, original_instructor, zone, program, age_text,
                attendance, attendance_at, attendance_auto_absent,
                flag_new, flag_makeup, flag_policy, flag_owes, flag_trial,
                is_addon, zone_overridden, zone_override_at, zone_override_by,
                balance_amount, location_id, content_hash, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (date, start_time, swimmer_name) DO UPDATE SET
                {gated_updates},{manual_updates}
                content_hash = excluded.content_hash,
                updated_at = CASE WHEN {changed} THEN excluded.updated_at ELSE roster.updated_at END
        """
        vals = (
            self.date, self.start_time, self.swimmer_name, self.instructor_name, self.substitute_instructor,
            int(self.is_substitute), self.original_instructor, self.zone, self.program, self.age_text,
            self.attendance, self.attendance_at, int(self.attendance_auto_absent),
            int(self.flag_new), int(self.flag_makeup), int(self.flag_policy), int(self.flag_owes), int(self.flag_trial),
            int(self.is_addon), int(self.zone_overridden), self.zone_override_at, self.zone_override_by,
            self.balance_amount, self.location_id, new_hash, now, now,
        )

        cursor.execute(sql, vals)

        if existing is None:
            return "inserted"
        if existing.content_hash == new_hash:
            return "unchanged"
        return "updated"

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    @staticmethod
    def set_attendance(
        cursor: sqlite3.Cursor,
        date: str,
        start_time: str,
        swimmer_name: str,
        attendance: Optional[int],
        now: datetime,
    ) -> bool:
        """
        Mark one swimmer present (1), absent (0) or clear the mark (None).
        A person's mark replaces any automatic absence.
        """
        if attendance not in (None, 0, 1):
            raise ValueError(f"Invalid attendance value: {attendance}")
        cursor.execute(
            """
            UPDATE roster
               SET attendance = ?, attendance_at = ?, attendance_auto_absent = 0, updated_at = ?
             WHERE date = ? AND start_time = ? AND swimmer_name = ?
            """,
            (attendance, now if attendance is not None else None, now, date, start_time, swimmer_name),
        )
        return cursor.rowcount > 0

    @staticmethod
    def set_bulk_attendance(
        cursor: sqlite3.Cursor,
        date: str,
        start_time: str,
        location_id: int,
        attendance: Optional[int],
        now: datetime,
    ) -> int:
        """Mark (or clear) every swimmer of one class. Returns rows touched."""
        if attendance not in (None, 0, 1):
            raise ValueError(f"Invalid attendance value: {attendance}")
        cursor.execute(
            """
            UPDATE roster
               SET attendance = ?, attendance_at = ?, attendance_auto_absent = 0, updated_at = ?
             WHERE date = ? AND start_time = ? AND location_id = ?
            """,
            (attendance, now if attendance is not None else None, now, date, start_time, location_id),
        )
        return cursor.rowcount

    @staticmethod
    def override_zone(
        cursor: sqlite3.Cursor,
        date: str,
        start_time: str,
        swimmer_name: str,
        zone: int,
        by: Optional[str],
        now: datetime,
    ) -> bool:
        if zone is None or not 1 <= int(zone) <= 4:
            raise ValueError(f"Zone must be between 1 and 4, got {zone}")
        cursor.execute(
            """
            UPDATE roster
               SET zone = ?, zone_overridden = 1, zone_override_at = ?, zone_override_by = ?, updated_at = ?
             WHERE date = ? AND start_time = ? AND swimmer_name = ?
            """,
            (int(zone), now, by, now, date, start_time, swimmer_name),
        )
        return cursor.rowcount > 0

    @staticmethod
    def update_flags(
        cursor: sqlite3.Cursor,
        date: str,
        start_time: str,
        swimmer_name: str,
        flags: Dict[str, Any],
        now: datetime,
    ) -> bool:
        """Set any subset of the five flags; unknown keys are rejected."""
        unknown = set(flags) - set(FLAG_FIELDS)
        if unknown:
            raise ValueError(f"Unknown flags: {', '.join(sorted(unknown))}")
        if not flags:
            return False
        assignments = ", ".join(f"{name} = ?" for name in flags)
        cursor.execute(
            f"""
            UPDATE roster
               SET {assignments}, updated_at = ?
             WHERE date = ? AND start_time = ? AND swimmer_name = ?
            """,
            tuple(int(bool(v)) for v in flags.values()) + (now, date, start_time, swimmer_name),
        )
        return cursor.rowcount > 0

    def add_addon(self, cursor: sqlite3.Cursor, now: datetime) -> Optional[str]:
        """
        Insert this row as an add-on (a swimmer added by hand outside the roll sheet).
        An existing row at the same key is turned into an add-on so the next import leaves it alone.
        """
        self.is_addon = True
        is_valid, err = self.validate()
        if not is_valid:
            return None

        existing = RosterRow.get_by_key(cursor, *self.key())
        cursor.execute(
            """
            INSERT INTO roster (
                date, start_time, swimmer_name, instructor_name, zone, program, age_text,
                flag_new, flag_makeup, flag_policy, flag_owes, flag_trial,
                is_addon, location_id, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            ON CONFLICT (date, start_time, swimmer_name) DO UPDATE SET
                is_addon = 1,
                updated_at = excluded.updated_at
            """,
            (
                self.date, self.start_time, self.swimmer_name, self.instructor_name, self.zone,
                self.program, self.age_text,
                int(self.flag_new), int(self.flag_makeup), int(self.flag_policy), int(self.flag_owes), int(self.flag_trial),
                self.location_id, now, now,
            ),
        )
        return "updated" if existing else "inserted"

    @staticmethod
    def remove_addon(cursor: sqlite3.Cursor, date: str, start_time: str, swimmer_name: str) -> str:
        """Returns "removed", "not_found" or "not_addon"; imported rows cannot be removed this way."""
        existing = RosterRow.get_by_key(cursor, date, start_time, swimmer_name)
        if existing is None:
            return "not_found"
        if not existing.is_addon:
            return "not_addon"
        RosterRow.delete_keys(cursor, [existing.key()])
        return "removed"
