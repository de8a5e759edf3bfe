# src/models/location.py

from dataclasses import dataclass
from typing import List, Optional, Tuple
import sqlite3
from utils import collapse_whitespace


@dataclass
class Location:
    location_id:        Optional[int] = None
    code:               Optional[str] = None    # Short code, e.g. "SLW", also the snapshot folder name
    name:               Optional[str] = None
    brand:              Optional[str] = None
    active:             bool = True
    has_announcements:  bool = False

    @staticmethod
    def from_dict(data: dict) -> 'Location':
        return Location(
            location_id         = data.get("location_id"),
            code                = data.get("code"),
            name                = data.get("name"),
            brand               = data.get("brand"),
            active              = bool(data.get("active", 1)),
            has_announcements   = bool(data.get("has_announcements") or 0),
        )

    def validate(self) -> Tuple[bool, str]:
        if not self.code or not self.name:
            return False, "Missing required fields: code and name"
        return True, ""

    @classmethod
    def _fetch(cls, cursor: sqlite3.Cursor, sql: str, params: tuple = ()) -> List['Location']:
        cursor.execute(sql, params)
        rows = cursor.fetchall()
        column_names = [desc[0] for desc in cursor.description]
        return [cls.from_dict(dict(zip(column_names, row))) for row in rows]

    @classmethod
    def get_all(cls, cursor: sqlite3.Cursor, active_only: bool = True) -> List['Location']:
        sql = "SELECT location_id, code, name, brand, active, has_announcements FROM locations"
        if active_only:
            sql += " WHERE active = 1"
        return cls._fetch(cursor, sql + " ORDER BY location_id")

    @classmethod
    def get_by_id(cls, cursor: sqlite3.Cursor, location_id: int) -> Optional['Location']:
        rows = cls._fetch(
            cursor,
            "SELECT location_id, code, name, brand, active, has_announcements FROM locations WHERE location_id = ?",
            (location_id,),
        )
        return rows[0] if rows else None

    @classmethod
    def resolve_by_name(cls, cursor: sqlite3.Cursor, name_or_code: Optional[str]) -> Optional['Location']:
        """
        Match a detected location string against known locations: full name first, then code.
        Case-insensitive; a detected name that merely starts with a known name also matches
        ("SwimLabs Westchester Roll Sheet" -> SwimLabs Westchester).
        """
        needle = collapse_whitespace(name_or_code).lower()
        if not needle:
            return None

        locations = cls.get_all(cursor, active_only=False)
        for loc in locations:
            if loc.name and loc.name.lower() == needle:
                return loc
        for loc in locations:
            if loc.code and loc.code.lower() == needle:
                return loc
        for loc in sorted(locations, key=lambda l: len(l.name or ""), reverse=True):
            if loc.name and needle.startswith(loc.name.lower()):
                return loc
        return None

    def insert(self, cursor: sqlite3.Cursor) -> Optional[int]:
        is_valid, _ = self.validate()
        if not is_valid:
            return None
        cursor.execute(
            """
            INSERT INTO locations (code, name, brand, active, has_announcements)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (code) DO NOTHING
            """,
            (self.code, self.name, self.brand, int(self.active), int(self.has_announcements)),
        )
        cursor.execute("SELECT location_id FROM locations WHERE code = ?", (self.code,))
        self.location_id = cursor.fetchone()[0]
        return self.location_id

    @staticmethod
    def deactivate(cursor: sqlite3.Cursor, location_id: int) -> bool:
        """Locations are never deleted; roster rows and reports keep pointing at them."""
        cursor.execute("UPDATE locations SET active = 0 WHERE location_id = ?", (location_id,))
        return cursor.rowcount > 0
