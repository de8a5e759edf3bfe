# src/models/manager_report.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
from typing import Any, Dict, List, Optional, Tuple
import sqlite3
from config import MANAGER_REPORT_TYPES

'''
    ### Table definition for manager_report_data

    report_id                           INTEGER PRIMARY KEY AUTOINCREMENT,
    location_id                         INTEGER NOT NULL,
    report_type                         TEXT NOT NULL,
    report_date                         TEXT,
    data_json                           TEXT NOT NULL,
    warnings_json                       TEXT,
    uploaded_at                         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    archived                            BOOLEAN DEFAULT 0
'''


@dataclass
class ManagerReportRecord:
    report_id:          Optional[int] = None
    location_id:        Optional[int] = None
    report_type:        Optional[str] = None
    report_date:        Optional[str] = None            # ISO date detected in the report, may be None
    data:               Dict[str, Any] = field(default_factory=dict)
    warnings:           List[str] = field(default_factory=list)
    uploaded_at:        Optional[datetime] = None
    archived:           bool = False

    @staticmethod
    def from_dict(data: dict) -> 'ManagerReportRecord':
        return ManagerReportRecord(
            report_id       = data.get("report_id"),
            location_id     = data.get("location_id"),
            report_type     = data.get("report_type"),
            report_date     = data.get("report_date"),
            data            = json.loads(data["data_json"]) if data.get("data_json") else {},
            warnings        = json.loads(data["warnings_json"]) if data.get("warnings_json") else [],
            uploaded_at     = data.get("uploaded_at"),
            archived        = bool(data.get("archived") or 0),
        )

    def validate(self) -> Tuple[bool, str]:
        if self.report_type not in MANAGER_REPORT_TYPES:
            return False, f"Invalid report type: {self.report_type}"
        if self.location_id is None:
            return False, "Missing location_id"
        return True, ""

    def insert(self, cursor: sqlite3.Cursor) -> Optional[int]:
        """Reports are append-only: every upload is a new row."""
        is_valid, _ = self.validate()
        if not is_valid:
            return None
        cursor.execute(
            """
            INSERT INTO manager_report_data (
                location_id, report_type, report_date, data_json, warnings_json, uploaded_at, archived
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                self.location_id,
                self.report_type,
                self.report_date,
                json.dumps(self.data),
                json.dumps(self.warnings),
                self.uploaded_at or datetime.now(),
                int(self.archived),
            ),
        )
        self.report_id = cursor.lastrowid
        return self.report_id

    @staticmethod
    def archive_previous(cursor: sqlite3.Cursor, location_id: int, report_type: str) -> int:
        cursor.execute(
            """
            UPDATE manager_report_data SET archived = 1
             WHERE location_id = ? AND report_type = ? AND archived = 0
            """,
            (location_id, report_type),
        )
        return cursor.rowcount

    @classmethod
    def _fetch(cls, cursor: sqlite3.Cursor, sql: str, params: tuple) -> List['ManagerReportRecord']:
        cursor.execute(sql, params)
        rows = cursor.fetchall()
        column_names = [desc[0] for desc in cursor.description]
        return [cls.from_dict(dict(zip(column_names, row))) for row in rows]

    @classmethod
    def get_for_location(cls, cursor: sqlite3.Cursor, location_id: int, include_archived: bool = False) -> List['ManagerReportRecord']:
        sql = "SELECT * FROM manager_report_data WHERE location_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        return cls._fetch(cursor, sql + " ORDER BY uploaded_at DESC, report_id DESC", (location_id,))

    @classmethod
    def get_by_type(cls, cursor: sqlite3.Cursor, location_id: int, report_type: str, include_archived: bool = True) -> List['ManagerReportRecord']:
        sql = "SELECT * FROM manager_report_data WHERE location_id = ? AND report_type = ?"
        if not include_archived:
            sql += " AND archived = 0"
        return cls._fetch(cursor, sql + " ORDER BY uploaded_at DESC, report_id DESC", (location_id, report_type))

    @classmethod
    def get_latest_by_type(cls, cursor: sqlite3.Cursor, location_id: int) -> Dict[str, 'ManagerReportRecord']:
        """Most recent non-archived report of each type for the location."""
        latest: Dict[str, ManagerReportRecord] = {}
        for record in cls.get_for_location(cursor, location_id, include_archived=False):
            latest.setdefault(record.report_type, record)
        return latest

    @staticmethod
    def delete(cursor: sqlite3.Cursor, report_id: int) -> bool:
        cursor.execute("DELETE FROM manager_report_data WHERE report_id = ?", (report_id,))
        return cursor.rowcount > 0
