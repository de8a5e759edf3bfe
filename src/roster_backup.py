# src/roster_backup.py
# JSON snapshots of roster rows about to be replaced or cleared, one folder per location code.

import json
import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from config import EXPORT_DIR
from models.location import Location
from models.roster_row import RosterRow

_SAFE_SNAPSHOT_RE = re.compile(r"^roster_(?:CLEARED_)?[A-Za-z0-9]+_[A-Za-z0-9\-]+_\d{8}_\d{6}_\d{6}\.json$")


def snapshot_filename(code: str, date_label: str, now: datetime, cleared: bool = False) -> str:
    prefix = "roster_CLEARED" if cleared else "roster"
    return f"{prefix}_{code}_{date_label}_{now.strftime('%Y%m%d_%H%M%S_%f')}.json"


def write_snapshot(
    location:       Location,
    rows:           Sequence[RosterRow],
    date_start:     Optional[str],
    date_end:       Optional[str],
    now:            datetime,
    export_dir:     Optional[str] = None,
    cleared:        bool = False,
) -> str:
    """
    Write every column of rows to EXPORT_DIR/<CODE>/roster_<CODE>_<date>_<timestamp>.json
    and return the path. Raises OSError when the file cannot be written, so callers
    abort before deleting anything.
    """
    export_dir = export_dir or EXPORT_DIR
    folder = os.path.join(export_dir, location.code)
    os.makedirs(folder, exist_ok=True)

    date_label = date_start or "all"
    path = os.path.join(folder, snapshot_filename(location.code, date_label, now, cleared=cleared))

    payload = {
        "location":     location.name,
        "code":         location.code,
        "location_id":  location.location_id,
        "date_start":   date_start,
        "date_end":     date_end,
        "exported_at":  now.isoformat(sep=" "),
        "cleared":      cleared,
        "count":        len(rows),
        "roster":       [r.to_dict() for r in rows],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)

    logging.info(f"Roster snapshot written: {path} ({len(rows)} rows)")
    return path


def list_snapshots(code: str, export_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Snapshots of one location, newest first."""
    folder = os.path.join(export_dir or EXPORT_DIR, code)
    if not os.path.isdir(folder):
        return []

    out = []
    for filename in os.listdir(folder):
        if not _SAFE_SNAPSHOT_RE.match(filename):
            continue
        full = os.path.join(folder, filename)
        stat = os.stat(full)
        out.append({
            "filename":     filename,
            "path":         full,
            "size":         stat.st_size,
            "modified":     datetime.fromtimestamp(stat.st_mtime),
            "cleared":      filename.startswith("roster_CLEARED_"),
        })
    out.sort(key=lambda s: s["filename"].rsplit("_", 3)[-3:], reverse=True)
    return out


def load_snapshot(code: str, filename: str, export_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Read one snapshot of a location. Only bare snapshot file names are accepted;
    anything with a path component raises ValueError.
    """
    if os.path.basename(filename) != filename or not _SAFE_SNAPSHOT_RE.match(filename):
        raise ValueError(f"Invalid snapshot file name: {filename}")

    path = os.path.join(export_dir or EXPORT_DIR, code, filename)
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)

    payload["rows"] = [RosterRow.from_dict(r) for r in payload.get("roster", [])]
    return payload
