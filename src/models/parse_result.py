# src/models/parse_result.py

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from models.roster_row import RosterRow


@dataclass
class RosterParseResult:
    """
    Output of one roll sheet parse. Parsers never raise for bad input;
    a structural failure (no sections, no swimmers) is reported through error.
    """
    rows:           List[RosterRow] = field(default_factory=list)
    dates:          List[str] = field(default_factory=list)         # Dates found in date columns, sorted
    warnings:       List[str] = field(default_factory=list)
    error:          Optional[str] = None
    sections:       int = 0                                         # Class sections seen, with or without swimmers
    layout:         Optional[str] = None                            # "sections", "legacy_condensed" or "pdf_text"

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.rows)


@dataclass
class ImportResult:
    """What an import or admin action reports back to its caller."""
    ok:             bool = False
    reason:         Optional[str] = None
    location_id:    Optional[int] = None
    date_start:     Optional[str] = None
    date_end:       Optional[str] = None
    active_date:    Optional[str] = None
    counts:         Dict[str, int] = field(default_factory=dict)    # inserted / updated / unchanged / deleted / skipped_addon ...
    backup_path:    Optional[str] = None
    warnings:       List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok":           self.ok,
            "reason":       self.reason,
            "location_id":  self.location_id,
            "date_start":   self.date_start,
            "date_end":     self.date_end,
            "active_date":  self.active_date,
            "counts":       dict(self.counts),
            "backup_path":  self.backup_path,
            "warnings":     list(self.warnings),
        }


@dataclass
class ReportParseResult:
    """
    One parsed manager report. data holds the type-specific payload
    (instructors / rows / entries); report_date and location_name are best-effort.
    """
    report_type:    Optional[str] = None
    data:           Dict[str, Any] = field(default_factory=dict)
    warnings:       List[str] = field(default_factory=list)
    report_date:    Optional[str] = None
    location_name:  Optional[str] = None

    @property
    def row_count(self) -> int:
        for key in ("instructors", "entries", "rows"):
            if key in self.data:
                return len(self.data[key])
        return 0
