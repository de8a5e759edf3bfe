# src/parsers/field_extractors.py
# Pure text -> value functions used by every roll sheet and report parser. None of them raise.

import os
import re
from datetime import date
from typing import Dict, NamedTuple, Optional
from parsers.text_normalizer import collapse, strip_html_to_text


###################################
### Dates
###################################

_ISO_DATE_RE            = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_US_DATE_RE             = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_FILENAME_YMD_RE        = re.compile(r"(\d{4})[-_.](\d{2})[-_.](\d{2})")
_FILENAME_MDY_RE        = re.compile(r"(\d{2})[-_.](\d{2})[-_.](\d{4})")
_DATE_RANGE_RE          = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})\s*(?:→|->|–|-)\s*(\d{1,2})/(\d{1,2})/(\d{4})")
_LOCATION_RE            = re.compile(r"Location\s*:\s*([A-Za-z0-9\s\-&]+)", re.I)


def _iso(year, month, day) -> Optional[str]:
    """Build YYYY-MM-DD, or None when the parts are not a real calendar date."""
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except (TypeError, ValueError):
        return None


def parse_date_from_text(text: Optional[str]) -> Optional[str]:
    """First YYYY-MM-DD, else first MM/DD/YYYY in free text."""
    t = str(text or "")
    m = _ISO_DATE_RE.search(t)
    if m:
        return _iso(m.group(1), m.group(2), m.group(3))
    m = _US_DATE_RE.search(t)
    if m:
        return _iso(m.group(3), m.group(1), m.group(2))
    return None


def parse_date_from_filename(filename: Optional[str]) -> Optional[str]:
    """
    Roll_2026-10-18.html, roster_2026_10_18.htm, 2026.10.18 -> year-month-day.
    Roll_Sheets_10-18-2026.pdf -> month-day-year.
    """
    base = os.path.basename(str(filename or ""))
    m = _FILENAME_YMD_RE.search(base)
    if m:
        return _iso(m.group(1), m.group(2), m.group(3))
    m = _FILENAME_MDY_RE.search(base)
    if m:
        return _iso(m.group(3), m.group(1), m.group(2))
    return None


def parse_date_from_html(html: Optional[str]) -> Optional[str]:
    return parse_date_from_text(strip_html_to_text(html))


def parse_location_from_html(html: Optional[str]) -> Optional[str]:
    """Best-effort "Location: <name>" from the stripped document text."""
    m = _LOCATION_RE.search(strip_html_to_text(html, collapse_whitespace=True))
    if not m:
        return None
    return m.group(1).strip() or None


class DateRange(NamedTuple):
    start:          str
    end:            str
    start_year:     int
    end_year:       int
    start_month:    int
    start_day:      int


def parse_date_range(text: Optional[str]) -> Optional[DateRange]:
    """'9/1/2026 → 1/15/2027' (also ->, – and -) as printed in multi-date class sections."""
    m = _DATE_RANGE_RE.search(str(text or ""))
    if not m:
        return None
    sm, sd, sy, em, ed, ey = (int(g) for g in m.groups())
    start = _iso(sy, sm, sd)
    end = _iso(ey, em, ed)
    if not start or not end:
        return None
    return DateRange(start, end, sy, ey, sm, sd)


def infer_year_from_range(month: int, day: int, date_range: Optional[DateRange], default_year: int) -> int:
    """
    Year for a header cell that only prints month/day.
    Without a range the caller's default year is used, never the wall clock.
    A range within one year gives that year; a range crossing New Year gives the start
    year for dates on or after the start month/day and the end year otherwise.
    """
    if date_range is None:
        return default_year
    if date_range.start_year == date_range.end_year:
        return date_range.start_year
    if (month, day) >= (date_range.start_month, date_range.start_day):
        return date_range.start_year
    return date_range.end_year


###################################
### Times
###################################

_TIME_12H_RE            = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$")


def normalize_time_to_24h(raw: Optional[str]) -> Optional[str]:
    """
    '9:00am' -> '09:00', '12 pm' -> '12:00', '12:15AM' -> '00:15'.
    Anything else (no am/pm, hour outside 1-12, minutes past 59) -> None.
    """
    if raw is None:
        return None
    m = _TIME_12H_RE.match(str(raw).strip().lower())
    if not m:
        return None

    hh = int(m.group(1))
    mm = int(m.group(2)) if m.group(2) else 0
    if not 1 <= hh <= 12 or mm > 59:
        return None

    if m.group(3) == "pm" and hh != 12:
        hh += 12
    if m.group(3) == "am" and hh == 12:
        hh = 0
    return f"{hh:02d}:{mm:02d}"


###################################
### Ages
###################################

_AGE_CLEAN_RE           = re.compile(r"^(\d+)\s*y(?:\s*(\d+)\s*m)?", re.I)
_AGE_ANY_RE             = re.compile(r"(\d+)\s*(?:years|year|yrs|yr|y)(?:\s*(\d+)\s*(?:months|month|mos|mo|m))?", re.I)


def clean_age_text(text: Optional[str]) -> Optional[str]:
    """
    '5y 0m' -> '5y', '5 y 3 m' -> '5y 3m'. Text not starting with an age is returned collapsed, unchanged.
    """
    t = collapse(text)
    if not t:
        return None
    m = _AGE_CLEAN_RE.match(t)
    if not m:
        return t
    years = int(m.group(1))
    months = int(m.group(2)) if m.group(2) else 0
    return f"{years}y" if months == 0 else f"{years}y {months}m"


def normalize_age_text(text: Optional[str]) -> Optional[str]:
    """'4 yrs 6 mos', '4 years 6 months', '4y 6m' -> '4y 6m'; no age inside -> None."""
    t = collapse(text)
    if not t:
        return None
    m = _AGE_ANY_RE.search(t)
    if not m:
        return None
    normalized = f"{m.group(1)}y" + (f" {m.group(2)}m" if m.group(2) else "")
    return clean_age_text(normalized)


###################################
### Programs
###################################

# Prefix -> canonical label, checked in order
_PROGRAM_PREFIXES = [
    (("PRIVATE",),                              "Private"),
    (("SEMI-PRIVATE", "SEMI PRIVATE"),          "Semi-Private"),
    (("PARENTTOT", "PARENT TOT"),               "ParentTot"),
    (("TODDLER TRANSITION", "TODDLER"),         "Toddler Transition"),
    (("ADULT",),                                "Adult"),
]

_GROUP_LEVEL_RE         = re.compile(r"GROUP:\s*(Beginner|Intermediate|Advanced|Swimmer)\s*(\d+)", re.I)


def normalize_program(text: Optional[str]) -> Optional[str]:
    """
    Case-insensitive prefix match to the canonical program set; unknown text passes through.
    GROUP is not resolved here, callers pull the level from the surrounding section.
    """
    p = collapse(text)
    if not p:
        return None
    up = p.upper()
    for prefixes, label in _PROGRAM_PREFIXES:
        if up.startswith(prefixes):
            return label
    return p


def group_level_from_text(text: Optional[str]) -> Optional[str]:
    """'... GROUP: intermediate 2 on Mon ...' -> 'GROUP: Intermediate 2'."""
    m = _GROUP_LEVEL_RE.search(str(text or ""))
    if not m:
        return None
    return f"GROUP: {m.group(1).title()} {m.group(2)}"


###################################
### Flags
###################################

# Whole-word token whitelists per flag, matched against upper-cased context
FLAG_PATTERNS: Dict[str, re.Pattern] = {
    "flag_new":     re.compile(r"⭐|★|\bFIRST\s*DAY\b|\bFIRST\s*TIME\b|\bNEW\b|\bFD\b|\bFIRST\b"),
    "flag_makeup":  re.compile(r"\bMAKE\s*UP\b|\bMAKEUP\b|\bMKUP\b|\bMU\b|\bM/U\b|\bMUA\b"),
    "flag_policy":  re.compile(r"\bMISSING\s*WAIVER\b|\bMISSING\s*POLICY\b|\bWAIVER\b|\bPOLICY\b|\bMP\b"),
    "flag_owes":    re.compile(r"\bOWES\b|\bOWE\b|\bUNPAID\b|\bPAST\s*DUE\b|\bBALANCE\b|\bDUE\b|\$"),
    "flag_trial":   re.compile(r"\bTRIAL\b|\bTR\b|\bTR\.|\bTRIAL\s*CLASS\b"),
}


def detect_flags(context: Optional[str]) -> Dict[str, bool]:
    """Every flag is checked independently, so one context can raise several."""
    up = str(context or "").upper()
    return {name: bool(pattern.search(up)) for name, pattern in FLAG_PATTERNS.items()}


###################################
### Names and money
###################################

_STAR_RE                = re.compile(r"[★⭐*]")
_BALANCE_RE             = re.compile(r"Balance:\s*\$?\s*([-\d,.]+)", re.I)


def last_first_to_first_last(name: Optional[str]) -> str:
    """'Doe,  John' -> 'John Doe'; 'Doe, John, Jr' -> 'John, Jr Doe'; names without a comma are only collapsed."""
    t = collapse(name)
    parts = t.split(",")
    if len(parts) >= 2:
        last = parts[0].strip()
        first = ",".join(parts[1:]).strip()
        return collapse(f"{first} {last}")
    return t


def strip_star_glyphs(name: Optional[str]) -> str:
    return collapse(_STAR_RE.sub("", name or ""))


def parse_balance(text: Optional[str]) -> Optional[float]:
    """'Balance: $1,234.50' -> 1234.5; missing or unreadable -> None."""
    m = _BALANCE_RE.search(str(text or ""))
    if not m:
        return None
    raw = m.group(1).replace(",", "").rstrip(".")
    try:
        return float(raw)
    except ValueError:
        return None


_NUMBER_RE              = re.compile(r"-?\d+(?:\.\d+)?")


def first_number(text: Optional[str]) -> Optional[float]:
    m = _NUMBER_RE.search(str(text or ""))
    return float(m.group(0)) if m else None
