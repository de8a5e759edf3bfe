# src/parsers/parse_roster_html.py

import logging
import re
from datetime import date
from typing import Dict, List, NamedTuple, Optional, Tuple
from bs4 import Tag

from models.parse_result import RosterParseResult
from models.roster_row import FLAG_FIELDS, RosterRow
from parsers.field_extractors import (
    DateRange,
    group_level_from_text,
    infer_year_from_range,
    last_first_to_first_last,
    normalize_age_text,
    normalize_program,
    normalize_time_to_24h,
    parse_balance,
    parse_date_from_html,
    parse_date_range,
)
from parsers.text_normalizer import collapse, load_html, node_text

# Icon file name -> flag (the vendor reuses the birthday icon for make-up classes)
ICON_FLAG_MAP = {
    "1st-ever.png":     "flag_new",
    "balance.png":      "flag_owes",
    "birthday.png":     "flag_makeup",
    "makeup.png":       "flag_makeup",
    "policy.png":       "flag_policy",
    "trial.png":        "flag_trial",
}

_AUTO_ABSENT_GLYPHS     = ("ø", "⌀", "⊘")
_ABSENT_TEXT_TOKENS     = ("absent", "no show", "noshow")
_ABSENT_CLASS_TOKENS    = ("absent", "no-show", "noshow", "strike")

_SECTION_TIME_RE        = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*([ap]m)", re.I)
_HEADER_INSTRUCTOR_RE   = re.compile(r"with\s+(.+?)(?:\s{2,}|Zone:|Program:|Schedule:|Capacity:|Ages:|$)", re.I)
_SUB_MARK_RE            = re.compile(r"\(sub\)", re.I)
_ZONE_RE                = re.compile(r"Zone\s*(\d+)", re.I)
_HEADER_DATE_RE         = re.compile(r"(\d{1,2})/(\d{1,2})(?:/(\d{4}))?")
_HEADER_TIME_RE         = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.I)


class DateColumn(NamedTuple):
    index:          int                 # td index inside each swimmer row
    date:           Optional[str]
    start_time:     Optional[str]


class InstructorInfo(NamedTuple):
    instructor_name:        Optional[str]
    substitute_instructor:  Optional[str]
    is_substitute:          bool
    original_instructor:    Optional[str]


###################################
### Cell helpers
###################################

def _labeled_cell(section: Tag, label_re: re.Pattern) -> Optional[Tag]:
    """The cell right after the first <th> whose text matches label_re."""
    for th in section.find_all("th"):
        if label_re.search(node_text(th)):
            return th.find_next_sibling()
    return None


def _img_blobs(cell: Tag, with_filename: bool = False) -> List[str]:
    blobs = []
    for img in cell.find_all("img"):
        src = str(img.get("src") or "").lower()
        alt = str(img.get("alt") or "").lower()
        title = str(img.get("title") or "").lower()
        parts = [src, alt, title]
        if with_filename:
            parts.append(src.rsplit("/", 1)[-1])
        blobs.append(" ".join(parts))
    return blobs


def has_auto_absent_indicator(cell: Optional[Tag]) -> bool:
    """A cancellation glyph or a 'cancel' icon: the vendor pre-marked this swimmer absent."""
    if cell is None:
        return False
    text = cell.get_text(" ").lower()
    if any(g in text for g in _AUTO_ABSENT_GLYPHS):
        return True
    return any("cancel" in blob for blob in _img_blobs(cell, with_filename=True))


def is_absent_attendance_cell(cell: Optional[Tag]) -> bool:
    """
    Broader absence check: absence words, strike-through styling, absence CSS classes,
    the auto-absent indicator, or X / no-show / slashed-circle icons.
    """
    if cell is None:
        return False

    text = cell.get_text(" ").lower()
    if any(tok in text for tok in _ABSENT_TEXT_TOKENS):
        return True
    if any(g in text for g in _AUTO_ABSENT_GLYPHS):
        return True

    for el in [cell] + cell.find_all(True):
        if "line-through" in str(el.get("style") or "").lower():
            return True
        classes = " ".join(el.get("class") or []).lower()
        if any(tok in classes for tok in _ABSENT_CLASS_TOKENS):
            return True

    if has_auto_absent_indicator(cell):
        return True

    for blob in _img_blobs(cell):
        if "x-modifier" in blob or "absent" in blob or "no-show" in blob or "noshow" in blob:
            return True
        if "circle" in blob and ("slash" in blob or "strike" in blob):
            return True
    return False


def _merge_cells(cells: List[Tag]) -> Optional[Tag]:
    """Several attendance cells behave as one for the absence checks."""
    if not cells:
        return None
    if len(cells) == 1:
        return cells[0]
    return load_html("<div>" + "".join(str(c) for c in cells) + "</div>").div


###################################
### Section header
###################################

def _section_start_time(section: Tag) -> Optional[str]:
    cell = _labeled_cell(section, re.compile(r"Schedule:", re.I))
    m = _SECTION_TIME_RE.search(node_text(cell))
    return normalize_time_to_24h(m.group(0)) if m else None


def _split_sub_mark(raw: str) -> Tuple[str, bool]:
    is_sub = "*" in raw or bool(_SUB_MARK_RE.search(raw))
    cleaned = collapse(_SUB_MARK_RE.sub("", raw).replace("*", ""))
    return cleaned, is_sub


def resolve_instructors(section: Tag) -> InstructorInfo:
    """
    Regular instructor and substitute for one class section.

    The instructor list is authoritative: an entry with '*' or '(sub)' is the substitute,
    the first unmarked entry the regular instructor. A list holding only a substitute makes
    that person the instructor with no substitution (nobody to sub for).
    Without a list, the single instructor cell and then the 'with <name>' header are used.
    """
    regular: Optional[str] = None
    substitute: Optional[str] = None

    cell = _labeled_cell(section, re.compile(r"Instructors?:", re.I))
    items = [collapse(li.get_text(" ")) for li in cell.find_all("li")] if cell is not None else []
    items = [t for t in items if t]

    if items:
        for text in items:
            cleaned, is_sub = _split_sub_mark(text)
            if not cleaned:
                continue
            if is_sub:
                substitute = last_first_to_first_last(cleaned)
            elif regular is None:
                regular = last_first_to_first_last(cleaned)
        if regular is None and substitute:
            regular, substitute = substitute, None
    else:
        candidates = []
        if cell is not None:
            candidates.append(node_text(cell))
        header = section.select_one(".full-width-header")
        m = _HEADER_INSTRUCTOR_RE.search(node_text(header)) if header is not None else None
        if m:
            candidates.append(m.group(1))

        for raw in candidates:
            cleaned, is_sub = _split_sub_mark(raw)
            if not cleaned:
                continue
            if is_sub and substitute is None:
                substitute = last_first_to_first_last(cleaned)
            elif not is_sub and regular is None:
                regular = last_first_to_first_last(cleaned)
        if regular is None and substitute:
            regular, substitute = substitute, None

    if substitute:
        return InstructorInfo(substitute, substitute, True, regular)
    return InstructorInfo(regular, None, False, None)


def _section_program(section: Tag) -> Optional[str]:
    cell = _labeled_cell(section, re.compile(r"Program:", re.I))
    if cell is None:
        return None
    span = cell.find("span")
    raw = node_text(span) if span is not None else node_text(cell)
    if not raw:
        return None
    if raw.upper() == "GROUP":
        return group_level_from_text(section.get_text(" ")) or "GROUP"
    return normalize_program(raw)


def _section_zone(section: Tag) -> int:
    cell = _labeled_cell(section, re.compile(r"Zone:", re.I))
    m = _ZONE_RE.search(node_text(cell))
    if not m:
        return 1
    zone = int(m.group(1))
    return zone if 1 <= zone <= 4 else 1


###################################
### Date columns
###################################

def _date_time_from_header(text: str, date_range: Optional[DateRange], default_year: Optional[int], fallback_time: Optional[str]) -> Optional[Tuple[Optional[str], Optional[str]]]:
    t = collapse(text)
    m = _HEADER_DATE_RE.search(t)
    if not m:
        return None

    month, day = int(m.group(1)), int(m.group(2))
    if m.group(3):
        year = int(m.group(3))
    elif date_range is not None or default_year is not None:
        year = infer_year_from_range(month, day, date_range, default_year)
    else:
        year = None

    iso = None
    if year is not None:
        try:
            iso = date(year, month, day).isoformat()
        except ValueError:
            return None

    start_time = fallback_time
    tm = _HEADER_TIME_RE.search(t)
    if tm:
        start_time = normalize_time_to_24h(f"{tm.group(1)}:{tm.group(2) or '00'} {tm.group(3)}") or start_time
    return iso, start_time


def parse_date_columns(table: Tag, date_range: Optional[DateRange], default_year: Optional[int], fallback_time: Optional[str]) -> List[DateColumn]:
    """
    Date columns of a roll sheet table: one entry per header cell showing M/D, at the cell's
    first column index (colspan counted). The first header row with any date wins.
    """
    header_rows = table.select("thead tr") or table.find_all("tr")[:2]
    for row in header_rows:
        columns = []
        col_index = 0
        for cell in row.find_all(["th", "td"]):
            try:
                span = max(1, int(cell.get("colspan") or 1))
            except ValueError:
                span = 1
            info = _date_time_from_header(cell.get_text(" "), date_range, default_year, fallback_time)
            if info:
                columns.append(DateColumn(col_index, info[0], info[1] or fallback_time))
            col_index += span
        if columns:
            return columns
    return []


###################################
### Rows
###################################

def _row_flags(row: Tag) -> Dict[str, bool]:
    flags = {name: False for name in FLAG_FIELDS}
    for img in row.select(".icons img"):
        filename = str(img.get("src") or "").rsplit("/", 1)[-1]
        flag = ICON_FLAG_MAP.get(filename)
        if flag:
            flags[flag] = True
    return flags


def _parse_section(section: Tag, default_year: Optional[int], result: RosterParseResult, seen: set, section_no: int) -> None:
    start_time = _section_start_time(section)
    if not start_time:
        result.warnings.append(f"Section {section_no}: no schedule time, skipped")
        return

    instructors = resolve_instructors(section)
    program = _section_program(section)
    zone = _section_zone(section)

    table = section.select_one("table.table-roll-sheet")
    date_range = parse_date_range(section.get_text(" "))
    columns = parse_date_columns(table, date_range, default_year, start_time) if table is not None else []
    if columns and any(c.date is None for c in columns):
        result.warnings.append(f"Section {section_no}: date columns without a year, dated by the caller")

    for row in section.select("table.table-roll-sheet tbody tr"):
        name_el = row.select_one(".student-name strong")
        if name_el is None:
            continue
        swimmer_name = last_first_to_first_last(name_el.get_text(" "))
        if not swimmer_name:
            continue

        age_text = normalize_age_text(node_text(row.select_one(".student-info")))
        flags = _row_flags(row)

        cells = row.find_all("td")
        balance = parse_balance(cells[3].get_text(" ")) if len(cells) > 3 else None
        if balance:
            flags["flag_owes"] = True

        base = dict(
            swimmer_name            = swimmer_name,
            age_text                = age_text,
            instructor_name         = instructors.instructor_name,
            substitute_instructor   = instructors.substitute_instructor,
            is_substitute           = instructors.is_substitute,
            original_instructor     = instructors.original_instructor,
            program                 = program,
            zone                    = zone,
            balance_amount          = balance,
            **flags,
        )

        if columns:
            targets = []
            for col in columns:
                cell = cells[col.index] if col.index < len(cells) else None
                targets.append((col.date, col.start_time or start_time, cell))
                if col.date and col.date not in result.dates:
                    result.dates.append(col.date)
        else:
            targets = [(None, start_time, _merge_cells(row.select("td.date-time, td.cell-bordered")))]

        for row_date, row_time, cell in targets:
            key = (row_date, row_time, swimmer_name)
            if key in seen:
                result.warnings.append(f"Duplicate swimmer skipped: {swimmer_name} at {row_date or 'upload date'} {row_time}")
                continue
            seen.add(key)
            result.rows.append(RosterRow(
                date                    = row_date,
                start_time              = row_time,
                attendance              = 0 if is_absent_attendance_cell(cell) else None,
                attendance_auto_absent  = has_auto_absent_indicator(cell),
                **base,
            ))


def parse_html_roster(html: Optional[str], default_year: Optional[int] = None) -> RosterParseResult:
    """
    Walk the page-break class sections of a roll sheet export.

    Rows from date-column sections carry their own dates; rows from single-date sections
    have date None and are dated by the caller. default_year dates header cells that print
    only month/day when the section has no date range; without it the document's first
    full date decides the year.
    Falls back to the older condensed layout when there are no page-break sections.
    A result without sections or without swimmers carries an error.
    """
    soup = load_html(html)
    sections = soup.select('div[style*="page-break-inside"]')
    if not sections:
        if soup.select(".condensed-mode > div"):
            return parse_legacy_condensed_roster(html)
        return RosterParseResult(error="No class sections found in roll sheet HTML", layout="sections")

    if default_year is None:
        doc_date = parse_date_from_html(html)
        default_year = int(doc_date[:4]) if doc_date else None

    result = RosterParseResult(layout="sections", sections=len(sections))
    seen = set()
    for section_no, section in enumerate(sections, 1):
        _parse_section(section, default_year, result, seen, section_no)

    result.dates.sort()
    if not result.rows:
        result.error = "No swimmers found in roll sheet HTML"

    logging.debug(f"HTML parse: {result.sections} sections, {len(result.rows)} rows, {len(result.dates)} dates")
    return result


###################################
### Legacy condensed layout
###################################

_LEGACY_HEADER_RE       = re.compile(r"^(\w+(?:-\w+)?):?\s+(.+?)\s+on\s+\w+:\s+([\d:]+\s*(?:[ap]m)?\s*-\s*[\d:]+\s*(?:[ap]m)?)\s+with\s+(.+)$", re.I)
_LEGACY_DATE_RE         = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_CLOCK_RE               = re.compile(r"^(\d{1,2})(?::(\d{2}))?$")

# Substring -> flag for the condensed layout, whose icon names vary between exports
_LEGACY_ICON_TOKENS = [
    (("1st-time", "1st-ever", "new"),   "flag_new"),
    (("makeup", "gift", "birthday"),    "flag_makeup"),
    (("policy", "waiver"),              "flag_policy"),
    (("balance", "money"),              "flag_owes"),
    (("trial",),                        "flag_trial"),
]


def _legacy_start_time(raw: str) -> Optional[str]:
    """'4:30pm' -> '16:30'; a bare '4:30' is kept as printed ('04:30')."""
    raw = raw.strip()
    converted = normalize_time_to_24h(raw)
    if converted:
        return converted
    m = _CLOCK_RE.match(raw)
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2) or 0)
    if hh > 23 or mm > 59:
        return None
    return f"{hh:02d}:{mm:02d}"


def parse_legacy_condensed_roster(html: Optional[str]) -> RosterParseResult:
    """
    Older export: '.condensed-mode > div' blocks whose header reads
    '<PROGRAM>: <level> on <Day>: <h:mm - h:mm> with <Last, First>' and carries the date.
    Substitutes end with '*' in the instructor list; a cancel icon pre-marks absence.
    """
    soup = load_html(html)
    blocks = soup.select(".condensed-mode > div")
    result = RosterParseResult(layout="legacy_condensed", sections=len(blocks))
    seen = set()

    for block_no, block in enumerate(blocks, 1):
        header_span = block.select_one(".full-width-header span")
        m = _LEGACY_HEADER_RE.match(node_text(header_span))
        if not m:
            result.warnings.append(f"Block {block_no}: header not recognised, skipped")
            continue
        program_raw, level, time_range, primary = m.groups()

        date_cells = block.select(".full-width-header .no-wrap")
        dm = _LEGACY_DATE_RE.search(node_text(date_cells[-1])) if date_cells else None
        if not dm:
            result.warnings.append(f"Block {block_no}: no class date, skipped")
            continue
        try:
            class_date = date(int(dm.group(3)), int(dm.group(1)), int(dm.group(2))).isoformat()
        except ValueError:
            result.warnings.append(f"Block {block_no}: invalid class date, skipped")
            continue

        start_time = _legacy_start_time(time_range.split("-")[0])
        if not start_time:
            result.warnings.append(f"Block {block_no}: unreadable start time, skipped")
            continue

        regular = last_first_to_first_last(primary)
        substitute = None
        cell = _labeled_cell(block, re.compile(r"Instructors:", re.I))
        if cell is not None:
            for li in cell.find_all("li"):
                text = collapse(li.get_text(" "))
                if text.endswith("*"):
                    substitute = last_first_to_first_last(text.replace("*", ""))

        if program_raw.upper() == "GROUP":
            program = f"GROUP: {collapse(level)}"
        else:
            program = normalize_program(program_raw)

        zm = _ZONE_RE.search(node_text(_labeled_cell(block, re.compile(r"Zone:", re.I))))
        zone = int(zm.group(1)) if zm and 1 <= int(zm.group(1)) <= 4 else 1

        for row in block.select("table.roll-sheet tbody tr"):
            if row.find("th") is not None:
                continue
            swimmer_name = last_first_to_first_last(node_text(row.select_one(".student .student-name")))
            if not swimmer_name:
                continue

            flags = {name: False for name in FLAG_FIELDS}
            for img in row.select(".icons img"):
                src = str(img.get("src") or "").lower()
                for tokens, flag in _LEGACY_ICON_TOKENS:
                    if any(tok in src for tok in tokens):
                        flags[flag] = True

            cancelled = any(
                "cancel.png" in str(img.get("src") or "").lower()
                for img in row.select(".date-time img")
            )

            key = (class_date, start_time, swimmer_name)
            if key in seen:
                result.warnings.append(f"Duplicate swimmer skipped: {swimmer_name} at {class_date} {start_time}")
                continue
            seen.add(key)

            result.rows.append(RosterRow(
                date                    = class_date,
                start_time              = start_time,
                swimmer_name            = swimmer_name,
                age_text                = normalize_age_text(node_text(row.select_one(".student .student-age"))),
                instructor_name         = substitute or regular,
                substitute_instructor   = substitute,
                is_substitute           = bool(substitute),
                original_instructor     = regular if substitute else None,
                program                 = program,
                zone                    = zone,
                attendance              = 0 if cancelled else None,
                attendance_auto_absent  = cancelled,
                **flags,
            ))
            if class_date not in result.dates:
                result.dates.append(class_date)

    result.dates.sort()
    if not blocks:
        result.error = "No class sections found in roll sheet HTML"
    elif not result.rows:
        result.error = "No swimmers found in roll sheet HTML"
    return result
