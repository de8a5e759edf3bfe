# src/parsers/parse_manager_reports.py

import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from bs4 import BeautifulSoup, Tag

from config import MANAGER_REPORT_TYPES, RETENTION_NAME_MAX_LENGTH
from models.parse_result import ReportParseResult
from parsers.field_extractors import first_number, parse_date_from_html, parse_date_from_text, parse_location_from_html
from parsers.text_normalizer import collapse, load_html, node_text

_LETTER_RE      = re.compile(r"[a-z]", re.I)
_DIGIT_RE       = re.compile(r"\d")
_INT_RE         = re.compile(r"-?\d+")


def _safe_int(text: Optional[str]) -> Optional[int]:
    m = _INT_RE.search(str(text or ""))
    return int(m.group(0)) if m else None


def _round2(value: Optional[float]) -> Optional[float]:
    return round(value, 2) if value is not None else None


def _retention_entry(instructor: str, retention_percent=None, swimmer_count=None, booked=None, retained=None) -> Dict[str, Any]:
    return {
        "instructor":           instructor,
        "retention_percent":    retention_percent,
        "swimmer_count":        swimmer_count,
        "booked":               booked,
        "retained":             retained,
    }


###################################
### Generic table extraction
###################################

def _table_grid(table: Tag) -> Tuple[List[str], List[List[str]]]:
    rows = table.find_all("tr")
    if not rows:
        return [], []
    headers = [node_text(c) for c in rows[0].find_all(["th", "td"])]
    body = []
    for row in rows[1:]:
        cols = [node_text(c) for c in row.find_all(["td", "th"])]
        if cols:
            body.append(cols)
    return headers, body


def parse_html_table(html: Optional[str]) -> Dict[str, List]:
    """The document's largest table by body row count: {'headers': [...], 'rows': [[...], ...]}."""
    soup = load_html(html)
    best_headers, best_rows = [], []
    found = False
    for table in soup.find_all("table"):
        headers, rows = _table_grid(table)
        if not found or len(rows) > len(best_rows):
            best_headers, best_rows = headers, rows
            found = True
    return {"headers": best_headers, "rows": best_rows}


def _column_index(headers: List[str], keywords: Tuple[str, ...]) -> Optional[int]:
    for idx, header in enumerate(headers):
        lower = header.lower()
        if any(k in lower for k in keywords):
            return idx
    return None


###################################
### Retention
###################################

def _label_value(soup: BeautifulSoup, label: str) -> Optional[str]:
    """
    Value printed after '<strong>Label:</strong>' (the parent's text minus the label),
    falling back to 'Label: value' anywhere in the document text.
    """
    label_lower = label.lower()
    strip_re = re.compile(rf"^\s*{re.escape(label)}\s*:?\s*", re.I)
    found = None
    for strong in soup.find_all("strong"):
        text = node_text(strong).lower()
        if not text or not text.startswith(label_lower):
            continue
        value = collapse(strip_re.sub("", node_text(strong.parent)))
        if value:
            found = value
    if found:
        return found

    m = re.search(rf"{re.escape(label)}\s*:\s*([^\n\r]+)", soup.get_text(), re.I)
    if not m:
        return None
    return collapse(m.group(1)) or None


def _report_table_instructor(table: Tag) -> Optional[str]:
    for h2 in table.find_all("h2"):
        text = node_text(h2)
        lower = text.lower()
        if not text or lower == "totals":
            continue
        if "booked" in lower or "retained" in lower or "renewed bookings" in lower or "new bookings" in lower:
            continue
        return text
    return None


def _report_table_totals(table: Tag) -> Tuple[Optional[int], Optional[int], Optional[float]]:
    """(booked, retained, percent retained) from the first tbody after the 'Totals' heading."""
    tbodies = table.find_all("tbody", recursive=False)
    start = 0
    for idx, tbody in enumerate(tbodies):
        h2 = tbody.find("h2")
        if h2 is not None and node_text(h2).lower() == "totals":
            start = idx + 1
            break

    for tbody in tbodies[start:]:
        numbers = [node_text(s) for s in tbody.find_all("strong")]
        numbers = [t for t in numbers if _DIGIT_RE.search(t)]
        if len(numbers) < 2:
            continue
        booked, retained = _safe_int(numbers[0]), _safe_int(numbers[1])

        percents = [node_text(s) for s in tbody.find_all("small") if "%" in node_text(s)]
        percent = first_number(percents[-1].replace("%", "")) if percents else None
        if percent is None and booked and retained is not None:
            percent = retained / booked * 100
        return booked, retained, _round2(percent)

    return None, None, None


def _parse_report_tables(soup: BeautifulSoup, warnings: List[str]) -> List[Dict[str, Any]]:
    entries = []
    for table in soup.select("table.report-table"):
        instructor = _report_table_instructor(table)
        if not instructor:
            continue
        booked, retained, percent = _report_table_totals(table)
        if booked is None or retained is None or percent is None:
            warnings.append(f"Could not parse totals for instructor: {instructor}")
        entries.append(_retention_entry(instructor, percent, booked, booked, retained))
    return entries


def _table_percent(table: Tag) -> Optional[float]:
    first_row = table.find("tr")
    if first_row is None:
        return None
    cells = first_row.find_all(["th", "td"])
    return first_number(node_text(cells[1])) if len(cells) > 1 else None


def _tables_swimmer_count(tables: List[Tag]) -> Optional[float]:
    for table in tables:
        for row in table.find_all("tr"):
            cells = row.find_all(["th", "td"])
            for idx, cell in enumerate(cells[:-1]):
                label = node_text(cell).lower()
                if "swimmer" in label or "student" in label or "count" in label:
                    number = first_number(node_text(cells[idx + 1]))
                    if number is not None:
                        return number
    return None


def _parse_structural(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    """
    Per-instructor blocks: a short alphabetic text element outside any table, followed
    by exactly four tables. The second table's first row carries the retention percent;
    the swimmer count sits next to a 'swimmer' / 'student' / 'count' label in any of the four.
    """
    root = soup.body or soup
    nodes = root.find_all(True)
    table_ids = {id(n) for n in nodes if n.name == "table"}

    def _candidate(node: Tag) -> Optional[str]:
        if id(node) in table_ids or node.find_parent("table") is not None or node.find("table") is not None:
            return None
        text = node_text(node)
        if 1 < len(text) < RETENTION_NAME_MAX_LENGTH and _LETTER_RE.search(text):
            return text
        return None

    entries = []
    i = 0
    while i < len(nodes):
        node = nodes[i]
        text = _candidate(node)
        if text is None:
            i += 1
            continue

        tables = []
        closer_name = False
        j = i + 1
        while j < len(nodes) and len(tables) < 4:
            if id(nodes[j]) in table_ids:
                tables.append(nodes[j])
            elif not tables and not any(p is node for p in nodes[j].parents) and _candidate(nodes[j]):
                # A page title or caption: the name nearest to the tables wins
                closer_name = True
                break
            j += 1

        if closer_name:
            i += 1
            continue

        if len(tables) == 4:
            entries.append(_retention_entry(text, _table_percent(tables[1]), _tables_swimmer_count(tables)))
            i = j
            continue
        i += 1
    return entries


def _parse_retention_table(html: Optional[str], warnings: List[str]) -> List[Dict[str, Any]]:
    table = parse_html_table(html)
    headers, rows = table["headers"], table["rows"]
    if not rows:
        warnings.append("No retention rows detected.")

    instructor_idx = _column_index(headers, ("instructor", "coach"))
    percent_idx = _column_index(headers, ("%", "retention"))
    count_idx = _column_index(headers, ("swimmer", "count"))
    instructor_idx = 0 if instructor_idx is None else instructor_idx
    percent_idx = 1 if percent_idx is None else percent_idx
    count_idx = 2 if count_idx is None else count_idx

    entries = []
    for cols in rows:
        instructor = cols[instructor_idx] if instructor_idx < len(cols) else ""
        if not instructor.strip():
            continue
        percent = first_number(cols[percent_idx]) if percent_idx < len(cols) else None
        count = first_number(cols[count_idx]) if count_idx < len(cols) else None
        entries.append(_retention_entry(instructor.strip(), percent, count))
    return entries


def _dedupe_instructors(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    out = []
    for entry in entries:
        key = entry["instructor"].lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(entry)
    return out


def parse_retention_report(html: Optional[str]) -> Dict[str, Any]:
    """
    Instructor retention, tried in order: the 'report-table' layout, the structural
    name-plus-four-tables heuristic, then the largest table with keyword-matched columns.
    Never raises; an empty result always comes with warnings.
    """
    soup = load_html(html)
    warnings: List[str] = []

    as_of = _label_value(soup, "As Of Date")
    retained_date = _label_value(soup, "Retained Date")
    raw_bracket = [
        f"As Of Date: {as_of}" if as_of else None,
        f"Retained Date: {retained_date}" if retained_date else None,
    ]
    date_bracket = {
        "as_of":        as_of,
        "retained":     retained_date,
        "raw":          " | ".join(p for p in raw_bracket if p) or None,
    }

    instructors = _parse_report_tables(soup, warnings)
    if not instructors:
        if not soup.find_all("table"):
            warnings.append("No retention tables detected.")
        instructors = _parse_structural(soup)
        if not instructors:
            instructors = _parse_retention_table(html, warnings)

    instructors = _dedupe_instructors(instructors)
    if not instructors:
        warnings.append("No instructors detected in retention report.")

    return {"instructors": instructors, "date_bracket": date_bracket, "warnings": warnings}


###################################
### Aged accounts / drop list / other tables
###################################

def parse_aged_accounts_report(html: Optional[str]) -> Dict[str, Any]:
    table = parse_html_table(html)
    warnings = [] if table["rows"] else ["No aged accounts rows detected."]
    return {"headers": table["headers"], "rows": table["rows"], "warnings": warnings}


def parse_drop_list_report(html: Optional[str]) -> Dict[str, Any]:
    """
    Drop list rows with a drop date per entry: the 'date' column when the headers name one,
    otherwise the first date anywhere in the row.
    """
    table = parse_html_table(html)
    headers, rows = table["headers"], table["rows"]
    warnings = [] if rows else ["No drop list rows detected."]

    date_idx = _column_index(headers, ("drop date",))
    if date_idx is None:
        date_idx = _column_index(headers, ("date",))
    entries = []
    for cols in rows:
        drop_date = None
        if date_idx is not None and date_idx < len(cols):
            drop_date = parse_date_from_text(cols[date_idx])
        if drop_date is None:
            drop_date = parse_date_from_text(" ".join(cols))
        entries.append({"raw": cols, "drop_date": drop_date})

    if rows and not any(e["drop_date"] for e in entries):
        warnings.append("No drop dates detected in drop list.")
    return {"headers": headers, "entries": entries, "warnings": warnings}


def _parse_generic_table(report_type: str):
    def _parse(html: Optional[str]) -> Dict[str, Any]:
        table = parse_html_table(html)
        warnings = [] if table["rows"] else [f"No {report_type.replace('_', ' ')} rows detected."]
        return {"headers": table["headers"], "rows": table["rows"], "warnings": warnings}
    return _parse


REPORT_PARSERS = {
    "retention":        parse_retention_report,
    "aged_accounts":    parse_aged_accounts_report,
    "drop_list":        parse_drop_list_report,
    "balance_list":     _parse_generic_table("balance_list"),
    "billing":          _parse_generic_table("billing"),
}


def parse_manager_report(report_type: str, html: Optional[str]) -> ReportParseResult:
    """
    Dispatch on report type. Unknown types raise ValueError (caller input error);
    everything about the document itself is reported through warnings.
    """
    report_type = str(report_type or "").strip().lower()
    if report_type not in MANAGER_REPORT_TYPES or report_type not in REPORT_PARSERS:
        raise ValueError(f"Invalid report type: {report_type}")

    payload = REPORT_PARSERS[report_type](html)
    warnings = list(payload.get("warnings", []))

    result = ReportParseResult(
        report_type     = report_type,
        data            = payload,
        warnings        = warnings,
        report_date     = parse_date_from_html(html),
        location_name   = parse_location_from_html(html),
    )
    logging.debug(f"Parsed {report_type} report: {result.row_count} rows, {len(warnings)} warnings")
    return result
