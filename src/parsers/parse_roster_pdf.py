# src/parsers/parse_roster_pdf.py

import logging
import re
import subprocess
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
import pdfplumber

from config import PDF_GROUP_LOOKBACK_LINES, PDF_TEXT_BACKEND, PDF_TEXT_TIMEOUT_SECONDS, PDFTOTEXT_BIN
from models.parse_result import RosterParseResult
from models.roster_row import RosterRow
from parsers.field_extractors import (
    detect_flags,
    last_first_to_first_last,
    normalize_age_text,
    normalize_program,
    normalize_time_to_24h,
    strip_star_glyphs,
)
from parsers.text_normalizer import normalize_whitespace_lines


class PdfUnreadableError(Exception):
    """Text extraction failed: the tool could not start, exited non-zero or timed out."""

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


def roll_sheet_filename(for_date: date) -> str:
    """Scheduled exports are named Roll_Sheets_MM-DD-YYYY.pdf."""
    return f"Roll_Sheets_{for_date.strftime('%m-%d-%Y')}.pdf"


def extract_pdf_text(
    pdf_path: Union[str, Path],
    backend: Optional[str] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Layout-preserving text of a roll sheet PDF.
    Every failure mode maps to PdfUnreadableError so the import can abort before touching the roster.
    """
    backend = backend or PDF_TEXT_BACKEND
    timeout = timeout or PDF_TEXT_TIMEOUT_SECONDS

    if backend == "pdfplumber":
        return _extract_with_pdfplumber(pdf_path)
    if backend != "pdftotext":
        raise PdfUnreadableError(f"Unknown PDF text backend: {backend}")

    try:
        proc = subprocess.run(
            [PDFTOTEXT_BIN, "-layout", str(pdf_path), "-"],
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise PdfUnreadableError(f"pdftotext could not be started: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise PdfUnreadableError(f"pdftotext timed out after {timeout}s") from e
    except OSError as e:
        raise PdfUnreadableError(f"pdftotext could not be started: {e}") from e

    stderr = proc.stderr.decode("utf-8", errors="replace").strip()
    if proc.returncode != 0:
        raise PdfUnreadableError(
            f"pdftotext failed (code {proc.returncode}): {stderr or 'unknown error'}",
            exit_code=proc.returncode,
            stderr=stderr,
        )
    return proc.stdout.decode("utf-8", errors="replace")


def _extract_with_pdfplumber(pdf_path: Union[str, Path]) -> str:
    try:
        with pdfplumber.open(pdf_path) as pdf:
            pages = [page.extract_text(layout=True) or "" for page in pdf.pages]
    except Exception as e:
        # pdfminer raises a wide range of exception types for damaged files
        raise PdfUnreadableError(f"pdfplumber could not read {pdf_path}: {e}") from e
    return "\n".join(pages)


###################################
### Line classification
###################################

_SCHEDULE_TIME_RE       = re.compile(r"Schedule:\s+\w+\s+(\d{1,2}(?::\d{2})?\s*(?:am|pm))", re.I)
_INSTRUCTOR_RE          = re.compile(r"Instructors:\s+(.*?)\s+Program:", re.I)
_ZONE_RE                = re.compile(r"Zone:\s+Zone\s+([1-4])", re.I)
_PROGRAM_RE             = re.compile(r"Program:\s+(.*?)\s+Zone:", re.I)
_GROUP_HEADER_RE        = re.compile(r"^GROUP:\s*(.+?)\s+on\s+\w{3}\s*:\s*\d{1,2}(?::\d{2})?\s*-\s*\d{1,2}(?::\d{2})?\s+with\s+", re.I)
_AGE_LINE_RE            = re.compile(r"^\d+\s*(y|m)\b", re.I)
_NUMBERED_NAME_RE       = re.compile(r"^\d+\s+(.+)$")
_DIGITS_RE              = re.compile(r"^\d+$")

_LABEL_PREFIXES = ("GROUP:", "PRIVATE:", "SEMI-PRIVATE:", "SEMI PRIVATE:", "ADULT:", "PARENTTOT:", "PARENT TOT:", "TODDLER", "15% OFF:")


def _is_header_or_noise(line: str) -> bool:
    if not line:
        return True
    if line.startswith("Student Medical") or line.startswith("CLA-"):
        return True
    return "Page " in line and " of " in line


def _is_age_line(line: str) -> bool:
    return bool(_AGE_LINE_RE.match(line)) or "•" in line or "allerg" in line.lower()


def _is_program_label(line: str) -> bool:
    return line.upper().startswith(_LABEL_PREFIXES)


def _peek(lines: Sequence[str], i: int, offset: int = 1) -> str:
    """Line at i+offset, "" past either end."""
    j = i + offset
    return lines[j] if 0 <= j < len(lines) else ""


def _look_back(lines: Sequence[str], i: int, max_lines: int, pattern: re.Pattern) -> Optional[re.Match]:
    """Nearest match above line i, at most max_lines back."""
    for back in range(1, max_lines + 1):
        j = i - back
        if j < 0:
            break
        m = pattern.match(lines[j])
        if m:
            return m
    return None


def _parse_schedule_line(lines: Sequence[str], i: int) -> Dict[str, Optional[object]]:
    """Class context from a 'Schedule: ... Instructors: ... Program: ... Zone: Zone N' line."""
    line = lines[i]
    time_m = _SCHEDULE_TIME_RE.search(line)
    inst_m = _INSTRUCTOR_RE.search(line)
    zone_m = _ZONE_RE.search(line)
    prog_m = _PROGRAM_RE.search(line)

    program = prog_m.group(1).strip() if prog_m else None
    if program and program.upper() == "GROUP":
        header = _look_back(lines, i, PDF_GROUP_LOOKBACK_LINES, _GROUP_HEADER_RE)
        program = f"GROUP: {header.group(1).strip()}" if header else "GROUP"
    else:
        program = normalize_program(program)

    return {
        "start_time":       normalize_time_to_24h(time_m.group(1)) if time_m else None,
        "instructor_name":  last_first_to_first_last(inst_m.group(1)) if inst_m else None,
        "zone":             int(zone_m.group(1)) if zone_m else None,
        "program":          program,
    }


def _match_swimmer(lines: Sequence[str], i: int) -> Tuple[Optional[str], int]:
    """
    Name at line i for the three wrap shapes pdftotext produces, tried in order:
      'Doe,' + '12 John'  -> 'Doe, John' (consumes next line)
      'Doe, John' + '12'  -> 'Doe, John' (consumes next line)
      '12 Doe, John'      -> 'Doe, John'
    Returns (raw name, lines consumed beyond i).
    """
    line = lines[i]
    nxt = _peek(lines, i)

    if line.endswith(","):
        m = _NUMBERED_NAME_RE.match(nxt)
        if m:
            return f"{line} {m.group(1)}", 1
    if _DIGITS_RE.match(nxt):
        return line, 1
    m = _NUMBERED_NAME_RE.match(line)
    if m:
        return m.group(1), 0
    return None, 0


def parse_roster_from_lines(lines: Sequence[str], roster_date: Optional[str] = None) -> RosterParseResult:
    """
    Walk pdftotext lines as a small state machine.

    NO_CONTEXT: nothing until a 'Schedule:' line gives time, instructor and zone.
    IN_CLASS:   noise, age and label lines are skipped; every other recognised line is a swimmer.

    Rows carry roster_date when given (the caller stamps the import date otherwise).
    Duplicate keys inside one run keep the first occurrence.
    """
    lines = tuple(lines)
    result = RosterParseResult(layout="pdf_text")
    seen = set()
    context: Optional[Dict[str, Optional[object]]] = None

    i = 0
    while i < len(lines):
        line = lines[i]

        if line.startswith("Schedule:"):
            parsed = _parse_schedule_line(lines, i)
            result.sections += 1
            if parsed["start_time"] and parsed["instructor_name"] and parsed["zone"]:
                context = parsed
            else:
                context = None
                result.warnings.append(f"Incomplete schedule line skipped: {line[:80]}")
            i += 1
            continue

        if context is None:
            i += 1
            continue

        if _is_header_or_noise(line) or _DIGITS_RE.match(line) or _is_age_line(line) or _is_program_label(line):
            i += 1
            continue

        raw_name, consumed = _match_swimmer(lines, i)
        if raw_name is None:
            i += 1
            continue

        name_end = i + consumed
        age_line = _peek(lines, name_end)
        age_text = normalize_age_text(age_line) if _is_age_line(age_line) else None

        # Two lines either side of where the name starts, not where a wrapped name ends
        flag_context = "  ".join(
            [line, _peek(lines, i, 1), _peek(lines, i, 2), _peek(lines, i, -1), _peek(lines, i, -2)]
        )
        flags = detect_flags(flag_context)

        swimmer_name = last_first_to_first_last(strip_star_glyphs(raw_name))
        if swimmer_name:
            row = RosterRow(
                date            = roster_date,
                start_time      = context["start_time"],
                swimmer_name    = swimmer_name,
                instructor_name = context["instructor_name"],
                zone            = context["zone"],
                program         = context["program"],
                age_text        = age_text,
                **flags,
            )
            key = (row.date, row.start_time, row.swimmer_name)
            if key in seen:
                result.warnings.append(f"Duplicate swimmer in same class skipped: {swimmer_name} at {row.start_time}")
            else:
                seen.add(key)
                result.rows.append(row)

        i = name_end + 1

    if roster_date:
        result.dates = [roster_date]
    if not result.sections:
        result.error = "No class schedules found in PDF text"
    elif not result.rows:
        result.error = "No swimmers found in PDF text"

    logging.debug(f"PDF parse: {result.sections} schedules, {len(result.rows)} swimmers, {len(result.warnings)} warnings")
    return result


def parse_roster_from_text(text: str, roster_date: Optional[str] = None) -> RosterParseResult:
    return parse_roster_from_lines(normalize_whitespace_lines(text), roster_date=roster_date)
