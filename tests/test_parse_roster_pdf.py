"""PDF roll sheet text -> roster rows, and the text extraction wrapper."""
import subprocess
from datetime import date

import pytest

from parsers import parse_roster_pdf
from parsers.parse_roster_pdf import (
    PdfUnreadableError,
    extract_pdf_text,
    parse_roster_from_lines,
    parse_roster_from_text,
    roll_sheet_filename,
)


SCHEDULE = "Schedule: Mon 9:00am Instructors: Smith, Jane Program: GROUP Zone: Zone 2"


def test_single_swimmer_class():
    result = parse_roster_from_lines([SCHEDULE, "1 Doe, John", "5y"], roster_date="2026-10-18")

    assert result.ok
    assert len(result.rows) == 1
    row = result.rows[0]
    assert row.start_time == "09:00"
    assert row.instructor_name == "Jane Smith"
    assert row.zone == 2
    assert row.swimmer_name == "John Doe"
    assert row.age_text == "5y"
    assert row.date == "2026-10-18"
    assert row.program.startswith("GROUP")
    assert result.dates == ["2026-10-18"]


def test_name_wrap_shapes():
    lines = [
        SCHEDULE,
        "Doe,",
        "12 John",
        "6y",
        "Smith, Anna",
        "7",
        "4y 3m",
        "3 Lee, Sam",
    ]
    result = parse_roster_from_lines(lines)

    assert [r.swimmer_name for r in result.rows] == ["John Doe", "Anna Smith", "Sam Lee"]
    assert [r.age_text for r in result.rows] == ["6y", "4y 3m", None]


def test_group_header_gives_level_and_noise_is_skipped():
    lines = [
        "GROUP: Beginner 2 on Mon: 9:00-9:30 with Smith, Jane",
        SCHEDULE,
        "Student Medical Information",
        "Page 1 of 3",
        "1 Doe, John",
        "5y",
    ]
    result = parse_roster_from_lines(lines)

    assert len(result.rows) == 1
    assert result.rows[0].program == "GROUP: Beginner 2"


def test_private_program_is_normalized_and_classes_switch_context():
    lines = [
        SCHEDULE,
        "1 Doe, John",
        "Schedule: Mon 4:30pm Instructors: Lee, Kim Program: PRIVATE LESSON Zone: Zone 4",
        "1 Roe, Jane",
    ]
    result = parse_roster_from_lines(lines)

    assert [(r.swimmer_name, r.start_time, r.instructor_name, r.zone, r.program) for r in result.rows] == [
        ("John Doe", "09:00", "Jane Smith", 2, "GROUP"),
        ("Jane Roe", "16:30", "Kim Lee", 4, "Private"),
    ]


def test_duplicate_swimmer_in_same_class_keeps_first():
    result = parse_roster_from_lines([SCHEDULE, "1 Doe, John", "2 Doe, John"])

    assert len(result.rows) == 1
    assert any("Duplicate" in w for w in result.warnings)


def test_flags_come_from_surrounding_lines():
    result = parse_roster_from_lines([SCHEDULE, "1 Doe, John", "5y", "MAKEUP balance due"])

    row = result.rows[0]
    assert row.flag_makeup and row.flag_owes
    assert not row.flag_trial


def test_flag_window_is_anchored_on_first_name_line():
    near = parse_roster_from_lines([SCHEDULE, "Doe,", "12 John", "TRIAL"]).rows[0]
    assert near.swimmer_name == "John Doe"
    assert near.flag_trial

    # Three lines below "Doe," is outside the window even though the name wrapped
    far = parse_roster_from_lines([SCHEDULE, "Doe,", "12 John", "6y", "TRIAL"]).rows[0]
    assert far.age_text == "6y"
    assert not far.flag_trial


def test_incomplete_schedule_drops_following_swimmers():
    lines = ["Schedule: Mon Instructors: Smith, Jane Program: GROUP Zone: Zone 2", "1 Doe, John"]
    result = parse_roster_from_lines(lines)

    assert result.rows == []
    assert result.error == "No swimmers found in PDF text"
    assert result.warnings


def test_no_schedule_lines_is_an_error():
    result = parse_roster_from_text("Roll Sheets\n1 Doe, John\n")

    assert not result.ok
    assert result.error == "No class schedules found in PDF text"


def test_parse_is_deterministic():
    text = "\n".join([SCHEDULE, "Doe,", "12 John", "6y", "  3   Lee,  Sam  "])

    first = [r.to_dict() for r in parse_roster_from_text(text, "2026-10-18").rows]
    second = [r.to_dict() for r in parse_roster_from_text(text, "2026-10-18").rows]
    assert first == second


def test_roll_sheet_filename():
    assert roll_sheet_filename(date(2026, 10, 18)) == "Roll_Sheets_10-18-2026.pdf"


def test_missing_pdftotext_binary_is_unreadable(monkeypatch, tmp_path):
    monkeypatch.setattr(parse_roster_pdf, "PDFTOTEXT_BIN", str(tmp_path / "no-such-pdftotext"))

    with pytest.raises(PdfUnreadableError):
        extract_pdf_text(tmp_path / "roll.pdf", backend="pdftotext")


def test_pdftotext_nonzero_exit_carries_code_and_stderr(monkeypatch, tmp_path):
    def fake_run(cmd, capture_output, timeout):
        return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"Syntax Error: broken xref")
    monkeypatch.setattr(parse_roster_pdf.subprocess, "run", fake_run)

    with pytest.raises(PdfUnreadableError) as excinfo:
        extract_pdf_text(tmp_path / "roll.pdf", backend="pdftotext")
    assert excinfo.value.exit_code == 1
    assert "broken xref" in excinfo.value.stderr


def test_pdftotext_timeout_is_unreadable(monkeypatch, tmp_path):
    def fake_run(cmd, capture_output, timeout):
        raise subprocess.TimeoutExpired(cmd, timeout)
    monkeypatch.setattr(parse_roster_pdf.subprocess, "run", fake_run)

    with pytest.raises(PdfUnreadableError, match="timed out"):
        extract_pdf_text(tmp_path / "roll.pdf", backend="pdftotext", timeout=1)


def test_pdftotext_output_is_decoded(monkeypatch, tmp_path):
    def fake_run(cmd, capture_output, timeout):
        assert "-layout" in cmd
        return subprocess.CompletedProcess(cmd, 0, stdout=SCHEDULE.encode("utf-8"), stderr=b"")
    monkeypatch.setattr(parse_roster_pdf.subprocess, "run", fake_run)

    assert extract_pdf_text(tmp_path / "roll.pdf", backend="pdftotext") == SCHEDULE


def test_pdfplumber_backend_rejects_garbage(tmp_path):
    bogus = tmp_path / "not_a.pdf"
    bogus.write_bytes(b"this is not a pdf")

    with pytest.raises(PdfUnreadableError):
        extract_pdf_text(bogus, backend="pdfplumber")


def test_unknown_backend(tmp_path):
    with pytest.raises(PdfUnreadableError, match="Unknown PDF text backend"):
        extract_pdf_text(tmp_path / "roll.pdf", backend="ocr")
