"""Manager report parsing and storage."""
from datetime import datetime

import pytest

from db import get_conn
from models.manager_report import ManagerReportRecord
from parsers.parse_manager_reports import (
    parse_aged_accounts_report,
    parse_drop_list_report,
    parse_html_table,
    parse_manager_report,
    parse_retention_report,
)
from upd_manager_reports import preview_manager_report, upd_manager_report


def _report_table(instructor, booked=None, retained=None, percent=None):
    totals = ""
    if booked is not None:
        totals = (
            "<tbody><tr>"
            f"<td><strong>{booked}</strong><small>Booked</small></td>"
            f"<td><strong>{retained}</strong><small>Retained</small></td>"
            + (f"<td><small>{percent}</small></td>" if percent else "")
            + "</tr></tbody>"
        )
    return (
        '<table class="report-table">'
        f"<tbody><tr><td><h2>{instructor}</h2></td></tr></tbody>"
        "<tbody><tr><td><h2>Totals</h2></td></tr></tbody>"
        f"{totals}"
        "</table>"
    )


REPORT_TABLE_HTML = (
    "<html><body>"
    "<p><strong>As Of Date:</strong> 10/01/2026</p>"
    "<p><strong>Retained Date:</strong> 11/01/2026</p>"
    + _report_table("Smith, Jane", 40, 30, "75.00%")
    + _report_table("Lee, Kim", 20, 15)
    + _report_table("Jones, Amy")
    + _report_table("smith, jane", 1, 1, "100%")
    + "</body></html>"
)


def _structural_block(name, percent, swimmers):
    return (
        "<div>"
        f"<h3>{name}</h3>"
        "<table><tr><td>Booked</td><td>12</td></tr></table>"
        f"<table><tr><td>Retention</td><td>{percent}</td></tr></table>"
        f"<table><tr><td>Swimmers</td><td>{swimmers}</td></tr></table>"
        "<table><tr><td>Lessons</td><td>48</td></tr></table>"
        "</div>"
    )


def test_retention_report_table_layout():
    parsed = parse_retention_report(REPORT_TABLE_HTML)

    by_name = {e["instructor"]: e for e in parsed["instructors"]}
    assert list(by_name) == ["Smith, Jane", "Lee, Kim", "Jones, Amy"]
    assert by_name["Smith, Jane"] == {
        "instructor": "Smith, Jane", "retention_percent": 75.0, "swimmer_count": 40, "booked": 40, "retained": 30,
    }
    assert by_name["Lee, Kim"]["retention_percent"] == 75.0
    assert by_name["Jones, Amy"]["retention_percent"] is None
    assert "Could not parse totals for instructor: Jones, Amy" in parsed["warnings"]

    assert parsed["date_bracket"]["as_of"] == "10/01/2026"
    assert parsed["date_bracket"]["retained"] == "11/01/2026"
    assert parsed["date_bracket"]["raw"] == "As Of Date: 10/01/2026 | Retained Date: 11/01/2026"


def test_retention_structural_layout_prefers_name_nearest_tables():
    html = (
        "<html><body><div>Retention by Instructor</div>"
        + _structural_block("Jane Smith", "80%", 10)
        + _structural_block("Kim Lee", "62.5%", 8)
        + "</body></html>"
    )
    parsed = parse_retention_report(html)

    assert [(e["instructor"], e["retention_percent"], e["swimmer_count"]) for e in parsed["instructors"]] == [
        ("Jane Smith", 80.0, 10.0),
        ("Kim Lee", 62.5, 8.0),
    ]


def test_retention_generic_table_fallback():
    html = (
        "<h1>Retention</h1><table>"
        "<tr><th>Instructor</th><th>Retention %</th><th>Swimmers</th></tr>"
        "<tr><td>Jane Smith</td><td>85%</td><td>12</td></tr>"
        "<tr><td>JANE SMITH</td><td>10%</td><td>1</td></tr>"
        "<tr><td></td><td>50%</td><td>2</td></tr>"
        "<tr><td>Kim Lee</td><td>n/a</td><td>7</td></tr>"
        "</table>"
    )
    parsed = parse_retention_report(html)

    assert [(e["instructor"], e["retention_percent"], e["swimmer_count"]) for e in parsed["instructors"]] == [
        ("Jane Smith", 85.0, 12.0),
        ("Kim Lee", None, 7.0),
    ]


def test_retention_without_tables_warns_instead_of_raising():
    parsed = parse_retention_report("<p>Nothing here</p>")

    assert parsed["instructors"] == []
    assert "No retention tables detected." in parsed["warnings"]
    assert "No instructors detected in retention report." in parsed["warnings"]
    assert parse_retention_report(None)["instructors"] == []


def test_largest_table_wins():
    html = (
        "<table><tr><th>A</th></tr><tr><td>1</td></tr></table>"
        "<table><tr><th>Name</th><th>Due</th></tr><tr><td>x</td><td>1</td></tr><tr><td>y</td><td>2</td></tr></table>"
    )

    assert parse_html_table(html) == {"headers": ["Name", "Due"], "rows": [["x", "1"], ["y", "2"]]}
    assert parse_html_table("") == {"headers": [], "rows": []}


def test_aged_accounts_rows():
    html = "<table><tr><th>Account</th><th>90+ Days</th></tr><tr><td>Doe</td><td>$120.00</td></tr></table>"

    assert parse_aged_accounts_report(html)["rows"] == [["Doe", "$120.00"]]
    assert parse_aged_accounts_report("<p></p>")["warnings"] == ["No aged accounts rows detected."]


def test_drop_list_dates():
    html = (
        "<table><tr><th>Swimmer</th><th>Drop Date</th><th>Reason</th></tr>"
        "<tr><td>Doe, John</td><td>10/15/2026</td><td>Moved</td></tr>"
        "<tr><td>Roe, Jane</td><td></td><td>Left on 2026-10-02</td></tr>"
        "<tr><td>Poe, Ed</td><td></td><td>Unknown</td></tr>"
        "</table>"
    )
    parsed = parse_drop_list_report(html)

    assert [e["drop_date"] for e in parsed["entries"]] == ["2026-10-15", "2026-10-02", None]
    assert parsed["warnings"] == []


def test_drop_list_without_dates_warns():
    html = "<table><tr><th>Swimmer</th></tr><tr><td>Doe, John</td></tr></table>"

    assert "No drop dates detected in drop list." in parse_drop_list_report(html)["warnings"]


def test_dispatch_validates_report_type():
    with pytest.raises(ValueError, match="Invalid report type"):
        parse_manager_report("attendance", "<p></p>")

    parsed = parse_manager_report(" Retention ", REPORT_TABLE_HTML)
    assert parsed.report_type == "retention"
    assert parsed.report_date == "2026-10-01"
    assert parsed.row_count == 3


def test_upload_stores_report_for_selected_location(db_path):
    now = datetime(2026, 10, 18, 9, 0)
    outcome = upd_manager_report("retention", REPORT_TABLE_HTML, location_id=1, now=now, db_name=db_path)

    assert outcome["ok"], outcome
    report = outcome["report"]
    assert report["location_id"] == 1
    assert report["row_count"] == 3
    assert report["report_date"] == "2026-10-01"

    conn, cursor = get_conn(db_path)
    try:
        stored = ManagerReportRecord.get_by_type(cursor, 1, "retention")
    finally:
        conn.close()
    assert len(stored) == 1
    assert stored[0].data["instructors"][0]["instructor"] == "Smith, Jane"


def test_html_location_wins_and_mismatch_is_a_warning(db_path):
    html = REPORT_TABLE_HTML.replace("</body>", "<p>Location: SafeSplash Riverdale</p></body>")
    outcome = upd_manager_report("retention", html, location_id=1, db_name=db_path)

    assert outcome["ok"], outcome
    assert outcome["report"]["location_id"] == 3
    assert 'HTML location "SafeSplash Riverdale" does not match selected location.' in outcome["report"]["warnings"]


def test_location_required(db_path):
    outcome = upd_manager_report("retention", REPORT_TABLE_HTML, db_name=db_path)

    assert not outcome["ok"]
    assert outcome["error"] == "Location required for this report."

    outcome = upd_manager_report("retention", REPORT_TABLE_HTML, location_id=999, db_name=db_path)
    assert outcome["error"] == "Invalid location selection."


def test_drop_list_needs_selected_location(db_path):
    html = "<p>Location: SafeSplash Riverdale</p><table><tr><th>Swimmer</th></tr><tr><td>Doe</td></tr></table>"
    outcome = upd_manager_report("drop_list", html, db_name=db_path)

    assert not outcome["ok"]
    assert outcome["error"] == "Drop list uploads must include a selected location."


def test_drop_list_keeps_selected_location_without_mismatch_warning(db_path):
    html = "<p>Location: SafeSplash Riverdale</p><table><tr><th>Swimmer</th></tr><tr><td>Doe</td></tr></table>"
    outcome = upd_manager_report("drop_list", html, location_id=1, db_name=db_path)

    assert outcome["ok"], outcome
    assert outcome["report"]["location_id"] == 1
    assert not any("does not match" in w for w in outcome["report"]["warnings"])


def test_aged_accounts_upload_archives_previous(db_path):
    html = "<table><tr><th>Account</th></tr><tr><td>Doe</td></tr></table>"
    first = upd_manager_report("aged_accounts", html, location_id=2, now=datetime(2026, 10, 1, 8, 0), db_name=db_path)
    second = upd_manager_report("aged_accounts", html, location_id=2, now=datetime(2026, 10, 18, 8, 0), db_name=db_path)
    assert first["ok"] and second["ok"]

    conn, cursor = get_conn(db_path)
    try:
        history = ManagerReportRecord.get_by_type(cursor, 2, "aged_accounts")
        latest = ManagerReportRecord.get_latest_by_type(cursor, 2)
    finally:
        conn.close()
    assert [r.archived for r in history] == [False, True]
    assert latest["aged_accounts"].report_id == second["report"]["report_id"]


def test_invalid_type_upload_and_preview(db_path):
    outcome = upd_manager_report("payroll", "<p></p>", location_id=1, db_name=db_path)
    assert not outcome["ok"]
    assert outcome["error"] == "Invalid report type: payroll"

    preview = preview_manager_report("retention", REPORT_TABLE_HTML, location_id=1, db_name=db_path)
    assert preview["ok"]
    assert preview["row_count"] == 3
    assert preview["location_name"] == "SwimLabs Westchester"
