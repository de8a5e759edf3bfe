"""Applying parsed rows to the stored roster of one location."""
import json
import os
from datetime import datetime

import pytest

from models import app_state
from models.roster_row import RosterRow
from resolvers.resolve_roster import ReplacementScope, resolve_roster


NOW = datetime(2026, 10, 18, 9, 0, 0)
LATER = datetime(2026, 10, 18, 15, 30, 0)
DAY = "2026-10-18"


@pytest.fixture
def scope():
    return ReplacementScope.single_date(1, DAY)


def _stored(cursor):
    return {r.swimmer_name: r for r in RosterRow.get_for_date(cursor, DAY, location_id=1)}


def test_scope_window():
    single = ReplacementScope.single_date(1, DAY)
    assert single.covers(DAY)
    assert not single.covers("2026-10-19")
    assert not single.covers(None)

    open_ended = ReplacementScope.from_date(1, DAY)
    assert open_ended.covers("2027-01-01")
    assert not open_ended.covers("2026-10-17")


def test_first_import_inserts_and_sets_active_date(cursor, location, scope, export_dir, make_row):
    result = resolve_roster(
        cursor, [make_row(), make_row("Jane Roe")], location, scope, "test", NOW,
        export_dir=export_dir, active_date=DAY,
    )

    assert result.ok
    assert result.counts["inserted"] == 2
    assert result.backup_path is None
    assert result.active_date == DAY
    assert app_state.get_active_date(cursor) == DAY
    assert set(_stored(cursor)) == {"John Doe", "Jane Roe"}


def test_reimporting_same_rows_changes_nothing(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row(), make_row("Jane Roe")], location, scope, "test", NOW, export_dir=export_dir)
    before = [r.to_dict() for r in RosterRow.get_for_date(cursor, DAY)]

    result = resolve_roster(cursor, [make_row(), make_row("Jane Roe")], location, scope, "test", LATER, export_dir=export_dir)

    assert result.counts["unchanged"] == 2
    assert result.counts["deleted"] == 0
    assert result.counts["inserted"] == result.counts["updated"] == 0
    assert [r.to_dict() for r in RosterRow.get_for_date(cursor, DAY)] == before


def test_changed_row_is_updated(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row()], location, scope, "test", NOW, export_dir=export_dir)

    result = resolve_roster(cursor, [make_row(instructor_name="Kim Lee")], location, scope, "test", LATER, export_dir=export_dir)

    assert result.counts["updated"] == 1
    row = _stored(cursor)["John Doe"]
    assert row.instructor_name == "Kim Lee"
    assert row.updated_at == LATER
    assert row.created_at == NOW


def test_rows_missing_from_new_import_are_deleted_after_snapshot(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row(), make_row("Jane Roe")], location, scope, "test", NOW, export_dir=export_dir)

    result = resolve_roster(cursor, [make_row()], location, scope, "test", LATER, export_dir=export_dir)

    assert result.counts["deleted"] == 1
    assert set(_stored(cursor)) == {"John Doe"}

    assert result.backup_path and os.path.exists(result.backup_path)
    assert os.path.basename(result.backup_path).startswith("roster_SLW_2026-10-18_20261018_153000_")
    with open(result.backup_path, encoding="utf-8") as f:
        payload = json.load(f)
    assert payload["code"] == "SLW"
    assert payload["count"] == 2
    assert sorted(r["swimmer_name"] for r in payload["roster"]) == ["Jane Roe", "John Doe"]


def test_addons_survive_imports(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row()], location, scope, "test", NOW, export_dir=export_dir)
    walk_in = make_row("Walk In", location_id=1)
    assert walk_in.add_addon(cursor, NOW) == "inserted"

    result = resolve_roster(cursor, [make_row()], location, scope, "test", LATER, export_dir=export_dir)

    stored = _stored(cursor)
    assert stored["Walk In"].is_addon
    assert result.counts["deleted"] == 0


def test_import_row_on_addon_key_is_skipped(cursor, location, scope, export_dir, make_row):
    addon = make_row(instructor_name="Kim Lee", location_id=1)
    addon.add_addon(cursor, NOW)

    result = resolve_roster(cursor, [make_row()], location, scope, "test", LATER, export_dir=export_dir)

    assert result.counts["skipped_addon"] == 1
    assert "1 rows skipped addon" in result.warnings
    row = _stored(cursor)["John Doe"]
    assert row.is_addon and row.instructor_name == "Kim Lee"


def test_manual_attendance_survives_reimport(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row()], location, scope, "test", NOW, export_dir=export_dir)
    assert RosterRow.set_attendance(cursor, DAY, "16:00", "John Doe", 1, NOW)

    resolve_roster(cursor, [make_row()], location, scope, "test", LATER, export_dir=export_dir)
    row = _stored(cursor)["John Doe"]
    assert row.attendance == 1 and row.attendance_at == NOW

    # An automatic absence does not beat a person's mark
    resolve_roster(cursor, [make_row(attendance=0, attendance_auto_absent=True)], location, scope, "test", LATER, export_dir=export_dir)
    assert _stored(cursor)["John Doe"].attendance == 1

    # An explicit absence on the roll sheet does
    resolve_roster(cursor, [make_row(attendance=0)], location, scope, "test", LATER, export_dir=export_dir)
    row = _stored(cursor)["John Doe"]
    assert row.attendance == 0 and row.attendance_at is None


def test_kept_mark_clears_automatic_absence_on_changed_import(cursor, location, scope, export_dir, make_row):
    cancelled = make_row(attendance=0, attendance_auto_absent=True)
    resolve_roster(cursor, [cancelled], location, scope, "test", NOW, export_dir=export_dir)
    assert RosterRow.set_attendance(cursor, DAY, "16:00", "John Doe", 1, NOW)

    # Same cancel icon, but other content changed so the import-owned fields are rewritten
    still_cancelled = make_row(attendance=0, attendance_auto_absent=True, age_text="6y")
    result = resolve_roster(cursor, [still_cancelled], location, scope, "test", LATER, export_dir=export_dir)

    assert result.counts["updated"] == 1
    row = _stored(cursor)["John Doe"]
    assert row.age_text == "6y"
    assert row.attendance == 1 and row.attendance_at == NOW
    assert not row.attendance_auto_absent


def test_restore_source_writes_manual_fields_over_existing_key(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row()], location, scope, "test", NOW, export_dir=export_dir)
    snapshot_row = make_row(
        attendance=1, attendance_at=NOW,
        zone=4, zone_overridden=True, zone_override_at=NOW, zone_override_by="deck lead",
    )

    result = resolve_roster(cursor, [snapshot_row], location, scope, "restore", LATER, export_dir=export_dir)

    assert result.ok
    row = _stored(cursor)["John Doe"]
    assert row.attendance == 1 and row.attendance_at == NOW
    assert row.zone == 4 and row.zone_overridden
    assert row.zone_override_at == NOW and row.zone_override_by == "deck lead"

    # A later import treats the restored state as manual again
    resolve_roster(cursor, [make_row(zone=1)], location, scope, "test", LATER, export_dir=export_dir)
    row = _stored(cursor)["John Doe"]
    assert row.zone == 4 and row.attendance == 1


def test_zone_override_survives_reimport(cursor, location, scope, export_dir, make_row):
    resolve_roster(cursor, [make_row()], location, scope, "test", NOW, export_dir=export_dir)
    assert RosterRow.override_zone(cursor, DAY, "16:00", "John Doe", 4, "deck lead", NOW)

    resolve_roster(cursor, [make_row(zone=3, program="Private")], location, scope, "test", LATER, export_dir=export_dir)

    row = _stored(cursor)["John Doe"]
    assert row.zone == 4 and row.zone_overridden and row.zone_override_by == "deck lead"
    assert row.program == "Private"


def test_rows_outside_scope_and_invalid_rows_are_counted(cursor, location, scope, export_dir, make_row):
    rows = [make_row(), make_row("Next Day", date="2026-10-19"), make_row("Bad Time", start_time="4pm")]

    result = resolve_roster(cursor, rows, location, scope, "test", NOW, export_dir=export_dir)

    assert result.counts["inserted"] == 1
    assert result.counts["skipped_scope"] == 1
    assert result.counts["invalid"] == 1
    assert RosterRow.get_by_key(cursor, "2026-10-19", "16:00", "Next Day") is None


def test_failure_rolls_back_everything(cursor, location, scope, export_dir, make_row, monkeypatch):
    resolve_roster(cursor, [make_row(), make_row("Jane Roe")], location, scope, "test", NOW, export_dir=export_dir)

    original_upsert = RosterRow.upsert
    calls = []

    def flaky_upsert(self, cursor, now, existing=None, keep_manual=False):
        calls.append(self.swimmer_name)
        if len(calls) == 2:
            raise RuntimeError("disk full")
        return original_upsert(self, cursor, now, existing=existing, keep_manual=keep_manual)

    monkeypatch.setattr(RosterRow, "upsert", flaky_upsert)

    with pytest.raises(RuntimeError, match="disk full"):
        resolve_roster(
            cursor, [make_row(instructor_name="Kim Lee"), make_row("New Kid")], location, scope, "test", LATER,
            export_dir=export_dir, active_date="2026-10-20",
        )

    stored = _stored(cursor)
    assert set(stored) == {"John Doe", "Jane Roe"}
    assert stored["John Doe"].instructor_name == "Jane Smith"
    assert app_state.get_active_date(cursor) is None
