"""Roster row manual edits, app state and locations."""
from datetime import date, datetime

import pytest

from models import app_state
from models.location import Location
from models.roster_row import RosterRow


NOW = datetime(2026, 10, 18, 9, 0, 0)
DAY = "2026-10-18"


@pytest.fixture
def stored(cursor, make_row):
    rows = [make_row("John Doe"), make_row("Jane Roe")]
    for row in rows:
        row.location_id = 1
        row.upsert(cursor, NOW)
    return rows


def test_validate():
    assert RosterRow(date=DAY, start_time="09:00", swimmer_name="John Doe").validate() == (True, "")
    assert not RosterRow(date=DAY, start_time="9:00", swimmer_name="John Doe").validate()[0]
    assert not RosterRow(date="10/32/2026", start_time="09:00", swimmer_name="John Doe").validate()[0]
    assert not RosterRow(date=DAY, start_time="09:00", swimmer_name="  ").validate()[0]
    assert not RosterRow(date=DAY, start_time="09:00", swimmer_name="John Doe", zone=5).validate()[0]
    assert not RosterRow(date=DAY, start_time="09:00", swimmer_name="John Doe", attendance=2).validate()[0]


def test_invalid_row_is_not_written(cursor, make_row):
    row = make_row(start_time=None)

    assert row.upsert(cursor, NOW) is None
    assert RosterRow.get_dates(cursor, 1) == []


def test_content_hash_ignores_manual_fields(make_row):
    plain = make_row()
    marked = make_row(attendance_at=NOW, zone_overridden=True, zone_override_by="deck lead", is_addon=True)

    assert plain.compute_content_hash() == marked.compute_content_hash()
    assert plain.compute_content_hash() != make_row(zone=3).compute_content_hash()


def test_dict_round_trip_keeps_types(make_row):
    row = make_row(attendance=1, attendance_at=NOW, flag_owes=True, balance_amount=12.5)
    data = row.to_dict()

    assert data["flag_owes"] == 1 and data["attendance_at"] == "2026-10-18 09:00:00"
    assert RosterRow.from_dict(data) == row


def test_attendance_marks(cursor, stored):
    assert RosterRow.set_attendance(cursor, DAY, "16:00", "John Doe", 0, NOW)
    row = RosterRow.get_by_key(cursor, DAY, "16:00", "John Doe")
    assert row.attendance == 0 and row.attendance_at == NOW and not row.attendance_auto_absent

    assert RosterRow.set_attendance(cursor, DAY, "16:00", "John Doe", None, NOW)
    row = RosterRow.get_by_key(cursor, DAY, "16:00", "John Doe")
    assert row.attendance is None and row.attendance_at is None

    assert not RosterRow.set_attendance(cursor, DAY, "16:00", "Nobody", 1, NOW)
    with pytest.raises(ValueError):
        RosterRow.set_attendance(cursor, DAY, "16:00", "John Doe", 3, NOW)


def test_bulk_attendance(cursor, stored):
    assert RosterRow.set_bulk_attendance(cursor, DAY, "16:00", 1, 1, NOW) == 2
    assert {r.attendance for r in RosterRow.get_for_date(cursor, DAY)} == {1}
    assert RosterRow.set_bulk_attendance(cursor, DAY, "16:00", 2, 1, NOW) == 0


def test_zone_override(cursor, stored):
    assert RosterRow.override_zone(cursor, DAY, "16:00", "Jane Roe", 3, "deck lead", NOW)
    row = RosterRow.get_by_key(cursor, DAY, "16:00", "Jane Roe")
    assert row.zone == 3 and row.zone_overridden and row.zone_override_at == NOW

    with pytest.raises(ValueError):
        RosterRow.override_zone(cursor, DAY, "16:00", "Jane Roe", 0, None, NOW)


def test_flag_updates(cursor, stored):
    assert RosterRow.update_flags(cursor, DAY, "16:00", "Jane Roe", {"flag_trial": True, "flag_new": 1}, NOW)
    row = RosterRow.get_by_key(cursor, DAY, "16:00", "Jane Roe")
    assert row.flag_trial and row.flag_new and not row.flag_owes

    assert not RosterRow.update_flags(cursor, DAY, "16:00", "Jane Roe", {}, NOW)
    with pytest.raises(ValueError, match="flag_vip"):
        RosterRow.update_flags(cursor, DAY, "16:00", "Jane Roe", {"flag_vip": True}, NOW)


def test_addon_lifecycle(cursor, stored, make_row):
    assert make_row("Walk In", location_id=1).add_addon(cursor, NOW) == "inserted"
    assert make_row("Jane Roe", location_id=1).add_addon(cursor, NOW) == "updated"
    assert RosterRow.get_by_key(cursor, DAY, "16:00", "Jane Roe").is_addon

    assert RosterRow.remove_addon(cursor, DAY, "16:00", "Walk In") == "removed"
    assert RosterRow.remove_addon(cursor, DAY, "16:00", "Walk In") == "not_found"
    assert RosterRow.remove_addon(cursor, DAY, "16:00", "John Doe") == "not_addon"


def test_superseded_excludes_addons_unless_asked(cursor, stored, make_row):
    make_row("Walk In", location_id=1).add_addon(cursor, NOW)

    assert {r.swimmer_name for r in RosterRow.get_superseded(cursor, 1, DAY, DAY)} == {"John Doe", "Jane Roe"}
    assert len(RosterRow.get_superseded(cursor, 1, DAY, include_addons=True)) == 3
    assert RosterRow.get_superseded(cursor, 2, DAY) == []
    assert RosterRow.get_dates(cursor, 1) == [DAY]


def test_active_date(cursor):
    assert app_state.get_active_date(cursor) is None
    assert app_state.active_or_today(cursor, today=date(2026, 10, 18)) == DAY

    assert app_state.set_active_date(cursor, "10/20/2026") == "2026-10-20"
    assert app_state.active_or_today(cursor, today=date(2026, 10, 18)) == "2026-10-20"
    with pytest.raises(ValueError):
        app_state.set_active_date(cursor, "someday")


def test_manager_date_range(cursor):
    assert app_state.get_manager_date_range(cursor) is None
    assert app_state.set_manager_date_range(cursor, "2026-09-01", date(2026, 10, 1)) == ("2026-09-01", "2026-10-01")
    assert app_state.get_manager_date_range(cursor) == ("2026-09-01", "2026-10-01")

    with pytest.raises(ValueError):
        app_state.set_manager_date_range(cursor, "2026-10-02", "2026-10-01")
    app_state.set_value(cursor, app_state.MANAGER_DATE_RANGE_KEY, "not json")
    assert app_state.get_manager_date_range(cursor) is None


def test_seeded_locations(cursor):
    codes = [loc.code for loc in Location.get_all(cursor)]
    assert codes == ["SLW", "SLX", "SSR", "SSM", "SST", "SSS"]

    assert Location.resolve_by_name(cursor, "swimlabs westchester").code == "SLW"
    assert Location.resolve_by_name(cursor, "ssr").code == "SSR"
    assert Location.resolve_by_name(cursor, "SafeSplash Torrance Roll Sheet").code == "SST"
    assert Location.resolve_by_name(cursor, "Atlantis") is None

    assert Location.deactivate(cursor, 6)
    assert [loc.code for loc in Location.get_all(cursor)][-1] == "SST"
    assert Location.get_by_id(cursor, 6).active is False
