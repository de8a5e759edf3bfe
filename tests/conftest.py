import pytest

from db import get_conn, init_db
from models.location import Location
from models.roster_row import RosterRow
from utils import OperationLogger


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite file with the full schema and the seeded locations."""
    path = str(tmp_path / "roll_sheets.db")
    conn, cursor = get_conn(path)
    logger = OperationLogger(verbosity=0, print_output=False, log_to_db=False, cursor=cursor)
    init_db(cursor, logger)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def conn_cursor(db_path):
    conn, cursor = get_conn(db_path)
    try:
        yield conn, cursor
    finally:
        conn.close()


@pytest.fixture
def cursor(conn_cursor):
    return conn_cursor[1]


@pytest.fixture
def location(cursor):
    return Location.get_by_id(cursor, 1)


@pytest.fixture
def export_dir(tmp_path):
    return str(tmp_path / "exports")


@pytest.fixture
def make_row():
    """Factory for import rows with sensible defaults."""
    def _make(swimmer_name="John Doe", date="2026-10-18", start_time="16:00", **kwargs):
        values = dict(
            date            = date,
            start_time      = start_time,
            swimmer_name    = swimmer_name,
            instructor_name = "Jane Smith",
            zone            = 2,
            program         = "GROUP: Beginner 2",
            age_text        = "5y",
        )
        values.update(kwargs)
        return RosterRow(**values)
    return _make
