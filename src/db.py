# db.py:

import sqlite3
from config import DB_NAME, DEFAULT_LOCATIONS
import logging
import datetime

# --- register adapters/converters once (Python 3.12+ friendly) ---
_ADAPTERS_REGISTERED = False

def get_conn(db_name=None):

    db_name = db_name or DB_NAME

    try:
        _register_sqlite_date_time_adapters()

        # Enable parsing for declared column types (DATE/TIMESTAMP)
        conn = sqlite3.connect(
            db_name,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
            check_same_thread=False
        )
        logging.debug(f"Connected to database: {db_name}")

        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA synchronous = NORMAL;")
        conn.execute("PRAGMA temp_store = MEMORY;")
        conn.execute("PRAGMA foreign_keys = ON;")

        return conn, conn.cursor()

    except sqlite3.Error as e:
        print(f"❌ Database connection failed: {e}")
        raise


def compact_sqlite(db_name=None):
    print("ℹ️  Compacting SQLite database...")
    try:
        con = sqlite3.connect(db_name or DB_NAME)
        con.execute("PRAGMA wal_checkpoint(TRUNCATE);")
        con.execute("VACUUM;")  # rebuilds/shrinks the same file
        con.close()
    except sqlite3.Error as e:
        print(f"❌ Error during database compaction: {e}")
        raise


def _register_sqlite_date_time_adapters() -> None:
    global _ADAPTERS_REGISTERED
    if _ADAPTERS_REGISTERED:
        return

    # Serialize Python date/datetime -> ISO strings
    sqlite3.register_adapter(datetime.date, lambda d: d.isoformat())
    sqlite3.register_adapter(datetime.datetime, lambda dt: dt.isoformat(sep=" "))

    # Parse DB values back into Python objects for columns declared as DATE/TIMESTAMP
    sqlite3.register_converter("DATE", lambda b: datetime.date.fromisoformat(b.decode()))
    sqlite3.register_converter("TIMESTAMP", lambda b: datetime.datetime.fromisoformat(b.decode()))

    _ADAPTERS_REGISTERED = True

def drop_tables(cursor, logger, tables):

    dropped = []
    for table_name in tables:
        try:
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?;",
                (table_name,)
            )
            if cursor.fetchone():
                cursor.execute(f"DROP TABLE IF EXISTS {table_name}")
                dropped.append(table_name)
            else:
                logger.warning({}, f"Table not found, skipping drop: {table_name}", to_console=True)
        except sqlite3.Error as e:
            logger.failed({"table": table_name}, f"Error dropping table {table_name}: {e}", to_console=True)
    if not dropped:
        logger.info("No tables dropped.", to_console=True)
    else:
        logger.info(f"Dropped {len(dropped)} tables: {', '.join(dropped)}", to_console=True)


def create_tables(cursor):

    try:

        logging.info("Creating tables if needed...")
        logging.info("-------------------------------------------------------------------")

        # One swimmer in one class occurrence. Dates stay ISO text, start times "HH:MM".
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS roster (
                date                                TEXT NOT NULL,
                start_time                          TEXT NOT NULL,
                swimmer_name                        TEXT NOT NULL,
                instructor_name                     TEXT,
                substitute_instructor               TEXT,
                is_substitute                       BOOLEAN DEFAULT 0,
                original_instructor                 TEXT,
                zone                                INTEGER CHECK (zone IS NULL OR zone BETWEEN 1 AND 4),
                program                             TEXT,
                age_text                            TEXT,
                attendance                          INTEGER CHECK (attendance IS NULL OR attendance IN (0, 1)),
                attendance_at                       TIMESTAMP,
                attendance_auto_absent              BOOLEAN DEFAULT 0,
                flag_new                            BOOLEAN DEFAULT 0,
                flag_makeup                         BOOLEAN DEFAULT 0,
                flag_policy                         BOOLEAN DEFAULT 0,
                flag_owes                           BOOLEAN DEFAULT 0,
                flag_trial                          BOOLEAN DEFAULT 0,
                is_addon                            BOOLEAN DEFAULT 0,
                zone_overridden                     BOOLEAN DEFAULT 0,
                zone_override_at                    TIMESTAMP,
                zone_override_by                    TEXT,
                balance_amount                      REAL,
                location_id                         INTEGER,
                content_hash                        TEXT,
                created_at                          TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at                          TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (location_id)           REFERENCES locations(location_id),
                PRIMARY KEY (date, start_time, swimmer_name)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS app_state (
                key                                 TEXT PRIMARY KEY,
                value                               TEXT,
                row_updated                         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Append-only report history; superseded uploads are archived, never overwritten
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS manager_report_data (
                report_id                           INTEGER PRIMARY KEY AUTOINCREMENT,
                location_id                         INTEGER NOT NULL,
                report_type                         TEXT NOT NULL,
                report_date                         TEXT,
                data_json                           TEXT NOT NULL,
                warnings_json                       TEXT,
                uploaded_at                         TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                archived                            BOOLEAN DEFAULT 0,
                FOREIGN KEY (location_id)           REFERENCES locations(location_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS log_details (
                id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id                  TEXT NOT NULL,
                run_date                DATETIME DEFAULT CURRENT_TIMESTAMP,
                object_type             TEXT NOT NULL,      -- Same as parent run
                process_type            TEXT NOT NULL,      -- Same as parent run
                function_name           TEXT NOT NULL,
                filename                TEXT NOT NULL,
                context_json            TEXT,
                status                  TEXT NOT NULL,      -- 'error', 'warning', 'skipped', 'success'
                message                 TEXT NOT NULL,
                msg_id                  TEXT
            );
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS log_runs (
                id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id                  TEXT NOT NULL,
                run_date                DATETIME DEFAULT CURRENT_TIMESTAMP,
                object_type             TEXT NOT NULL,          -- e.g., 'roster', 'manager_report'
                process_type            TEXT NOT NULL,          -- e.g., 'parse', 'resolve', 'update'
                records_processed       INTEGER DEFAULT 0,
                records_success         INTEGER DEFAULT 0,
                records_failed          INTEGER DEFAULT 0,
                records_skipped         INTEGER DEFAULT 0,
                records_warnings        INTEGER DEFAULT 0,
                runtime_seconds         REAL,
                remarks                 TEXT
            );
        ''')

    except sqlite3.Error as e:
        print(f"❌ Error creating tables: {e}")
        logging.error(f"Error creating tables: {e}")
        raise


def create_and_populate_static_tables(cursor, logger):

    logger.info("Creating static tables if needed...")

    try:

        ############################################
        ### LOOKUP TABLES
        ############################################

        # Locations (sites). Never deleted, only deactivated.
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS locations (
                location_id         INTEGER PRIMARY KEY AUTOINCREMENT,
                code                TEXT NOT NULL UNIQUE,
                name                TEXT NOT NULL,
                brand               TEXT,
                active              BOOLEAN DEFAULT 1,
                has_announcements   BOOLEAN DEFAULT 0,
                row_created         TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
        ''')

        cursor.executemany('''
            INSERT OR IGNORE INTO locations (code, name, brand, has_announcements)
            VALUES (?, ?, ?, ?)
        ''', DEFAULT_LOCATIONS)

        cursor.connection.commit()

    except sqlite3.Error as e:
        logger.failed({}, f"Error creating static tables: {e}", to_console=True)
        raise


def create_indexes(cursor):

    indexes = [
        # -------------------------------
        # Roster
        # -------------------------------
        # Replacement scope: non add-on rows for a location from a date onwards
        "CREATE INDEX IF NOT EXISTS idx_roster_location_date ON roster(location_id, date)",
        # Class lookups (bulk attendance, zone views)
        "CREATE INDEX IF NOT EXISTS idx_roster_date_time ON roster(date, start_time)",

        # -------------------------------
        # Manager reports
        # -------------------------------
        # Latest report per type for a location
        "CREATE INDEX IF NOT EXISTS idx_manager_report_location_type ON manager_report_data(location_id, report_type, archived, uploaded_at DESC)",

        # -------------------------------
        # Logs
        # -------------------------------
        "CREATE INDEX IF NOT EXISTS idx_log_details_run ON log_details(run_id)",
    ]

    try:
        for stmt in indexes:
            cursor.execute(stmt)

    except sqlite3.Error as e:
        print(f"Error creating indexes: {e}")
        logging.error(f"Error creating indexes: {e}")


def init_db(cursor, logger):
    """Create every table, seed lookup data and add indexes. Safe to run repeatedly."""
    create_and_populate_static_tables(cursor, logger)
    create_tables(cursor)
    create_indexes(cursor)
    cursor.connection.commit()
