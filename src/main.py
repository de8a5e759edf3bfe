# src/main.py

import argparse
import logging
import sys
import uuid

from upd_manager_reports    import upd_manager_report
from upd_roster             import fetch_roll_sheet, upd_roster_from_html, upd_roster_from_pdf
from upd_roster_admin       import clear_roster_all, clear_roster_date, clear_roster_future, restore_roster_backup

from models import app_state
from utils import (
    clear_debug_tables,
    export_logs_to_excel,
    export_runs_to_excel,
    setup_logging,
    OperationLogger,
)

from db import (
    get_conn,
    init_db,
    drop_tables,
    compact_sqlite,
)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _print_result(result: dict) -> int:
    ok = result.get("ok")
    print(f"{'✅' if ok else '❌'} {result}")
    return 0 if ok else 1


def cmd_init_db(args) -> int:
    conn, cursor = get_conn(args.db)
    logger = OperationLogger(verbosity=2, print_output=True, log_to_db=False, cursor=cursor)
    try:
        if args.reset:
            drop_tables(cursor, logger, ["roster", "manager_report_data", "app_state"])
        init_db(cursor, logger)
        if args.clear_logs:
            clear_debug_tables(cursor, clear_logs=True, clear_runs=True)
        conn.commit()
    finally:
        conn.close()
    if args.compact:
        compact_sqlite(args.db)
    return 0


def cmd_import_pdf(args) -> int:
    pdf_path = args.pdf
    if args.url:
        pdf_path = fetch_roll_sheet(args.url, args.pdf)
        if pdf_path is None:
            print("❌ Roll sheet download failed")
            return 1
    result = upd_roster_from_pdf(args.location, date=args.date, pdf_path=pdf_path, db_name=args.db, backend=args.backend)
    return _print_result(result.to_dict())


def cmd_import_html(args) -> int:
    result = upd_roster_from_html(
        _read_text(args.html),
        args.location,
        filename        = args.html,
        upload_date     = args.date,
        date_precedence = args.date_precedence,
        db_name         = args.db,
    )
    return _print_result(result.to_dict())


def cmd_upload_report(args) -> int:
    outcome = upd_manager_report(args.type, _read_text(args.html), location_id=args.location, filename=args.html, db_name=args.db)
    return _print_result(outcome)


def cmd_set_active_date(args) -> int:
    conn, cursor = get_conn(args.db)
    try:
        active = app_state.set_active_date(cursor, args.date)
        conn.commit()
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    finally:
        conn.close()
    print(f"✅ Active date set to {active}")
    return 0


def cmd_clear_roster(args) -> int:
    if args.scope == "date":
        if not args.date:
            print("❌ --date is required for a single-date clear")
            return 1
        outcome = clear_roster_date(args.location, args.date, db_name=args.db)
    elif args.scope == "future":
        outcome = clear_roster_future(args.location, db_name=args.db)
    else:
        outcome = clear_roster_all(args.location, args.start, args.end, db_name=args.db)
    return _print_result(outcome)


def cmd_restore_backup(args) -> int:
    result = restore_roster_backup(args.location, args.file, db_name=args.db)
    return _print_result(result.to_dict())


def cmd_export_logs(args) -> int:
    export_logs_to_excel(args.db, path=args.logs_path)
    export_runs_to_excel(args.db, path=args.runs_path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rollsheets", description="Roll sheet roster import and reconciliation")
    parser.add_argument("--db", default=None, help="SQLite database path (config.DB_NAME by default)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables, indexes and seed locations")
    p.add_argument("--reset", action="store_true", help="Drop roster, report and app state tables first")
    p.add_argument("--clear-logs", action="store_true")
    p.add_argument("--compact", action="store_true")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("import-pdf", help="Import a PDF roll sheet for one date")
    p.add_argument("--location", type=int, required=True)
    p.add_argument("--date", help="Roster date (YYYY-MM-DD), today by default")
    p.add_argument("--pdf", help="PDF path, the scheduled file name by default")
    p.add_argument("--url", help="Download the roll sheet first")
    p.add_argument("--backend", choices=["pdftotext", "pdfplumber"], default=None)
    p.set_defaults(func=cmd_import_pdf)

    p = sub.add_parser("import-html", help="Import an HTML roll sheet export")
    p.add_argument("html")
    p.add_argument("--location", type=int, required=True)
    p.add_argument("--date", help="Explicit upload date, wins over file name and content")
    p.add_argument("--date-precedence", choices=["filename", "content"], default="filename")
    p.set_defaults(func=cmd_import_html)

    p = sub.add_parser("upload-report", help="Store a manager report")
    p.add_argument("html")
    p.add_argument("--type", required=True, choices=["retention", "aged_accounts", "drop_list", "balance_list", "billing"])
    p.add_argument("--location", type=int)
    p.set_defaults(func=cmd_upload_report)

    p = sub.add_parser("set-active-date", help="Set the roster date views default to")
    p.add_argument("date")
    p.set_defaults(func=cmd_set_active_date)

    p = sub.add_parser("clear-roster", help="Snapshot and delete roster rows")
    p.add_argument("scope", choices=["date", "future", "all"])
    p.add_argument("--location", type=int, help="Required for date and future; all locations when omitted with 'all'")
    p.add_argument("--date")
    p.add_argument("--start")
    p.add_argument("--end")
    p.set_defaults(func=cmd_clear_roster)

    p = sub.add_parser("restore-backup", help="Restore a roster snapshot")
    p.add_argument("file", help="Snapshot file name inside the location's export folder")
    p.add_argument("--location", type=int, required=True)
    p.set_defaults(func=cmd_restore_backup)

    p = sub.add_parser("export-logs", help="Export the latest run's logs to Excel")
    p.add_argument("--logs-path", default="logs.xlsx")
    p.add_argument("--runs-path", default="run_log.xlsx")
    p.set_defaults(func=cmd_export_logs)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "clear-roster" and args.scope in ("date", "future") and args.location is None:
        print("❌ --location is required")
        return 1

    setup_logging()
    run_id = str(uuid.uuid4())
    logging.info(f"Starting {args.command} run with ID: {run_id}")

    try:
        return args.func(args)
    except Exception as e:
        logging.error(f"Error in main ({args.command}): {e}", exc_info=True)
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
