# src/utils.py
# Contains reusable helpers: logging setup, date parsing, content hashing, the operation logger and log exports.

from dataclasses import fields
import hashlib
import inspect
import json
import time
import pandas as pd
from collections import defaultdict
import logging
import os
import re
from datetime import datetime, date
from config import LOG_FILE, LOG_LEVEL
from typing import Any, Dict, Iterable, Optional, Union
import sqlite3
import uuid
from db import get_conn


def setup_logging(log_file: Optional[str] = None, log_level: Optional[str] = None):

    # DEBUG: Detailed logs for development and debugging.
    # INFO: High-level events (like import start, snapshot written).
    # WARNING: Non-critical issues that should be looked at.
    # ERROR: Serious issues that affect functionality but the app can continue.
    # CRITICAL: Fatal errors, the app cannot continue.

    log_file = log_file or LOG_FILE
    log_level = log_level or LOG_LEVEL

    # Create log directory if not exists (derive from LOG_FILE)
    log_dir = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(log_dir, exist_ok=True)

    # Clear any existing handlers to avoid duplicates
    logging.getLogger().handlers = []

    # File handler with UTF-8 encoding
    file_handler = logging.FileHandler(log_file, encoding='utf-8', mode='a')  # 'a' for append
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter('[%(asctime)s] %(levelname)-8s %(filename)-32.32s%(lineno)-5d%(funcName)-35.35s: %(message)-100s', datefmt='%b %d %a] [%H:%M:%S')
    file_handler.setFormatter(file_formatter)

    logging.getLogger().addHandler(file_handler)
    logging.getLogger().setLevel(log_level)

    logging.info(f"Logging configured to {log_file} at level {log_level}")
    logging.info("-------------------------------------------------------------------")
    print(f"Logging configured to {log_file} at level {log_level}")
    print("-------------------------------------------------------------------")

def parse_date(date_str, context=None, return_iso=False):
    """
    Parse a date string in 'YYYY-MM-DD', 'YYYY.MM.DD', 'YYYY_MM_DD', 'YYYYMMDD' or 'MM/DD/YYYY' into a datetime.date object.
    If input is already a datetime.date, returns it unchanged (or as ISO string if requested).
    Optionally returns the date in ISO format ('YYYY-MM-DD') string.
    """
    if isinstance(date_str, datetime):
        date_str = date_str.date()
    if isinstance(date_str, date):
        return date_str.isoformat() if return_iso else date_str

    date_str = date_str.strip() if date_str else "None"
    for fmt in ("%Y-%m-%d", "%Y.%m.%d", "%Y_%m_%d", "%Y%m%d", "%m/%d/%Y"):
        try:
            parsed = datetime.strptime(date_str, fmt).date()
            return parsed.isoformat() if return_iso else parsed
        except ValueError:
            continue
    logging.debug(f"Invalid date format: {date_str} (context: {context or 'unknown calling function'})")
    return None

def collapse_whitespace(text: Optional[str]) -> str:
    """ 'Doe ,   John ' -> 'Doe , John' """
    return re.sub(r"\s+", " ", text or "").strip()

def compute_content_hash(obj: Any, exclude_fields: Iterable[str] = None) -> str:
    """
    Compute a stable SHA256 hash for a dataclass-like object.
    Dynamically includes all fields except those in exclude_fields.
    - strings are whitespace-collapsed (case is kept, a renamed program is a real change)
    - dates use ISO format
    - booleans are cast to int (0/1)
    - None → empty string
    """
    if exclude_fields is None:
        exclude_fields = []

    parts = []
    for field in fields(obj):
        if field.name in exclude_fields:
            continue
        value = getattr(obj, field.name)
        if value is None:
            parts.append("")
        elif isinstance(value, str):
            parts.append(collapse_whitespace(value))
        elif isinstance(value, date):
            parts.append(value.isoformat())
        elif isinstance(value, bool):
            parts.append(str(int(value)))
        else:
            parts.append(str(value))  # int, float, fallback

    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


class OperationLogger:
    """
    A general logging class for tracking success, failed, skipped, and warnings in operations like parsers and imports.

    Usage:
    - Initialize at the start of a step:
      logger = OperationLogger(verbosity=1, print_output=True, log_to_db=False, cursor=None)
    - Add messages during processing:
      logger.success({'swimmer_name': 'John Doe'}, 'Roster row inserted')
      logger.failed({'location_id': 1}, 'No class sections found')
      logger.skipped({'swimmer_name': 'Jane Doe'}, 'Duplicate key in same import')
      logger.warning({'section': 3}, 'Section has no schedule time')
    - Call summarize() at the end to print/log the summary.

    Parameters:
    - verbosity (int): Controls detail level:
        0: Summary totals only.
        1: Totals + reason breakdowns (default).
        2: Level 1 + individual details for failed/skipped/warnings.
        3: Level 2 + detailed output for all items.
    - print_output (bool): If True, prints to console (default: True).
    - log_to_db (bool): If True, logs details to DB (requires cursor).
    - cursor (sqlite3.Cursor): DB cursor for logging to table (required if log_to_db=True).
    - run_id (str): Groups the logs of one pipeline run; a fresh uuid when omitted.
    """
    def __init__(
        self,
        verbosity:      int = 1,
        print_output:   bool = True,
        log_to_db:      bool = False,
        cursor:         Optional[sqlite3.Cursor] = None,
        object_type:    Optional[str] = None,   # e.g., 'roster', 'manager_report'
        run_type:       Optional[str] = None,   # e.g., 'parse', 'resolve', 'update'
        run_id:         Optional[str] = None
    ):
        self.run_id             = run_id or str(uuid.uuid4())
        self.verbosity          = verbosity
        self.print_output       = print_output
        self.log_to_db          = log_to_db
        self.cursor             = cursor if log_to_db else None
        self.results            = defaultdict(lambda: {"success": 0, "failed": 0, "skipped": 0})
        self.reasons            = {"success": defaultdict(int), "failed": defaultdict(int), "skipped": defaultdict(int), "warning": defaultdict(int)}
        self.individual_logs    = []
        self.object_type        = object_type
        self.run_type           = run_type
        self.processed          = 0
        self.start_time         = time.time()

        if log_to_db and not cursor:
            raise ValueError("Cursor required if log_to_db is True")

    def inc_processed(self, n: int = 1):
        """Increment number of processed records (used for overhead tracking)."""
        self.processed += n

    def _format_msg(self, context: dict, reason: str) -> str:
        return f"({', '.join(f'{k}: {v}' for k,v in context.items())}): {reason}"

    def _enrich_context(self, context: dict) -> dict:
        """
        Make context JSON-safe and add the location code when a location_id is present.
        Skips the lookup if no cursor or no matching row.
        """
        enriched = context.copy()

        for key, value in enriched.items():
            if isinstance(value, (date, datetime)):
                enriched[key] = value.isoformat()

        if enriched.get('location_id') is not None and self.cursor:
            try:
                self.cursor.execute(
                    "SELECT code FROM locations WHERE location_id = ?",
                    (enriched['location_id'],)
                )
                row = self.cursor.fetchone()
                if row:
                    enriched['location_code'] = row[0]
            except sqlite3.Error:
                pass

        return enriched

    def _parse_context_str(self, context_str: str) -> Dict[str, Any]:
        """
        Parse a concatenated string to dict (e.g., "(location_id: 1, date: 2026-10-18)" -> {'location_id': 1, 'date': '2026-10-18'}).
        Falls back to {'key': context_str} if nothing parses.
        """
        cleaned = context_str.strip("() ")
        parsed = {}
        for pair in cleaned.split(", "):
            if ":" in pair:
                key, value = pair.split(":", 1)
                value = value.strip()
                if value == 'None':
                    value = None
                elif value.isdigit():
                    value = int(value)
                parsed[key.strip()] = value
        return parsed or {'key': context_str}

    def _write_detail(self, status: str, context_json: str, reason: str, msg_id: Optional[str], function_name: str, filename: str):
        if not self.cursor:
            return
        try:
            self.cursor.execute('''
                INSERT INTO log_details (
                    run_id, run_date, object_type, process_type,
                    function_name, filename, context_json, status, message, msg_id
                ) VALUES (?, CURRENT_TIMESTAMP, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                self.run_id,
                self.object_type or "unknown",
                self.run_type or "unknown",
                function_name,
                filename,
                context_json,
                status,
                reason,
                msg_id
            ))
        except sqlite3.Error as e:
            logging.error(f"Error logging {status} to DB: {e}")

    def _record(
        self,
        status: str,
        context: Union[dict, str],
        reason: str,
        msg_id: Optional[str],
        to_console: Optional[bool],
        emoji: str,
        show_key: bool,
        write_db: bool,
        log_level: Optional[int],
    ):
        frame = inspect.currentframe().f_back.f_back
        function_name = frame.f_code.co_name
        filename = os.path.basename(inspect.getfile(frame))

        enriched_context = self._enrich_context(context)
        context_json = json.dumps(enriched_context, default=str)

        if show_key and enriched_context:
            msg = self._format_msg(enriched_context, reason)
        else:
            msg = reason

        if write_db:
            self._write_detail(status, context_json, reason, msg_id, function_name, filename)

        if log_level is not None:
            logging.log(log_level, msg, stacklevel=3)

        # Console printing controlled solely by to_console (print if True, ignore if None or False)
        if to_console:
            print(f"{emoji} {msg}")

        self.individual_logs.append({
            'status': status,
            'context': enriched_context,
            'message': reason,
            'msg_id': msg_id,
            'function_name': function_name,
            'filename': filename
        })

    def info(
        self,
        item_key_or_message: str,
        reason: Optional[str] = None,
        *,
        show_key: bool = True,
        to_console: Optional[bool] = True,
        emoji: str = "ℹ️ ",
    ):
        """
        Usage:
        logger.info("roster", "Importing roll sheet...", to_console=True)    # with key
        logger.info("Importing roll sheet...", to_console=True)              # message-only
        logger.info("roster", "Starting...", show_key=False)                 # hide key in output

        Does NOT affect counters/summaries.
        """
        if reason is None:
            log_msg = item_key_or_message
        else:
            log_msg = f"{item_key_or_message}: {reason}" if (item_key_or_message and show_key) else reason

        logging.info(log_msg, stacklevel=2)

        should_print = self.print_output if to_console is None else to_console
        if should_print:
            print(f"{emoji} {log_msg}")

    def success(
        self,
        context: Union[dict, str],
        reason: Optional[str] = "Success",
        msg_id: Optional[str] = None,
        *,  # keyword-only after this
        to_console: Optional[bool] = None,
        emoji: str = "✅ ",
        show_key: bool = True,
    ):
        if isinstance(context, str):
            context = self._parse_context_str(context)
        self.results[str(context)]["success"] += 1
        self.reasons["success"][reason] += 1

        # DB and file logging controlled by verbosity
        self._record(
            "success", context, reason, msg_id, to_console, emoji, show_key,
            write_db    = self.verbosity >= 3,
            log_level   = logging.INFO if self.verbosity >= 3 else None,
        )

    def failed(
        self,
        context: Union[dict, str],
        reason: Optional[str] = "Failed",
        msg_id: Optional[str] = None,
        *,  # keyword-only after this
        to_console: Optional[bool] = None,
        emoji: str = "❌ ",
        show_key: bool = True,
    ):
        if isinstance(context, str):
            context = {'key': context}
        self.results[str(context)]["failed"] += 1
        self.reasons["failed"][reason] += 1

        # Always written to log_details
        self._record(
            "error", context, reason, msg_id, to_console, emoji, show_key,
            write_db    = True,
            log_level   = logging.ERROR if self.verbosity >= 1 else None,
        )

    def skipped(
        self,
        context: Union[dict, str],
        reason: Optional[str] = "Skipped",
        msg_id: Optional[str] = None,
        *,  # keyword-only after this
        to_console: Optional[bool] = None,
        emoji: str = "⏭️  ",
        show_key: bool = True,
    ):
        if isinstance(context, str):
            context = self._parse_context_str(context)
        self.results[str(context)]["skipped"] += 1
        self.reasons["skipped"][reason] += 1

        self._record(
            "skipped", context, reason, msg_id, to_console, emoji, show_key,
            write_db    = self.verbosity >= 3,
            log_level   = logging.WARNING if self.verbosity >= 3 else None,
        )

    def warning(
        self,
        context: Union[dict, str],
        reason: str,
        msg_id: Optional[str] = None,
        *,
        to_console: Optional[bool] = None,
        emoji: str = "⚠️  ",
        show_key: bool = True,
    ):
        if isinstance(context, str):
            context = self._parse_context_str(context)
        self.reasons["warning"][reason] += 1

        # Always written to log_details
        self._record(
            "warning", context, reason, msg_id, to_console, emoji, show_key,
            write_db    = True,
            log_level   = logging.WARNING if self.verbosity >= 2 else None,
        )

    def totals(self) -> Dict[str, int]:
        return {
            "success":  sum(d["success"] for d in self.results.values()),
            "failed":   sum(d["failed"] for d in self.results.values()),
            "skipped":  sum(d["skipped"] for d in self.results.values()),
            "warning":  sum(self.reasons["warning"].values()),
        }

    def summarize(self):
        """Generate and print/log the full summary, always including totals, one line at a time."""
        totals = self.totals()

        lines = []
        lines.append("📊 Operation Summary:")
        for status, emoji, label in [
            ("success", "✅", "Success"),
            ("failed",  "❌", "Failed"),
            ("skipped", "⏭️ ", "Skipped"),
            ("warning", "⚠️ ", "Warnings"),
        ]:
            lines.append(f"   {emoji} {label}: {totals[status]}")
            if self.verbosity >= 1:
                for reason, count in self.reasons[status].items():
                    lines.append(f"      • {reason}: {count}")

        runtime_seconds = time.time() - self.start_time
        lines.append("")
        lines.append(f"   ⏱️  Runtime: {runtime_seconds:.1f}s")
        lines.append(f"   📦 Records processed: {self.processed}")
        if runtime_seconds > 0:
            throughput = self.processed / runtime_seconds
            lines.append(f"   ⚡ Throughput: {throughput:.1f} records/sec")

        logging.info("")
        for line in lines:
            logging.info(line, stacklevel=2)
        if self.print_output:
            print("")
            for line in lines:
                print(line)
            print("")

    def commit_run_summary(self, cursor: sqlite3.Cursor, remarks: Optional[str] = None):
        runtime_seconds = time.time() - self.start_time
        totals = self.totals()

        cursor.execute("""
            INSERT INTO log_runs (
                run_id, object_type, process_type, records_processed,
                records_success, records_failed, records_skipped,
                records_warnings, runtime_seconds, remarks
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            self.run_id,
            self.object_type or "unknown",
            self.run_type or "unknown",
            self.processed, totals["success"], totals["failed"],
            totals["skipped"], totals["warning"], runtime_seconds, remarks
        ))


def export_logs_to_excel(db_name: Optional[str] = None, path: str = "logs.xlsx"):
    """
    Export the latest run's record-level logs (log_details) to logs.xlsx.
    Always rewrites the file, so it only contains the most recent run.
    """
    conn, cursor = get_conn(db_name)
    df = pd.read_sql_query(
        "SELECT * FROM log_details WHERE run_id = (SELECT run_id FROM log_details ORDER BY id DESC LIMIT 1)",
        conn
    )
    conn.close()

    if df.empty:
        print("ℹ️  No logs to export.")
        logging.info("No logs to export.")
        return None

    # Parse and flatten context_json into columns
    df['context'] = df['context_json'].apply(lambda x: json.loads(x) if x else {})
    context_df = pd.json_normalize(df['context'])
    df = pd.concat([df.drop(['context', 'context_json'], axis=1), context_df], axis=1)

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name='All_Logs', index=False)

        # By status (split into tabs)
        for status in ['error', 'warning', 'skipped']:
            subset = df[df['status'] == status]
            if not subset.empty:
                subset.to_excel(writer, sheet_name=status.capitalize(), index=False)

    print(f"ℹ️  Exported latest run logs to {path}")
    logging.info(f"Exported latest run logs to {path}")
    return path


def export_runs_to_excel(db_name: Optional[str] = None, path: str = "run_log.xlsx"):
    """
    Export the run-level summaries (log_runs) of the latest run to run_log.xlsx.
    Always rewrites the file.
    """
    conn, cursor = get_conn(db_name)
    df = pd.read_sql_query(
        "SELECT * FROM log_runs WHERE run_id = (SELECT run_id FROM log_runs ORDER BY id DESC LIMIT 1)",
        conn
    )
    conn.close()

    if df.empty:
        print("ℹ️  No run summaries to export.")
        logging.info("No run summaries to export.")
        return None

    with pd.ExcelWriter(path, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name='Run_Summary', index=False)

    print(f"ℹ️  Exported latest run summary to {path}")
    logging.info(f"Exported latest run summary to {path}")
    return path


def clear_debug_tables(cursor: sqlite3.Cursor, clear_logs: bool = True, clear_runs: bool = False):
    """
    Clear debug tables based on flags.

    - clear_logs=True  → clears log_details table (record-level logs).
    - clear_runs=True  → clears log_runs table (run-level summaries).
    """
    try:
        if clear_logs:
            cursor.execute("DELETE FROM log_details")
            logging.info("log_details table cleared.")

        if clear_runs:
            cursor.execute("DELETE FROM log_runs")
            logging.info("log_runs table cleared.")

        cursor.connection.commit()
    except sqlite3.Error as e:
        logging.error(f"Error clearing tables: {e}")
        print(f"❌ Error clearing tables: {e}")
