# config.py

LOG_FILE                                = "../data/logs/log.log"
LOG_LEVEL                               = "INFO"    # Options: DEBUG, INFO, WARNING, ERROR, CRITICAL
DB_NAME                                 = "../data/roll_sheets.db"

SCHEDULE_DIR                            = "../data/schedules"       # Scheduled roll sheet PDFs, one sub-folder per location code
EXPORT_DIR                              = "../data/exports"         # Roster snapshots, one sub-folder per location code
DOWNLOAD_DIR                            = "../data/downloads"       # Roll sheets fetched by URL land here

# PDF roll sheets
PDF_TEXT_BACKEND                        = "pdftotext"   # "pdftotext" (poppler, -layout) or "pdfplumber"
PDFTOTEXT_BIN                           = "pdftotext"   # Binary name or absolute path
PDF_TEXT_TIMEOUT_SECONDS                = 60            # Hard limit for one text extraction
PDF_GROUP_LOOKBACK_LINES                = 16            # How far back to look for a "GROUP: <level> on ..." header

# HTML roll sheets
HTML_DATE_PRECEDENCE                    = "filename"    # "filename" or "content", decides which derived date wins when no explicit date is given

# Manager reports
MANAGER_REPORT_TYPES                    = ("retention", "aged_accounts", "drop_list", "balance_list", "billing")
ARCHIVE_ON_UPLOAD_REPORT_TYPES          = ("aged_accounts",)    # A new upload archives earlier reports of the same type for the location
RETENTION_NAME_MAX_LENGTH               = 60                    # Longest text node still considered an instructor name

# Fetching roll sheets by URL
FETCH_TIMEOUT_SECONDS                   = 20
FETCH_RETRIES                           = 3

# Seeded locations: (code, name, brand, has_announcements)
DEFAULT_LOCATIONS                       = [
    ("SLW", "SwimLabs Westchester",     "swimlabs",     1),
    ("SLX", "SwimLabs Woodlands",       "swimlabs",     0),
    ("SSR", "SafeSplash Riverdale",     "safesplash",   0),
    ("SSM", "SafeSplash Santa Monica",  "safesplash",   0),
    ("SST", "SafeSplash Torrance",      "safesplash",   0),
    ("SSS", "SafeSplash Summerlin",     "safesplash",   0),
]
