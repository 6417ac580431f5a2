from __future__ import annotations

import os
import tempfile
from pathlib import Path


# Flat directory holding every stored upload and derived artifact.
# Default: <system temp>/uploads. Override with env var TIMESHEET_STORAGE_ROOT.
_root_raw = os.environ.get("TIMESHEET_STORAGE_ROOT")
if _root_raw and _root_raw.strip():
    STORAGE_ROOT = Path(_root_raw)
else:
    STORAGE_ROOT = Path(tempfile.gettempdir()) / "uploads"
STORAGE_ROOT = STORAGE_ROOT.resolve()

# Files older than this are removed by the periodic sweep.
RETENTION_DAYS = int(os.environ.get("TIMESHEET_RETENTION_DAYS", "7"))

# How often the server runs the age-based sweep and session expiry.
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("TIMESHEET_CLEANUP_INTERVAL_SECONDS", "86400"))

# Conversions are expensive (office rendering); bound how many run at once.
MAX_CONCURRENT_REQUESTS = int(os.environ.get("TIMESHEET_MAX_CONCURRENT_REQUESTS", "2"))
PERMIT_TIMEOUT_SECONDS = float(os.environ.get("TIMESHEET_PERMIT_TIMEOUT_SECONDS", "30"))

# Upload limits per file type.
MAX_XLSX_UPLOAD_BYTES = int(os.environ.get("TIMESHEET_MAX_XLSX_UPLOAD_BYTES", str(128 * 1024)))  # 128KB
MAX_ZIP_UPLOAD_BYTES = int(os.environ.get("TIMESHEET_MAX_ZIP_UPLOAD_BYTES", str(2 * 1024 * 1024)))  # 2MB

# Decompression limits for batch archives.
MAX_ARCHIVE_ENTRIES = int(os.environ.get("TIMESHEET_MAX_ARCHIVE_ENTRIES", "200"))
MAX_UNCOMPRESSED_BYTES = int(os.environ.get("TIMESHEET_MAX_UNCOMPRESSED_BYTES", str(50 * 1024 * 1024)))  # 50MB
MAX_COMPRESSION_RATIO = 100.0

# Anonymous sessions are identified by a cookie holding a UUID4.
SESSION_COOKIE = os.environ.get("TIMESHEET_SESSION_COOKIE", "timesheet_session")
SESSION_TTL_MINUTES = int(os.environ.get("TIMESHEET_SESSION_TTL_MINUTES", "30"))

# Optional DOCX template handed to converters.
_template_raw = os.environ.get("TIMESHEET_TEMPLATE_PATH")
TEMPLATE_PATH = Path(_template_raw).resolve() if _template_raw and _template_raw.strip() else None

SPREADSHEET_EXTS = {".xlsx", ".xlsm", ".xlsb", ".xls"}
ARCHIVE_EXTS = {".zip"}
ALLOWED_UPLOAD_EXTS = SPREADSHEET_EXTS | ARCHIVE_EXTS

# Pre-generated period templates are named timesheet-<YYYY-MM>.xlsx and never swept.
TEMPLATE_PREFIX = "timesheet-"
TEMPLATE_EXT = ".xlsx"
