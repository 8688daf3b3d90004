"""Environment variables, naming conventions, and timeouts for the table admin tools."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the shared admin location (NOT project root)
ENV_FILE = Path(os.getenv("TABLE_ADMIN_ENV_FILE", "/etc/table_admin/.env"))
load_dotenv(ENV_FILE)

# --- Default SQL Server Connection Vars ---
# Job files may override host/database per target; these fill the gaps.
SQL_SERVER_HOST = os.getenv("SQL_SERVER_HOST", "")
SQL_SERVER_PORT = int(os.getenv("SQL_SERVER_PORT", "1433"))
SQL_SERVER_USER = os.getenv("SQL_SERVER_USER", "")
SQL_SERVER_PASSWORD = os.getenv("SQL_SERVER_PASSWORD", "")

# Empty user means Windows/Kerberos integrated auth (Trusted_Connection=yes).
SQL_SERVER_TRUSTED = os.getenv("SQL_SERVER_TRUSTED", "false").lower() == "true"

# --- ODBC Driver ---
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")

# Seconds before pyodbc gives up opening a connection.
CONNECT_TIMEOUT = int(os.getenv("CONNECT_TIMEOUT", "30"))

# Per-statement query timeout (seconds) for the rotation transaction.
# 0 = no timeout. A timeout aborts the statement and the whole rotation
# is rolled back.
ROTATION_QUERY_TIMEOUT = int(os.getenv("ROTATION_QUERY_TIMEOUT", "3600"))

# --- Rotation naming ---
# <table>_TEMP holds the retained rows until promotion, <table>_OLD keeps
# the full pre-rotation snapshot. <table>_ROTATING only exists inside the
# rotation transaction while the original name is being freed.
SHADOW_SUFFIX = os.getenv("ROTATION_SHADOW_SUFFIX", "_TEMP")
BACKUP_SUFFIX = os.getenv("ROTATION_BACKUP_SUFFIX", "_OLD")
TRANSITIONAL_SUFFIX = os.getenv("ROTATION_TRANSITIONAL_SUFFIX", "_ROTATING")

# Verification slack: MIN(date column) of the retained table may sit this
# many days either side of the cutoff before a warning is logged.
ROTATION_VERIFY_TOLERANCE_DAYS = int(os.getenv("ROTATION_VERIFY_TOLERANCE_DAYS", "2"))

# sp_getapplock wait (ms) before a concurrent rotation of the same table
# is reported as locked. 0 = fail immediately.
ROTATION_LOCK_TIMEOUT_MS = int(os.getenv("ROTATION_LOCK_TIMEOUT_MS", "0"))

# --- Table copy ---
# Rows per fast_executemany round trip when copying across servers.
COPY_BATCH_SIZE = int(os.getenv("COPY_BATCH_SIZE", "5000"))

# --- Compare ---
REPORT_OUTPUT_DIR = Path(os.getenv("REPORT_OUTPUT_DIR", "/var/lib/table_admin/reports"))

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Database holding ops.TableAdminLog / ops.TableAdminEventLog. Empty
# disables the SQL Server log handler and event tracking.
LOG_DATABASE = os.getenv("LOG_DATABASE", "")
