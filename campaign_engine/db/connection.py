"""
Database connection utilities.
Centralizes get_db(), the get_db_conn() context manager, gen_id() and timestamp helpers.
"""

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from campaign_engine import config

logger = logging.getLogger(__name__)

# Steps held back until their predecessor is sent are parked here
FAR_FUTURE = "9999-12-31T00:00:00.000000"


def get_db(db_path: str = None):
    """Get a database connection with row_factory for dict-like access."""
    conn = sqlite3.connect(db_path or config.DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    journal_mode = os.environ.get("ENGINE_JOURNAL_MODE", config.DB_JOURNAL_MODE)
    conn.execute(f"PRAGMA journal_mode={journal_mode}")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_db_conn(db_path: str = None):
    """Context manager for database connections. Ensures connections are always closed."""
    conn = get_db(db_path)
    try:
        yield conn
    finally:
        conn.close()


def gen_id(prefix=""):
    """Generate a prefixed UUID."""
    short = uuid.uuid4().hex[:12]
    return f"{prefix}_{short}" if prefix else short


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime with fixed precision so stored strings sort chronologically."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
