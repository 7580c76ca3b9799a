"""
Centralized Configuration - Single source of truth for all engine settings.

All environment variables are read here, validated, and exposed as module-level
constants. Other modules import from here instead of reading os.environ directly.

Usage:
    from campaign_engine.config import DB_PATH, POLL_INTERVAL_SECONDS, LOG_LEVEL
"""

import os
import sys

# ─── PATHS ───────────────────────────────────────────────────

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOGS_DIR = os.path.join(PROJECT_ROOT, "logs")

# ─── DATABASE ────────────────────────────────────────────────

DB_PATH = os.environ.get("ENGINE_DB_PATH", os.path.join(PROJECT_ROOT, "campaigns.db"))
DB_JOURNAL_MODE = os.environ.get("ENGINE_JOURNAL_MODE", "WAL")

# ─── WORKER ──────────────────────────────────────────────────

POLL_INTERVAL_SECONDS = float(os.environ.get("ENGINE_POLL_INTERVAL_SECONDS", "60"))
BATCH_SIZE = int(os.environ.get("ENGINE_BATCH_SIZE", "100"))
CLAIM_TIMEOUT_SECONDS = int(os.environ.get("ENGINE_CLAIM_TIMEOUT_SECONDS", "600"))
ENABLE_WORKER = os.environ.get("ENABLE_WORKER", "false").lower() == "true"

# ─── AUTONOMY ────────────────────────────────────────────────

DEFAULT_AUTONOMY_LEVEL = os.environ.get("ENGINE_DEFAULT_AUTONOMY", "semi_autonomous")
DEFAULT_CONFIDENCE_THRESHOLD = int(os.environ.get("ENGINE_DEFAULT_THRESHOLD", "80"))
APPROVAL_EXPIRY_DAYS = int(os.environ.get("ENGINE_APPROVAL_EXPIRY_DAYS", "7"))

# ─── SAFETY ──────────────────────────────────────────────────

RATE_LIMIT_DEFER_MINUTES = int(os.environ.get("ENGINE_RATE_LIMIT_DEFER_MINUTES", "60"))
WORKING_HOURS_ONLY = os.environ.get("ENGINE_WORKING_HOURS_ONLY", "false").lower() == "true"
WORKING_HOURS_START = int(os.environ.get("ENGINE_WORKING_HOURS_START", "9"))
WORKING_HOURS_END = int(os.environ.get("ENGINE_WORKING_HOURS_END", "18"))
SENSITIVE_KEYWORDS = [
    k.strip() for k in
    os.environ.get("ENGINE_SENSITIVE_KEYWORDS", "pricing,contract,NDA,budget,legal").split(",")
    if k.strip()
]

# ─── RETRY ───────────────────────────────────────────────────

RETRY_POLICY = os.environ.get("ENGINE_RETRY_POLICY", "none").lower()  # none | backoff | transient
RETRY_MAX_ATTEMPTS = int(os.environ.get("ENGINE_RETRY_MAX_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS = int(os.environ.get("ENGINE_RETRY_BACKOFF_SECONDS", "900"))

# ─── CHANNELS ────────────────────────────────────────────────

CHANNEL_GATEWAY_URL = os.environ.get("ENGINE_CHANNEL_GATEWAY_URL", "")  # empty = no HTTP sender
CHANNEL_TIMEOUT_SECONDS = int(os.environ.get("ENGINE_CHANNEL_TIMEOUT_SECONDS", "30"))

# ─── API ─────────────────────────────────────────────────────

API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("API_PORT", "8000"))

# ─── LOGGING ─────────────────────────────────────────────────

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "text" or "json"
LOG_FILE = os.environ.get("LOG_FILE", "")  # empty = stdout only

# ─── VALIDATION ──────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_LOG_FORMATS = {"text", "json"}
_VALID_JOURNAL_MODES = {"WAL", "DELETE", "MEMORY", "OFF"}
_VALID_AUTONOMY_LEVELS = {"manual_approval", "semi_autonomous", "full_autonomous", "fully_autonomous"}
_VALID_RETRY_POLICIES = {"none", "backoff", "transient"}

_errors = []

if LOG_LEVEL not in _VALID_LOG_LEVELS:
    _errors.append(f"LOG_LEVEL must be one of {_VALID_LOG_LEVELS}, got '{LOG_LEVEL}'")

if LOG_FORMAT not in _VALID_LOG_FORMATS:
    _errors.append(f"LOG_FORMAT must be one of {_VALID_LOG_FORMATS}, got '{LOG_FORMAT}'")

if DB_JOURNAL_MODE not in _VALID_JOURNAL_MODES:
    _errors.append(f"ENGINE_JOURNAL_MODE must be one of {_VALID_JOURNAL_MODES}, got '{DB_JOURNAL_MODE}'")

if DEFAULT_AUTONOMY_LEVEL not in _VALID_AUTONOMY_LEVELS:
    _errors.append(f"ENGINE_DEFAULT_AUTONOMY must be one of {_VALID_AUTONOMY_LEVELS}, got '{DEFAULT_AUTONOMY_LEVEL}'")

if not 0 <= DEFAULT_CONFIDENCE_THRESHOLD <= 100:
    _errors.append(f"ENGINE_DEFAULT_THRESHOLD must be between 0 and 100, got {DEFAULT_CONFIDENCE_THRESHOLD}")

if POLL_INTERVAL_SECONDS <= 0:
    _errors.append(f"ENGINE_POLL_INTERVAL_SECONDS must be positive, got {POLL_INTERVAL_SECONDS}")

if BATCH_SIZE < 1:
    _errors.append(f"ENGINE_BATCH_SIZE must be positive, got {BATCH_SIZE}")

if RETRY_POLICY not in _VALID_RETRY_POLICIES:
    _errors.append(f"ENGINE_RETRY_POLICY must be one of {_VALID_RETRY_POLICIES}, got '{RETRY_POLICY}'")

if RETRY_MAX_ATTEMPTS < 1:
    _errors.append(f"ENGINE_RETRY_MAX_ATTEMPTS must be positive, got {RETRY_MAX_ATTEMPTS}")

if not 0 <= WORKING_HOURS_START < WORKING_HOURS_END <= 24:
    _errors.append(
        f"Working hours must satisfy 0 <= start < end <= 24, got {WORKING_HOURS_START}-{WORKING_HOURS_END}"
    )

if _errors:
    for e in _errors:
        print(f"[config] ERROR: {e}", file=sys.stderr)
    # Don't crash during import - the API and the worker may not need all settings


def validate(strict: bool = False) -> list:
    """Validate all configuration settings.

    Args:
        strict: If True, raise ValueError on any errors.

    Returns:
        List of error messages (empty if all valid).
    """
    if strict and _errors:
        raise ValueError(f"Configuration errors: {'; '.join(_errors)}")
    return list(_errors)


def print_config():
    """Print current configuration (safe - no secrets)."""
    print("=" * 50)
    print("Campaign Engine Configuration")
    print("=" * 50)
    print(f"  DB_PATH:                {DB_PATH}")
    print(f"  DB_JOURNAL_MODE:        {DB_JOURNAL_MODE}")
    print(f"  POLL_INTERVAL_SECONDS:  {POLL_INTERVAL_SECONDS}")
    print(f"  BATCH_SIZE:             {BATCH_SIZE}")
    print(f"  CLAIM_TIMEOUT_SECONDS:  {CLAIM_TIMEOUT_SECONDS}")
    print(f"  DEFAULT_AUTONOMY_LEVEL: {DEFAULT_AUTONOMY_LEVEL}")
    print(f"  DEFAULT_THRESHOLD:      {DEFAULT_CONFIDENCE_THRESHOLD}")
    print(f"  RETRY_POLICY:           {RETRY_POLICY} (max {RETRY_MAX_ATTEMPTS})")
    print(f"  WORKING_HOURS_ONLY:     {WORKING_HOURS_ONLY} ({WORKING_HOURS_START}-{WORKING_HOURS_END})")
    print(f"  CHANNEL_GATEWAY_URL:    {CHANNEL_GATEWAY_URL or '(none)'}")
    print(f"  API_HOST:               {API_HOST}")
    print(f"  API_PORT:               {API_PORT}")
    print(f"  LOG_LEVEL:              {LOG_LEVEL}")
    print(f"  LOG_FORMAT:             {LOG_FORMAT}")
    print(f"  ENABLE_WORKER:          {ENABLE_WORKER}")
    print("=" * 50)
