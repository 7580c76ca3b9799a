"""
Execution Error Handler - Captures and logs non-fatal, per-step errors.

When one contact's step blows up, the orchestrator records what went wrong here
and carries on with the other contacts. Errors are stored in the
execution_errors table (migration 002) and exposed over /api/errors.

Usage:
    from campaign_engine.engine.error_handler import log_execution_error, safe_execute

    try:
        orchestrator.process_step(step)
    except Exception as e:
        log_execution_error(db_path, phase="process_step", error=e, step_id=step["id"])

    result = safe_execute(
        db_path, risky_operation, args=(arg1,),
        phase="advance", campaign_id=cid, fallback=None,
    )
"""

import json
import logging
import traceback
from typing import Any, Callable

from campaign_engine.db.connection import get_db_conn, to_iso, utcnow

logger = logging.getLogger("campaign_engine.error_handler")


def log_execution_error(
    db_path: str,
    phase: str,
    error: Exception = None,
    error_message: str = None,
    campaign_id: str = None,
    contact_id: str = None,
    step_id: str = None,
    context: dict = None,
    severity: str = "warning",
):
    """Log a non-fatal execution error to the database and logger.

    Args:
        db_path: Database to record into.
        phase: Where the error occurred (process_step, advance, record_run, worker, ...)
        error: The exception object (optional if error_message provided)
        error_message: Human-readable error description
        campaign_id: Associated campaign ID
        contact_id: Associated contact ID
        step_id: Associated scheduled step ID
        context: Additional context dict
        severity: "warning", "error", or "critical"

    Returns:
        The new execution_errors row id, or None if the insert failed.
    """
    msg = error_message or (str(error) if error else "Unknown error")
    error_type = type(error).__name__ if error else "UnknownError"

    log_extra = {
        "phase": phase,
        "campaign_id": campaign_id or "",
        "contact_id": contact_id or "",
        "step_id": step_id or "",
    }

    if severity == "critical":
        logger.critical("Execution error in %s: %s", phase, msg, extra=log_extra)
    elif severity == "error":
        logger.error("Execution error in %s: %s", phase, msg, extra=log_extra)
    else:
        logger.warning("Execution error in %s: %s", phase, msg, extra=log_extra)

    try:
        with get_db_conn(db_path) as conn:
            cur = conn.execute("""
                INSERT INTO execution_errors
                    (campaign_id, contact_id, step_id, phase, error_type,
                     error_message, context, severity, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                campaign_id, contact_id, step_id, phase, error_type, msg,
                json.dumps(context or {}, default=str), severity, to_iso(utcnow()),
            ))
            conn.commit()
        return cur.lastrowid
    except Exception as db_err:
        # If we can't even log the error to the DB, the logger line above is all we get
        logger.error("Failed to log execution error to DB: %s", db_err)
        return None


def safe_execute(
    db_path: str,
    fn: Callable,
    args: tuple = (),
    kwargs: dict = None,
    phase: str = "unknown",
    campaign_id: str = None,
    contact_id: str = None,
    step_id: str = None,
    fallback: Any = None,
    severity: str = "warning",
) -> Any:
    """Execute a function with automatic error capture.

    If the function raises, the error is logged and the fallback value is returned.

    Returns:
        The function's return value, or fallback if it raised.
    """
    kwargs = kwargs or {}
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        log_execution_error(
            db_path,
            phase=phase,
            error=e,
            campaign_id=campaign_id,
            contact_id=contact_id,
            step_id=step_id,
            context={"function": getattr(fn, "__name__", repr(fn)),
                     "traceback": traceback.format_exc()[-500:]},
            severity=severity,
        )
        return fallback


def get_errors(db_path: str, campaign_id: str = None, severity: str = None,
               unresolved_only: bool = True, limit: int = 200) -> list:
    """Get execution errors, optionally filtered. Newest first."""
    query = "SELECT * FROM execution_errors WHERE 1=1"
    params = []

    if campaign_id:
        query += " AND campaign_id=?"
        params.append(campaign_id)
    if severity:
        query += " AND severity=?"
        params.append(severity)
    if unresolved_only:
        query += " AND resolved=0"

    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    with get_db_conn(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
    return [dict(r) for r in rows]


def resolve_error(db_path: str, error_id: int) -> bool:
    """Mark an execution error as resolved. False if no such error."""
    with get_db_conn(db_path) as conn:
        cur = conn.execute("UPDATE execution_errors SET resolved=1 WHERE id=?", (error_id,))
        conn.commit()
    return cur.rowcount == 1
