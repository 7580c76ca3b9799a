"""
Migration 002: Add execution_errors table for tracking non-fatal errors.

When one contact's step blows up mid-run, the orchestrator records it here and
moves on to the next step instead of aborting the whole campaign pass.
"""


def up(conn):
    conn.execute("""
        CREATE TABLE IF NOT EXISTS execution_errors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            campaign_id TEXT,
            contact_id TEXT,
            step_id TEXT,
            phase TEXT NOT NULL,
            error_type TEXT,
            error_message TEXT,
            context TEXT DEFAULT '{}',
            severity TEXT DEFAULT 'warning',
            resolved INTEGER DEFAULT 0,
            created_at TEXT DEFAULT (datetime('now'))
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_execution_errors_campaign
        ON execution_errors(campaign_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_execution_errors_severity
        ON execution_errors(severity, resolved)
    """)
