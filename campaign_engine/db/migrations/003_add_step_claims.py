"""
Migration 003: Add claim bookkeeping to campaign_scheduled_steps.

A worker moves a step to 'executing' with a conditional update before dispatch;
claimed_by/claimed_at identify the owner so stale claims can be released, and
attempt_count feeds the retry policies.
"""


def _columns(conn, table):
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def up(conn):
    existing = _columns(conn, "campaign_scheduled_steps")
    additions = [
        ("attempt_count", "INTEGER NOT NULL DEFAULT 0"),
        ("claimed_by", "TEXT"),
        ("claimed_at", "TEXT"),
    ]
    for name, ddl in additions:
        if name not in existing:
            conn.execute(f"ALTER TABLE campaign_scheduled_steps ADD COLUMN {name} {ddl}")
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_steps_claims
        ON campaign_scheduled_steps(status, claimed_at)
    """)
