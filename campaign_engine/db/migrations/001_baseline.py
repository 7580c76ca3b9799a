"""
Migration 001: Baseline schema.

Establishes a baseline version so later migrations can build on it. The tables
themselves are created by init_db.py; this only verifies they exist.
"""


def up(conn):
    """Baseline migration - verify core tables exist."""
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    tables = {row[0] for row in cursor.fetchall()}

    required = {
        "campaigns", "contacts", "campaign_scheduled_steps",
        "sophia_approval_items", "campaign_execution_logs",
    }
    missing = required - tables

    if missing:
        raise RuntimeError(
            f"Baseline migration requires existing schema. Missing tables: {missing}. "
            f"Run 'python -m campaign_engine.db.init_db' first."
        )
