"""
Campaign Engine - Database Initialization
Creates all tables and indexes, then applies pending numbered migrations.
"""

import sqlite3

from campaign_engine import config

SCHEMA_SQL = """
-- Campaigns (workflow definition + autonomy settings)
CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    owner_id TEXT,
    name TEXT NOT NULL,
    workflow TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'draft'
        CHECK (status IN ('draft', 'active', 'paused', 'completed')),
    autonomy_level TEXT,
    confidence_threshold INTEGER,
    launched_at TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Contacts (read-only input for the engine)
CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    workspace_id TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    email TEXT,
    phone TEXT,
    linkedin_url TEXT,
    company TEXT,
    title TEXT,
    personalization TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now'))
);

-- One unit of work: one channel action for one contact at one workflow position
CREATE TABLE IF NOT EXISTS campaign_scheduled_steps (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL REFERENCES campaigns(id),
    workspace_id TEXT,
    contact_id TEXT NOT NULL REFERENCES contacts(id),
    step_index INTEGER NOT NULL CHECK (step_index >= 1),
    channel TEXT NOT NULL,
    subject TEXT,
    content TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'executing', 'requires_approval', 'approved',
                          'sent', 'failed', 'rejected')),
    scheduled_at TEXT NOT NULL,
    executed_at TEXT,
    message_id TEXT,
    error_message TEXT,
    requires_approval INTEGER NOT NULL DEFAULT 0,
    approved_by TEXT,
    approved_at TEXT,
    personalization_data TEXT DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE (campaign_id, contact_id, step_index)
);

-- Pending human decisions, 1:1 with a step while it is in requires_approval
CREATE TABLE IF NOT EXISTS sophia_approval_items (
    id TEXT PRIMARY KEY,
    scheduled_step_id TEXT NOT NULL REFERENCES campaign_scheduled_steps(id),
    campaign_id TEXT NOT NULL REFERENCES campaigns(id),
    contact_id TEXT NOT NULL REFERENCES contacts(id),
    workspace_id TEXT,
    action_type TEXT NOT NULL DEFAULT 'campaign_step',
    action_data TEXT DEFAULT '{}',
    preview_subject TEXT,
    preview_content TEXT,
    sophia_reasoning TEXT,
    sophia_confidence INTEGER,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected')),
    resolved_by TEXT,
    resolved_at TEXT,
    resolution_notes TEXT,
    expires_at TEXT,
    created_at TEXT DEFAULT (datetime('now'))
);

-- One row per orchestrator run over a campaign (append-only)
CREATE TABLE IF NOT EXISTS campaign_execution_logs (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL REFERENCES campaigns(id),
    workspace_id TEXT,
    execution_type TEXT NOT NULL DEFAULT 'full_run',
    status TEXT NOT NULL DEFAULT 'started'
        CHECK (status IN ('started', 'completed', 'failed')),
    total_steps INTEGER DEFAULT 0,
    completed_steps INTEGER DEFAULT 0,
    failed_steps INTEGER DEFAULT 0,
    pending_approval_steps INTEGER DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    autonomy_level_used TEXT,
    error_message TEXT
);

-- Workspace-level autonomy defaults
CREATE TABLE IF NOT EXISTS agent_configs (
    workspace_id TEXT PRIMARY KEY,
    autonomy_level TEXT NOT NULL DEFAULT 'semi_autonomous',
    confidence_threshold INTEGER NOT NULL DEFAULT 80,
    approval_required_channels TEXT DEFAULT '[]',
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_steps_due ON campaign_scheduled_steps(status, scheduled_at);
CREATE INDEX IF NOT EXISTS idx_steps_campaign ON campaign_scheduled_steps(campaign_id, status);
CREATE INDEX IF NOT EXISTS idx_steps_contact ON campaign_scheduled_steps(campaign_id, contact_id, step_index);
CREATE UNIQUE INDEX IF NOT EXISTS idx_approvals_open_step
    ON sophia_approval_items(scheduled_step_id) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS idx_approvals_workspace ON sophia_approval_items(workspace_id, status);
CREATE INDEX IF NOT EXISTS idx_exec_logs_campaign ON campaign_execution_logs(campaign_id, started_at);
CREATE INDEX IF NOT EXISTS idx_contacts_workspace ON contacts(workspace_id);
"""

EXPECTED_TABLES = [
    "campaigns", "contacts", "campaign_scheduled_steps", "sophia_approval_items",
    "campaign_execution_logs", "agent_configs",
]


def init_db(db_path=None, verbose=True):
    """Initialize the database with all tables and indexes, then run migrations."""
    from campaign_engine.db.migration_runner import run_migrations

    path = db_path or config.DB_PATH
    conn = sqlite3.connect(path)
    conn.executescript(SCHEMA_SQL)
    conn.commit()

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    tables = [row[0] for row in cursor.fetchall()]
    if verbose:
        print(f"Database initialized at {path}")
        print(f"Tables created: {len(tables)}")
    conn.close()

    result = run_migrations(path, verbose=verbose)
    if result["failed"]:
        raise RuntimeError(f"Migrations failed: {', '.join(result['errors'])}")
    return tables


def verify_db(db_path=None):
    """Verify the database schema is correct."""
    path = db_path or config.DB_PATH
    conn = sqlite3.connect(path)

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    actual_tables = [row[0] for row in cursor.fetchall()]
    conn.close()

    missing = set(EXPECTED_TABLES + ["execution_errors", "schema_versions"]) - set(actual_tables)
    if missing:
        print(f"FAIL: Missing tables: {missing}")
        return False

    print(f"PASS: All {len(EXPECTED_TABLES) + 2} tables present")
    return True


if __name__ == "__main__":
    init_db()
    verify_db()
