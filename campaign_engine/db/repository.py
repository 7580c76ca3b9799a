"""
Campaign Engine - Data Access Layer

CampaignRepository is the only way the engine touches storage. Every step write is
a narrow, conditional single-row UPDATE keyed by id: the guard on the current
status is what makes claims exclusive and keeps terminal steps immutable.
"""

import json
import sqlite3
from typing import Iterable, List, Optional

from campaign_engine import config
from campaign_engine.db.connection import gen_id, get_db_conn, to_iso, utcnow

_JSON_COLUMNS = {
    "workflow", "personalization", "personalization_data", "action_data",
    "approval_required_channels",
}
_BOOL_COLUMNS = {"requires_approval"}

CAMPAIGN_FIELDS = {"name", "owner_id", "workflow", "status", "autonomy_level",
                   "confidence_threshold", "launched_at"}
STEP_FIELDS = {"subject", "content", "scheduled_at", "executed_at", "message_id",
               "error_message", "requires_approval", "approved_by", "approved_at",
               "personalization_data", "attempt_count", "claimed_by", "claimed_at"}
# Only these can be claimed; terminal rows never re-enter 'executing'
CLAIMABLE_STATUSES = ("pending", "approved")


def _decode(row) -> Optional[dict]:
    if row is None:
        return None
    data = dict(row)
    for key in _JSON_COLUMNS & data.keys():
        if isinstance(data[key], str):
            try:
                data[key] = json.loads(data[key])
            except ValueError:
                pass
    for key in _BOOL_COLUMNS & data.keys():
        if data[key] is not None:
            data[key] = bool(data[key])
    return data


def _encode(key: str, value):
    if key in _JSON_COLUMNS and not isinstance(value, str) and value is not None:
        return json.dumps(value)
    if key in _BOOL_COLUMNS and value is not None:
        return 1 if value else 0
    if hasattr(value, "value") and isinstance(value, str):
        return value.value
    return value


def _status(value) -> str:
    return getattr(value, "value", value)


class CampaignRepository:
    """SQLite-backed store for campaigns, contacts, steps, approvals and run logs."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or config.DB_PATH

    def _conn(self):
        return get_db_conn(self.db_path)

    # ─── CAMPAIGNS ───────────────────────────────────────────────

    def create_campaign(self, data: dict) -> dict:
        cid = data.get("id") or gen_id("cmp")
        now = to_iso(utcnow())
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO campaigns (id, workspace_id, owner_id, name, workflow, status,
                    autonomy_level, confidence_threshold, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (
                cid, data["workspace_id"], data.get("owner_id"), data["name"],
                _encode("workflow", data.get("workflow", [])),
                _status(data.get("status", "draft")),
                _status(data.get("autonomy_level")), data.get("confidence_threshold"),
                now, now,
            ))
            conn.commit()
            row = conn.execute("SELECT * FROM campaigns WHERE id=?", (cid,)).fetchone()
        return _decode(row)

    def get_campaign(self, campaign_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM campaigns WHERE id=?", (campaign_id,)).fetchone()
        return _decode(row)

    def list_campaigns(self, workspace_id=None, status=None, limit=100, offset=0) -> list:
        query = "SELECT * FROM campaigns WHERE 1=1"
        params = []
        if workspace_id:
            query += " AND workspace_id=?"
            params.append(workspace_id)
        if status:
            query += " AND status=?"
            params.append(_status(status))
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(r) for r in rows]

    def update_campaign(self, campaign_id: str, data: dict) -> Optional[dict]:
        safe = {k: _encode(k, v) for k, v in data.items() if k in CAMPAIGN_FIELDS}
        if not safe:
            return self.get_campaign(campaign_id)
        safe["updated_at"] = to_iso(utcnow())
        fields = ", ".join(f"{k}=?" for k in safe)
        with self._conn() as conn:
            conn.execute(f"UPDATE campaigns SET {fields} WHERE id=?",
                         list(safe.values()) + [campaign_id])
            conn.commit()
            row = conn.execute("SELECT * FROM campaigns WHERE id=?", (campaign_id,)).fetchone()
        return _decode(row)

    def set_campaign_status(self, campaign_id: str, to_status, from_statuses: Iterable) -> Optional[dict]:
        """Conditionally move a campaign between lifecycle states. None if the guard failed."""
        sources = [_status(s) for s in from_statuses]
        marks = ",".join("?" for _ in sources)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE campaigns SET status=?, updated_at=? WHERE id=? AND status IN ({marks})",
                [_status(to_status), to_iso(utcnow()), campaign_id] + sources,
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM campaigns WHERE id=?", (campaign_id,)).fetchone()
        return _decode(row)

    def list_active_campaigns_with_due_steps(self, now: str) -> List[str]:
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT DISTINCT s.campaign_id
                FROM campaign_scheduled_steps s
                JOIN campaigns c ON c.id = s.campaign_id
                WHERE c.status = 'active'
                  AND s.status IN ('pending', 'approved')
                  AND s.scheduled_at <= ?
                ORDER BY s.campaign_id
            """, (now,)).fetchall()
        return [r[0] for r in rows]

    # ─── CONTACTS ────────────────────────────────────────────────

    def create_contact(self, data: dict) -> dict:
        cid = data.get("id") or gen_id("con")
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO contacts (id, workspace_id, first_name, last_name, email, phone,
                    linkedin_url, company, title, personalization, created_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """, (
                cid, data["workspace_id"], data.get("first_name"), data.get("last_name"),
                data.get("email"), data.get("phone"), data.get("linkedin_url"),
                data.get("company"), data.get("title"),
                _encode("personalization", data.get("personalization", {})),
                to_iso(utcnow()),
            ))
            conn.commit()
            row = conn.execute("SELECT * FROM contacts WHERE id=?", (cid,)).fetchone()
        return _decode(row)

    def get_contact(self, contact_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM contacts WHERE id=?", (contact_id,)).fetchone()
        return _decode(row)

    def get_contacts(self, contact_ids: List[str]) -> List[dict]:
        if not contact_ids:
            return []
        marks = ",".join("?" for _ in contact_ids)
        with self._conn() as conn:
            rows = conn.execute(f"SELECT * FROM contacts WHERE id IN ({marks})",
                                list(contact_ids)).fetchall()
        by_id = {r["id"]: _decode(r) for r in rows}
        return [by_id[c] for c in contact_ids if c in by_id]

    def list_contacts(self, workspace_id: str, limit=500, offset=0) -> list:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM contacts WHERE workspace_id=? ORDER BY created_at LIMIT ? OFFSET ?",
                (workspace_id, limit, offset),
            ).fetchall()
        return [_decode(r) for r in rows]

    # ─── AGENT CONFIGS ───────────────────────────────────────────

    def get_agent_config(self, workspace_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM agent_configs WHERE workspace_id=?",
                               (workspace_id,)).fetchone()
        return _decode(row)

    def upsert_agent_config(self, workspace_id: str, autonomy_level, confidence_threshold: int,
                            approval_required_channels: list = None) -> dict:
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO agent_configs (workspace_id, autonomy_level, confidence_threshold,
                    approval_required_channels, updated_at)
                VALUES (?,?,?,?,?)
                ON CONFLICT(workspace_id) DO UPDATE SET
                    autonomy_level=excluded.autonomy_level,
                    confidence_threshold=excluded.confidence_threshold,
                    approval_required_channels=excluded.approval_required_channels,
                    updated_at=excluded.updated_at
            """, (
                workspace_id, _status(autonomy_level), confidence_threshold,
                json.dumps(approval_required_channels or []), to_iso(utcnow()),
            ))
            conn.commit()
            row = conn.execute("SELECT * FROM agent_configs WHERE workspace_id=?",
                               (workspace_id,)).fetchone()
        return _decode(row)

    # ─── SCHEDULED STEPS ─────────────────────────────────────────

    def insert_steps(self, rows: List[dict]) -> int:
        """Bulk-insert materialized steps in one transaction.

        Rows that already exist for (campaign, contact, step_index) are left alone,
        so re-launching with an overlapping contact list is safe. Returns the
        number of rows actually inserted.
        """
        now = to_iso(utcnow())
        inserted = 0
        with self._conn() as conn:
            try:
                for r in rows:
                    cur = conn.execute("""
                        INSERT OR IGNORE INTO campaign_scheduled_steps (
                            id, campaign_id, workspace_id, contact_id, step_index, channel,
                            subject, content, status, scheduled_at, requires_approval,
                            personalization_data, created_at, updated_at)
                        VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                    """, (
                        r.get("id") or gen_id("stp"), r["campaign_id"], r.get("workspace_id"),
                        r["contact_id"], r["step_index"], r["channel"], r.get("subject"),
                        r.get("content"), _status(r.get("status", "pending")), r["scheduled_at"],
                        1 if r.get("requires_approval") else 0,
                        _encode("personalization_data", r.get("personalization_data", {})),
                        now, now,
                    ))
                    inserted += cur.rowcount
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
        return inserted

    def get_step(self, step_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM campaign_scheduled_steps WHERE id=?",
                               (step_id,)).fetchone()
        return _decode(row)

    def get_step_by_index(self, campaign_id: str, contact_id: str, step_index: int) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("""
                SELECT * FROM campaign_scheduled_steps
                WHERE campaign_id=? AND contact_id=? AND step_index=?
            """, (campaign_id, contact_id, step_index)).fetchone()
        return _decode(row)

    def list_steps(self, campaign_id: str, status=None, contact_id: str = None,
                   limit: int = 1000, offset: int = 0) -> list:
        query = "SELECT * FROM campaign_scheduled_steps WHERE campaign_id=?"
        params = [campaign_id]
        if status:
            query += " AND status=?"
            params.append(_status(status))
        if contact_id:
            query += " AND contact_id=?"
            params.append(contact_id)
        query += " ORDER BY contact_id, step_index LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(r) for r in rows]

    def find_due_steps(self, now: str, campaign_id: str = None, limit: int = 100) -> list:
        """Steps ready to process: pending/approved, due, and in an active campaign."""
        query = """
            SELECT s.* FROM campaign_scheduled_steps s
            JOIN campaigns c ON c.id = s.campaign_id
            WHERE c.status = 'active'
              AND s.status IN ('pending', 'approved')
              AND s.scheduled_at <= ?
        """
        params = [now]
        if campaign_id:
            query += " AND s.campaign_id=?"
            params.append(campaign_id)
        query += " ORDER BY s.step_index, s.scheduled_at LIMIT ?"
        params.append(limit)
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(r) for r in rows]

    def claim_step(self, step_id: str, from_status, worker_id: str, now: str) -> Optional[dict]:
        """Atomically move a step into 'executing' if it is still in `from_status`.

        Returns the claimed row, or None when another worker (or a human) got there
        first, or when `from_status` is not a claimable (pending/approved) status.
        """
        from_status = _status(from_status)
        if from_status not in CLAIMABLE_STATUSES:
            return None
        with self._conn() as conn:
            cur = conn.execute("""
                UPDATE campaign_scheduled_steps
                SET status='executing', claimed_by=?, claimed_at=?, updated_at=?
                WHERE id=? AND status=? AND status IN ('pending', 'approved')
            """, (worker_id, now, now, step_id, from_status))
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM campaign_scheduled_steps WHERE id=?",
                               (step_id,)).fetchone()
        return _decode(row)

    def transition_step(self, step_id: str, from_statuses: Iterable, to_status,
                        fields: dict = None) -> Optional[dict]:
        """Conditionally set a step's status (plus whitelisted fields).

        Returns the updated row, or None if the step was no longer in one of
        `from_statuses`. Leaving 'executing' drops the claim.
        """
        to_status = _status(to_status)
        safe = {k: _encode(k, v) for k, v in (fields or {}).items() if k in STEP_FIELDS}
        if to_status != "executing":
            safe["claimed_by"] = None
            safe["claimed_at"] = None
        safe["updated_at"] = to_iso(utcnow())
        sources = [_status(s) for s in from_statuses]
        assignments = ", ".join(["status=?"] + [f"{k}=?" for k in safe])
        marks = ",".join("?" for _ in sources)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE campaign_scheduled_steps SET {assignments} "
                f"WHERE id=? AND status IN ({marks})",
                [to_status] + list(safe.values()) + [step_id] + sources,
            )
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM campaign_scheduled_steps WHERE id=?",
                               (step_id,)).fetchone()
        return _decode(row)

    def fail_claimed_step(self, step_id: str, worker_id: str, error: str,
                          now: str) -> Optional[dict]:
        """Mark a step this worker still holds as failed. None if the claim is gone."""
        with self._conn() as conn:
            cur = conn.execute("""
                UPDATE campaign_scheduled_steps
                SET status='failed', executed_at=?, error_message=?,
                    claimed_by=NULL, claimed_at=NULL, updated_at=?
                WHERE id=? AND status='executing' AND claimed_by=?
            """, (now, error, now, step_id, worker_id))
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM campaign_scheduled_steps WHERE id=?",
                               (step_id,)).fetchone()
        return _decode(row)

    def update_step_schedule(self, step_id: str, scheduled_at: str, expected_status) -> Optional[dict]:
        """Move scheduled_at without changing status, guarded on the current status."""
        now = to_iso(utcnow())
        with self._conn() as conn:
            cur = conn.execute("""
                UPDATE campaign_scheduled_steps SET scheduled_at=?, updated_at=?
                WHERE id=? AND status=?
            """, (scheduled_at, now, step_id, _status(expected_status)))
            conn.commit()
            if cur.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM campaign_scheduled_steps WHERE id=?",
                               (step_id,)).fetchone()
        return _decode(row)

    def count_steps_by_status(self, campaign_id: str) -> dict:
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT status, COUNT(*) AS n FROM campaign_scheduled_steps
                WHERE campaign_id=? GROUP BY status
            """, (campaign_id,)).fetchall()
        return {r["status"]: r["n"] for r in rows}

    def release_stale_claims(self, claimed_before: str) -> List[str]:
        """Hand abandoned claims back to the poller. Approved steps stay approved."""
        now = to_iso(utcnow())
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT id FROM campaign_scheduled_steps
                WHERE status='executing' AND claimed_at < ?
            """, (claimed_before,)).fetchall()
            ids = [r[0] for r in rows]
            for step_id in ids:
                conn.execute("""
                    UPDATE campaign_scheduled_steps
                    SET status = CASE WHEN approved_at IS NOT NULL THEN 'approved' ELSE 'pending' END,
                        claimed_by=NULL, claimed_at=NULL, updated_at=?
                    WHERE id=? AND status='executing' AND claimed_at < ?
                """, (now, step_id, claimed_before))
            conn.commit()
        return ids

    def count_sent_since(self, workspace_id: str, channels: Iterable[str], since: str) -> int:
        channels = list(channels)
        if not channels:
            return 0
        marks = ",".join("?" for _ in channels)
        with self._conn() as conn:
            row = conn.execute(f"""
                SELECT COUNT(*) FROM campaign_scheduled_steps
                WHERE workspace_id=? AND status='sent' AND executed_at >= ?
                  AND channel IN ({marks})
            """, [workspace_id, since] + channels).fetchone()
        return row[0]

    # ─── APPROVAL ITEMS ──────────────────────────────────────────

    def open_approval(self, item: dict, step_from_statuses: Iterable, step_fields: dict) -> Optional[dict]:
        """Insert an approval item and move its step to requires_approval atomically.

        Returns the new item, or None if the step was not in `step_from_statuses`.
        Raises sqlite3.IntegrityError if the step already has an open item.
        """
        aid = item.get("id") or gen_id("apv")
        sources = [_status(s) for s in step_from_statuses]
        marks = ",".join("?" for _ in sources)
        now = to_iso(utcnow())
        safe = {k: _encode(k, v) for k, v in step_fields.items() if k in STEP_FIELDS}
        safe["claimed_by"] = None
        safe["claimed_at"] = None
        safe["updated_at"] = now
        assignments = ", ".join(["status='requires_approval'"] + [f"{k}=?" for k in safe])
        with self._conn() as conn:
            try:
                cur = conn.execute(
                    f"UPDATE campaign_scheduled_steps SET {assignments} "
                    f"WHERE id=? AND status IN ({marks})",
                    list(safe.values()) + [item["scheduled_step_id"]] + sources,
                )
                if cur.rowcount != 1:
                    conn.rollback()
                    return None
                conn.execute("""
                    INSERT INTO sophia_approval_items (id, scheduled_step_id, campaign_id,
                        contact_id, workspace_id, action_type, action_data, preview_subject,
                        preview_content, sophia_reasoning, sophia_confidence, status,
                        expires_at, created_at)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?,'pending',?,?)
                """, (
                    aid, item["scheduled_step_id"], item["campaign_id"], item["contact_id"],
                    item.get("workspace_id"), item.get("action_type", "campaign_step"),
                    _encode("action_data", item.get("action_data", {})),
                    item.get("preview_subject"), item.get("preview_content"),
                    item.get("sophia_reasoning"), item.get("sophia_confidence"),
                    item.get("expires_at"), item.get("created_at", now),
                ))
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            row = conn.execute("SELECT * FROM sophia_approval_items WHERE id=?", (aid,)).fetchone()
        return _decode(row)

    def close_approval(self, approval_id: str, decision, resolver_id: str, resolved_at: str,
                       notes: Optional[str], step_to_status, step_fields: dict) -> Optional[dict]:
        """Resolve a pending approval item and move its step in the same transaction.

        Returns the resolved item, or None if the item was no longer pending.
        """
        safe = {k: _encode(k, v) for k, v in step_fields.items() if k in STEP_FIELDS}
        safe["updated_at"] = resolved_at
        assignments = ", ".join(["status=?"] + [f"{k}=?" for k in safe])
        with self._conn() as conn:
            try:
                cur = conn.execute("""
                    UPDATE sophia_approval_items
                    SET status=?, resolved_by=?, resolved_at=?, resolution_notes=?
                    WHERE id=? AND status='pending'
                """, (_status(decision), resolver_id, resolved_at, notes, approval_id))
                if cur.rowcount != 1:
                    conn.rollback()
                    return None
                step_id = conn.execute(
                    "SELECT scheduled_step_id FROM sophia_approval_items WHERE id=?",
                    (approval_id,),
                ).fetchone()[0]
                cur = conn.execute(
                    f"UPDATE campaign_scheduled_steps SET {assignments} "
                    f"WHERE id=? AND status='requires_approval'",
                    [_status(step_to_status)] + list(safe.values()) + [step_id],
                )
                if cur.rowcount != 1:
                    conn.rollback()
                    return None
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            row = conn.execute("SELECT * FROM sophia_approval_items WHERE id=?",
                               (approval_id,)).fetchone()
        return _decode(row)

    def get_approval(self, approval_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM sophia_approval_items WHERE id=?",
                               (approval_id,)).fetchone()
        return _decode(row)

    def get_open_approval_for_step(self, step_id: str) -> Optional[dict]:
        with self._conn() as conn:
            row = conn.execute("""
                SELECT * FROM sophia_approval_items
                WHERE scheduled_step_id=? AND status='pending'
            """, (step_id,)).fetchone()
        return _decode(row)

    def list_approvals(self, workspace_id: str = None, campaign_id: str = None,
                       status="pending", limit: int = 100) -> list:
        query = "SELECT * FROM sophia_approval_items WHERE 1=1"
        params = []
        if workspace_id:
            query += " AND workspace_id=?"
            params.append(workspace_id)
        if campaign_id:
            query += " AND campaign_id=?"
            params.append(campaign_id)
        if status:
            query += " AND status=?"
            params.append(_status(status))
        query += " ORDER BY created_at LIMIT ?"
        params.append(limit)
        with self._conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_decode(r) for r in rows]

    # ─── EXECUTION LOGS ──────────────────────────────────────────

    def insert_execution_log(self, data: dict) -> dict:
        lid = data.get("id") or gen_id("run")
        with self._conn() as conn:
            conn.execute("""
                INSERT INTO campaign_execution_logs (id, campaign_id, workspace_id,
                    execution_type, status, total_steps, completed_steps, failed_steps,
                    pending_approval_steps, started_at, completed_at, autonomy_level_used,
                    error_message)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
            """, (
                lid, data["campaign_id"], data.get("workspace_id"),
                data.get("execution_type", "full_run"), data.get("status", "completed"),
                data.get("total_steps", 0), data.get("completed_steps", 0),
                data.get("failed_steps", 0), data.get("pending_approval_steps", 0),
                data.get("started_at"), data.get("completed_at"),
                _status(data.get("autonomy_level_used")), data.get("error_message"),
            ))
            conn.commit()
            row = conn.execute("SELECT * FROM campaign_execution_logs WHERE id=?",
                               (lid,)).fetchone()
        return _decode(row)

    def list_execution_logs(self, campaign_id: str, limit: int = 50) -> list:
        with self._conn() as conn:
            rows = conn.execute("""
                SELECT * FROM campaign_execution_logs WHERE campaign_id=?
                ORDER BY started_at DESC, rowid DESC LIMIT ?
            """, (campaign_id, limit)).fetchall()
        return [_decode(r) for r in rows]
