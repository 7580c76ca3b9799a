"""
Approval Queue - lifecycle of the human-review items tied to scheduled steps.

An item is opened when the policy (or a guardrail) says a step needs sign-off and
closed by exactly one resolution. Both halves move the step in the same
transaction as the item, so the queue and the step table never disagree.
"""

import sqlite3
from datetime import timedelta

from campaign_engine import config
from campaign_engine.db.connection import to_iso, utcnow
from campaign_engine.engine.errors import (
    ApprovalConflictError,
    DuplicateApprovalError,
    InvalidTransitionError,
    NotFoundError,
)
from campaign_engine.engine.models import ApprovalStatus, StepStatus, sources_for
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("approvals")

PREVIEW_LIMIT = 500


class ApprovalQueueManager:

    def __init__(self, repo, clock=None, expiry_days: int = None):
        self.repo = repo
        self.clock = clock or utcnow
        self.expiry_days = config.APPROVAL_EXPIRY_DAYS if expiry_days is None else expiry_days

    def create_approval_item(self, step: dict, confidence: int, reasoning: str,
                             preview_content: str = None) -> dict:
        """Open an approval item for `step` and park the step in requires_approval.

        Raises DuplicateApprovalError if the step already has an open item, and
        InvalidTransitionError if the step is no longer in a state that can be
        routed to approval.
        """
        existing = self.repo.get_open_approval_for_step(step["id"])
        if existing:
            raise DuplicateApprovalError(step["id"], existing["id"])

        now = self.clock()
        preview = preview_content if preview_content is not None else (step.get("content") or "")
        item = {
            "scheduled_step_id": step["id"],
            "campaign_id": step["campaign_id"],
            "contact_id": step["contact_id"],
            "workspace_id": step.get("workspace_id"),
            "action_type": "campaign_step",
            "action_data": {
                "channel": step["channel"],
                "step_index": step["step_index"],
                "subject": step.get("subject"),
            },
            "preview_subject": step.get("subject"),
            "preview_content": preview[:PREVIEW_LIMIT],
            "sophia_reasoning": reasoning,
            "sophia_confidence": confidence,
            "expires_at": to_iso(now + timedelta(days=self.expiry_days)),
            "created_at": to_iso(now),
        }

        try:
            created = self.repo.open_approval(
                item,
                step_from_statuses=sources_for(StepStatus.REQUIRES_APPROVAL),
                step_fields={"requires_approval": True},
            )
        except sqlite3.IntegrityError:
            # Lost a race with another worker opening the same item
            raise DuplicateApprovalError(step["id"])

        if created is None:
            current = self.repo.get_step(step["id"]) or {}
            raise InvalidTransitionError(step["id"], current.get("status", "missing"),
                                         StepStatus.REQUIRES_APPROVAL.value)

        logger.info("Approval item %s opened for step %s (%s, confidence %s)",
                    created["id"], step["id"], step["channel"], confidence,
                    extra={"approval_id": created["id"], "step_id": step["id"],
                           "campaign_id": step["campaign_id"], "contact_id": step["contact_id"],
                           "channel": step["channel"]})
        return created

    def resolve(self, approval_id: str, decision, resolver_id: str, notes: str = None) -> dict:
        """Close an approval item with a human decision.

        approved -> step becomes approved (queued for execution)
        rejected -> step becomes rejected (terminal, never executed)

        Returns the resolved item. Raises NotFoundError for an unknown id and
        ApprovalConflictError if the item was already resolved.
        """
        decision = ApprovalStatus(decision)
        if decision == ApprovalStatus.PENDING:
            raise ValueError("decision must be 'approved' or 'rejected'")
        if not resolver_id:
            raise ValueError("resolver_id is required")

        item = self.repo.get_approval(approval_id)
        if not item:
            raise NotFoundError("approval item", approval_id)
        if item["status"] != ApprovalStatus.PENDING.value:
            raise ApprovalConflictError(approval_id, item["status"])

        resolved_at = to_iso(self.clock())
        if decision == ApprovalStatus.APPROVED:
            step_status = StepStatus.APPROVED
            step_fields = {"approved_by": resolver_id, "approved_at": resolved_at}
        else:
            step_status = StepStatus.REJECTED
            step_fields = {}

        resolved = self.repo.close_approval(
            approval_id, decision, resolver_id, resolved_at, notes, step_status, step_fields,
        )
        if resolved is None:
            latest = self.repo.get_approval(approval_id) or {}
            raise ApprovalConflictError(approval_id, latest.get("status", "unknown"))

        logger.info("Approval %s %s by %s", approval_id, decision.value, resolver_id,
                    extra={"approval_id": approval_id, "step_id": item["scheduled_step_id"],
                           "campaign_id": item["campaign_id"], "action": decision.value})
        return resolved

    def get(self, approval_id: str) -> dict:
        item = self.repo.get_approval(approval_id)
        if not item:
            raise NotFoundError("approval item", approval_id)
        return item

    def list_pending(self, workspace_id: str = None, campaign_id: str = None, limit: int = 100) -> list:
        return self.repo.list_approvals(workspace_id=workspace_id, campaign_id=campaign_id,
                                        status=ApprovalStatus.PENDING, limit=limit)
