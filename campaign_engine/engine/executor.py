"""
Step Executor - dispatches one claimed step to its channel and records the outcome.

    execute(step)
      1. claim the step if the caller hasn't already (pending/approved -> executing)
      2. resolve the recipient from the contact
      3. ask the rate controller; a refusal raises PolicyBlockedError and leaves the
         step claimed so the caller can route it (approval queue or deferral)
      4. send, then: sent | retry (back to pending/approved later) | failed

Sent and failed are terminal. Which failures get another attempt is up to the
injected RetryPolicy; the default never retries.
"""

import time

from campaign_engine.db.connection import to_iso, utcnow
from campaign_engine.engine.errors import (
    ExecutionError,
    InvalidTransitionError,
    NotFoundError,
    PolicyBlockedError,
)
from campaign_engine.engine.models import (
    DUE_STATUSES,
    RATE_ACTION_TYPES,
    RECIPIENT_FIELDS,
    StepStatus,
)
from campaign_engine.engine.rate_control import UnlimitedRateController
from campaign_engine.engine.retry import NoRetryPolicy
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("executor")


def resolve_recipient(channel: str, contact: dict) -> str:
    """Pick the contact identifier the channel delivers to. Raises ExecutionError if missing."""
    field = RECIPIENT_FIELDS.get(channel)
    if not field:
        raise ExecutionError(f"Unsupported channel: {channel}", channel=channel)
    value = (contact or {}).get(field)
    if not value:
        raise ExecutionError(f"Contact has no {field} for {channel}", channel=channel)
    return value


class StepExecutor:

    def __init__(self, repo, sender, rate_controller=None, retry_policy=None,
                 clock=None, worker_id: str = "executor"):
        self.repo = repo
        self.sender = sender
        self.rate_controller = rate_controller or UnlimitedRateController()
        self.retry_policy = retry_policy or NoRetryPolicy()
        self.clock = clock or utcnow
        self.worker_id = worker_id

    def _ensure_claimed(self, step: dict) -> dict:
        if step["status"] == StepStatus.EXECUTING.value:
            return step
        if step["status"] not in [s.value for s in DUE_STATUSES]:
            raise InvalidTransitionError(step["id"], step["status"], StepStatus.EXECUTING.value)
        claimed = self.repo.claim_step(step["id"], step["status"], self.worker_id, to_iso(self.clock()))
        if claimed is None:
            current = self.repo.get_step(step["id"]) or {}
            raise InvalidTransitionError(step["id"], current.get("status", "missing"),
                                         StepStatus.EXECUTING.value, "claimed elsewhere")
        return claimed

    def execute(self, step: dict) -> dict:
        """Dispatch the step and return its updated row."""
        step = self._ensure_claimed(step)
        log_extra = {"step_id": step["id"], "campaign_id": step["campaign_id"],
                     "contact_id": step["contact_id"], "channel": step["channel"]}

        contact = self.repo.get_contact(step["contact_id"])
        try:
            if contact is None:
                raise ExecutionError(str(NotFoundError("contact", step["contact_id"])))
            recipient = resolve_recipient(step["channel"], contact)
        except ExecutionError as e:
            # Nothing a retry could fix
            return self._mark_failed(step, str(e), log_extra)

        action_type = RATE_ACTION_TYPES.get(step["channel"], step["channel"])
        verdict = self.rate_controller.can_perform_action(step.get("workspace_id"), action_type)
        if not verdict.get("allowed", False):
            logger.info("Rate controller blocked step %s: %s", step["id"], verdict.get("reason"),
                        extra=log_extra)
            raise PolicyBlockedError(
                verdict.get("reason") or f"{action_type} limit reached",
                remaining_today=verdict.get("remaining_today"),
                remaining_this_week=verdict.get("remaining_this_week"),
            )

        started = time.monotonic()
        try:
            result = self.sender.send(step["channel"], recipient, step.get("content") or "",
                                      subject=step.get("subject"))
        except Exception as e:
            result = {"success": False, "message_id": None, "error": f"{type(e).__name__}: {e}"}
        if not isinstance(result, dict):
            result = {"success": False, "message_id": None,
                      "error": f"Malformed send result: {result!r}"}
        duration_ms = int((time.monotonic() - started) * 1000)

        if result.get("success"):
            now = to_iso(self.clock())
            updated = self.repo.transition_step(
                step["id"], [StepStatus.EXECUTING], StepStatus.SENT,
                {"executed_at": now, "message_id": result.get("message_id"), "error_message": None},
            )
            if updated is None:
                raise InvalidTransitionError(step["id"], "unknown", StepStatus.SENT.value, "claim lost")
            self.rate_controller.record_action(step.get("workspace_id"), action_type)
            logger.info("Step %s sent via %s (message %s)", step["id"], step["channel"],
                        result.get("message_id"), extra={**log_extra, "duration_ms": duration_ms})
            return updated

        error = result.get("error") or "Unknown send failure"
        retry_at = self.retry_policy.next_attempt(step, error, self.clock())
        if retry_at is not None:
            return self._release_for_retry(step, error, retry_at, log_extra)
        return self._mark_failed(step, error, log_extra)

    def _mark_failed(self, step: dict, error: str, log_extra: dict) -> dict:
        updated = self.repo.transition_step(
            step["id"], [StepStatus.EXECUTING], StepStatus.FAILED,
            {"executed_at": to_iso(self.clock()), "error_message": error},
        )
        if updated is None:
            raise InvalidTransitionError(step["id"], "unknown", StepStatus.FAILED.value, "claim lost")
        logger.warning("Step %s failed: %s", step["id"], error, extra=log_extra)
        return updated

    def _release_for_retry(self, step: dict, error: str, retry_at, log_extra: dict) -> dict:
        back_to = StepStatus.APPROVED if step.get("approved_at") else StepStatus.PENDING
        updated = self.repo.transition_step(
            step["id"], [StepStatus.EXECUTING], back_to,
            {"scheduled_at": to_iso(retry_at), "error_message": error,
             "attempt_count": (step.get("attempt_count") or 0) + 1},
        )
        if updated is None:
            raise InvalidTransitionError(step["id"], "unknown", back_to.value, "claim lost")
        logger.warning("Step %s send failed (%s), retrying at %s", step["id"], error,
                       to_iso(retry_at), extra=log_extra)
        return updated
