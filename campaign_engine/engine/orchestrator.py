"""
Execution Orchestrator - the poll-driven core of the campaign engine.

Per polling cycle:
    for each active campaign with due steps:
        for each due step (pending/approved, scheduled_at <= now):
            claim it (conditional update; losers skip it)
            approved            -> dispatch
            policy says review  -> approval queue
            workspace channel   -> approval queue
            guardrail blocks    -> approval queue
            otherwise           -> dispatch
        record an ExecutionLog for the campaign

Dispatch = StepExecutor.execute, then StepAdvancer.advance when the step is sent.
A rate-limit block on a pending step routes it to approval; on an already-approved
step it is deferred and stays approved.

Failures are isolated per step: an unexpected exception is recorded in
execution_errors and the loop moves on to the next contact.
"""

import socket
from collections import Counter
from datetime import timedelta

from campaign_engine import config
from campaign_engine.db.connection import gen_id, to_iso, utcnow
from campaign_engine.engine import policy
from campaign_engine.engine.error_handler import log_execution_error, safe_execute
from campaign_engine.engine.errors import (
    CampaignStateError,
    InvalidTransitionError,
    NotFoundError,
    PolicyBlockedError,
)
from campaign_engine.engine.guardrails import Guardrails
from campaign_engine.engine.models import DUE_STATUSES, ApprovalStatus, CampaignStatus, StepStatus
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("orchestrator")

_OUTCOME_FOR_STATUS = {
    StepStatus.SENT.value: "sent",
    StepStatus.FAILED.value: "failed",
    StepStatus.PENDING.value: "retry",
    StepStatus.APPROVED.value: "retry",
}

_DUE = {s.value for s in DUE_STATUSES}


class ExecutionOrchestrator:

    def __init__(self, repo, approvals, executor, advancer, run_logger, guardrails=None,
                 clock=None, worker_id: str = None, batch_size: int = None,
                 rate_limit_defer_minutes: int = None, claim_timeout_seconds: int = None):
        self.repo = repo
        self.approvals = approvals
        self.executor = executor
        self.advancer = advancer
        self.run_logger = run_logger
        self.guardrails = guardrails or Guardrails()
        self.clock = clock or utcnow
        self.worker_id = worker_id or f"{socket.gethostname()}:{gen_id('w')}"
        self.batch_size = batch_size or config.BATCH_SIZE
        self.rate_limit_defer = timedelta(minutes=(config.RATE_LIMIT_DEFER_MINUTES
                                                   if rate_limit_defer_minutes is None
                                                   else rate_limit_defer_minutes))
        self.claim_timeout = timedelta(seconds=(config.CLAIM_TIMEOUT_SECONDS
                                                if claim_timeout_seconds is None
                                                else claim_timeout_seconds))

    # ─── POLLING ─────────────────────────────────────────────────

    def run_once(self, batch_size: int = None) -> dict:
        """One polling cycle over every active campaign that has due steps."""
        self.release_stale_claims()
        now = to_iso(self.clock())
        totals = Counter()
        runs = []
        for campaign_id in self.repo.list_active_campaigns_with_due_steps(now):
            try:
                result = self.process_campaign(campaign_id, batch_size=batch_size)
            except CampaignStateError:
                # Paused between the scan and now
                continue
            runs.append(result)
            totals.update(result["outcomes"])
        logger.info("Poll cycle done: %d campaign(s), outcomes=%s", len(runs), dict(totals),
                    extra={"phase": "poll"})
        return {"campaigns": len(runs), "outcomes": dict(totals), "runs": runs}

    def process_campaign(self, campaign_id: str, batch_size: int = None) -> dict:
        """Process every due step of one campaign, then record the run."""
        campaign = self.repo.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundError("campaign", campaign_id)
        if campaign["status"] != CampaignStatus.ACTIVE.value:
            raise CampaignStateError(campaign_id, campaign["status"], "process")

        started_at = to_iso(self.clock())
        steps = self.repo.find_due_steps(started_at, campaign_id=campaign_id,
                                         limit=batch_size or self.batch_size)
        outcomes = Counter()
        for step in steps:
            try:
                outcome = self.process_step(step, campaign)
            except Exception as e:
                log_execution_error(
                    self.repo.db_path, phase="process_step", error=e,
                    campaign_id=campaign_id, contact_id=step["contact_id"], step_id=step["id"],
                    context={"step_index": step["step_index"], "channel": step["channel"]},
                    severity="error",
                )
                self._fail_claim(step, e)
                outcome = "error"
            outcomes[outcome] += 1

        log = self.run_logger.record(campaign_id, started_at=started_at)
        return {"campaign_id": campaign_id, "processed": len(steps),
                "outcomes": dict(outcomes), "execution_log": log}

    # ─── PER STEP ────────────────────────────────────────────────

    def process_step(self, step: dict, campaign: dict = None) -> str:
        """Route one due step. Returns the outcome label."""
        campaign = campaign or self.repo.get_campaign(step["campaign_id"])
        prior = step["status"]
        if prior not in _DUE:
            logger.debug("Step %s is %s, not due", step["id"], prior, extra={"step_id": step["id"]})
            return "skipped"
        claimed = self.repo.claim_step(step["id"], prior, self.worker_id, to_iso(self.clock()))
        if claimed is None:
            logger.debug("Step %s already claimed elsewhere", step["id"], extra={"step_id": step["id"]})
            return "skipped"

        if prior == StepStatus.APPROVED.value:
            return self._dispatch(claimed)

        confidence = policy.resolve_confidence(claimed)
        threshold = campaign.get("confidence_threshold")
        if threshold is None:
            threshold = config.DEFAULT_CONFIDENCE_THRESHOLD
        verdict = policy.explain(claimed["channel"], confidence,
                                 campaign.get("autonomy_level") or config.DEFAULT_AUTONOMY_LEVEL,
                                 threshold)
        logger.debug("Policy for step %s: approval=%s (%s)", claimed["id"],
                     verdict.requires_approval, verdict.reason, extra={"step_id": claimed["id"]})

        if verdict.requires_approval:
            self.approvals.create_approval_item(claimed, confidence, verdict.reason)
            return "requires_approval"

        if claimed["channel"] in self._workspace_approval_channels(campaign):
            self.approvals.create_approval_item(
                claimed, confidence,
                f"{claimed['channel']} channel requires approval in this workspace",
            )
            return "requires_approval"

        try:
            self.guardrails.check(claimed, self.clock())
        except PolicyBlockedError as e:
            self.approvals.create_approval_item(claimed, confidence, e.reason)
            return "requires_approval"

        return self._dispatch(claimed, confidence)

    def _workspace_approval_channels(self, campaign: dict) -> set:
        agent_config = self.repo.get_agent_config(campaign.get("workspace_id")) or {}
        return set(agent_config.get("approval_required_channels") or [])

    def _dispatch(self, step: dict, confidence: int = None) -> str:
        try:
            result = self.executor.execute(step)
        except PolicyBlockedError as e:
            if step.get("approved_at"):
                return self._defer(step, e.reason)
            if confidence is None:
                confidence = policy.resolve_confidence(step)
            self.approvals.create_approval_item(step, confidence, e.reason)
            return "requires_approval"

        if result["status"] == StepStatus.SENT.value:
            # The send already happened; a failed advance must not turn it into an error
            safe_execute(
                self.repo.db_path, self.advancer.advance,
                args=(result["campaign_id"], result["contact_id"], result["step_index"]),
                phase="advance", campaign_id=result["campaign_id"],
                contact_id=result["contact_id"], step_id=result["id"], severity="error",
            )
        return _OUTCOME_FOR_STATUS.get(result["status"], result["status"])

    def _fail_claim(self, step: dict, error: Exception):
        """Close out a claim this worker still holds after an unexpected exception.

        A step left in 'executing' is released as stale and sent again.
        """
        failed = self.repo.fail_claimed_step(step["id"], self.worker_id,
                                             f"{type(error).__name__}: {error}",
                                             to_iso(self.clock()))
        if failed is not None:
            logger.warning("Step %s failed after unexpected error", step["id"],
                           extra={"step_id": step["id"], "campaign_id": step["campaign_id"]})

    def _defer(self, step: dict, reason: str) -> str:
        run_at = to_iso(self.clock() + self.rate_limit_defer)
        updated = self.repo.transition_step(step["id"], [StepStatus.EXECUTING], StepStatus.APPROVED,
                                            {"scheduled_at": run_at})
        if updated is None:
            raise InvalidTransitionError(step["id"], "unknown", StepStatus.APPROVED.value, "claim lost")
        logger.info("Approved step %s deferred to %s: %s", step["id"], run_at, reason,
                    extra={"step_id": step["id"], "campaign_id": step["campaign_id"]})
        return "deferred"

    # ─── APPROVAL RESOLUTION ─────────────────────────────────────

    def resolve_approval(self, approval_id: str, decision, resolver_id: str, notes: str = None) -> dict:
        """Resolve an approval item; an approved step is executed right away.

        If the campaign is not active the approved step waits for the first poll
        after it is resumed.
        """
        item = self.approvals.resolve(approval_id, decision, resolver_id, notes)
        outcome = ApprovalStatus(decision).value

        if outcome == ApprovalStatus.APPROVED.value:
            campaign = self.repo.get_campaign(item["campaign_id"]) or {}
            if campaign.get("status") == CampaignStatus.ACTIVE.value:
                step = self.repo.get_step(item["scheduled_step_id"])
                claimed = self.repo.claim_step(step["id"], StepStatus.APPROVED, self.worker_id,
                                               to_iso(self.clock()))
                if claimed is None:
                    outcome = "skipped"
                else:
                    try:
                        outcome = self._dispatch(claimed)
                    except Exception as e:
                        log_execution_error(
                            self.repo.db_path, phase="resolve_approval", error=e,
                            campaign_id=item["campaign_id"], contact_id=item["contact_id"],
                            step_id=step["id"], severity="error",
                        )
                        self._fail_claim(step, e)
                        outcome = "error"
            else:
                outcome = "queued"

        return {"approval": item, "outcome": outcome,
                "step": self.repo.get_step(item["scheduled_step_id"])}

    # ─── MAINTENANCE ─────────────────────────────────────────────

    def release_stale_claims(self) -> list:
        """Return steps whose claim outlived the timeout (crashed worker) to the poller."""
        cutoff = to_iso(self.clock() - self.claim_timeout)
        released = self.repo.release_stale_claims(cutoff)
        if released:
            logger.warning("Released %d stale claim(s): %s", len(released), ", ".join(released),
                           extra={"phase": "release_claims"})
        return released
