"""
Campaign Run Logger - closes out one ExecutionLog row per orchestrator run.

Counts come from a single GROUP BY over the campaign's steps:
    total            all rows
    completed        sent
    failed           failed
    pending_approval requires_approval
"""

from campaign_engine import config
from campaign_engine.db.connection import to_iso, utcnow
from campaign_engine.engine.errors import NotFoundError
from campaign_engine.engine.models import AutonomyLevel, StepStatus
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("run_logger")


class CampaignRunLogger:

    def __init__(self, repo, clock=None):
        self.repo = repo
        self.clock = clock or utcnow

    def record(self, campaign_id: str, started_at: str = None, execution_type: str = "full_run",
               error_message: str = None) -> dict:
        campaign = self.repo.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundError("campaign", campaign_id)

        counts = self.repo.count_steps_by_status(campaign_id)
        completed = counts.get(StepStatus.SENT.value, 0)
        failed = counts.get(StepStatus.FAILED.value, 0)
        pending_approval = counts.get(StepStatus.REQUIRES_APPROVAL.value, 0)
        total = sum(counts.values())

        finished_at = to_iso(self.clock())
        autonomy = AutonomyLevel.parse(campaign.get("autonomy_level") or config.DEFAULT_AUTONOMY_LEVEL)
        status = "failed" if (failed > 0 and completed == 0) or error_message else "completed"

        log = self.repo.insert_execution_log({
            "campaign_id": campaign_id,
            "workspace_id": campaign.get("workspace_id"),
            "execution_type": execution_type,
            "status": status,
            "total_steps": total,
            "completed_steps": completed,
            "failed_steps": failed,
            "pending_approval_steps": pending_approval,
            "started_at": started_at or finished_at,
            "completed_at": finished_at,
            "autonomy_level_used": autonomy.value,
            "error_message": error_message,
        })
        logger.info("Run %s for campaign %s: %d total, %d sent, %d failed, %d awaiting approval",
                    log["id"], campaign_id, total, completed, failed, pending_approval,
                    extra={"run_id": log["id"], "campaign_id": campaign_id})
        return log

    def list_logs(self, campaign_id: str, limit: int = 50) -> list:
        return self.repo.list_execution_logs(campaign_id, limit=limit)
