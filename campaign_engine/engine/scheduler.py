"""
Campaign Scheduler - campaign lifecycle and step materialization.

launch() turns workflow x contacts into one campaign_scheduled_steps row per
contact per step, all in one transaction. Step 1 is due at start + its delay;
every later step is parked at FAR_FUTURE until the advancer releases it.
"""

import re
from datetime import timedelta
from typing import List, Optional

from campaign_engine import config
from campaign_engine.db.connection import FAR_FUTURE, to_iso, utcnow
from campaign_engine.engine.errors import CampaignStateError, NotFoundError, WorkflowValidationError
from campaign_engine.engine.models import (
    AutonomyLevel,
    CampaignStatus,
    StepStatus,
    WorkflowStep,
    validate_workflow,
)
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("scheduler")

_TOKEN_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def personalize(template: Optional[str], contact: dict) -> Optional[str]:
    """Fill {{first_name}}-style tokens from the contact (case-insensitive).

    Unknown tokens are left as they are so a reviewer can spot them.
    """
    if template is None:
        return None
    extra = contact.get("personalization") or {}
    first = contact.get("first_name") or ""
    last = contact.get("last_name") or ""
    values = {
        "first_name": first,
        "last_name": last,
        "name": f"{first} {last}".strip(),
        "company": contact.get("company") or "",
        "email": contact.get("email") or "",
        "title": contact.get("title") or "",
    }
    if isinstance(extra, dict):
        for key, value in extra.items():
            values.setdefault(str(key).lower(), "" if value is None else str(value))

    def _sub(match):
        key = match.group(1).lower()
        return values[key] if key in values else match.group(0)

    return _TOKEN_RE.sub(_sub, template)


class CampaignScheduler:

    def __init__(self, repo, clock=None):
        self.repo = repo
        self.clock = clock or utcnow

    # ─── CAMPAIGNS ───────────────────────────────────────────────

    def create_campaign(self, workspace_id: str, name: str, workflow: list, owner_id: str = None,
                        autonomy_level=None, confidence_threshold: int = None) -> dict:
        """Validate the workflow, then create a draft campaign.

        Autonomy settings not given explicitly come from the workspace's
        agent config, then from engine defaults.
        """
        steps = validate_workflow(workflow)
        if confidence_threshold is not None and not 0 <= confidence_threshold <= 100:
            raise WorkflowValidationError(["confidence_threshold must be between 0 and 100"])

        agent_config = self.repo.get_agent_config(workspace_id) or {}
        level = AutonomyLevel.parse(
            autonomy_level or agent_config.get("autonomy_level") or config.DEFAULT_AUTONOMY_LEVEL
        )
        if confidence_threshold is None:
            confidence_threshold = agent_config.get("confidence_threshold",
                                                    config.DEFAULT_CONFIDENCE_THRESHOLD)

        campaign = self.repo.create_campaign({
            "workspace_id": workspace_id,
            "owner_id": owner_id,
            "name": name,
            "workflow": [s.model_dump(mode="json") for s in steps],
            "status": CampaignStatus.DRAFT,
            "autonomy_level": level,
            "confidence_threshold": confidence_threshold,
        })
        logger.info("Campaign %s created with %d step(s), autonomy=%s threshold=%s",
                    campaign["id"], len(steps), level.value, confidence_threshold,
                    extra={"campaign_id": campaign["id"]})
        return campaign

    def get_campaign(self, campaign_id: str) -> dict:
        campaign = self.repo.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundError("campaign", campaign_id)
        return campaign

    def update_autonomy(self, campaign_id: str, autonomy_level=None,
                        confidence_threshold: int = None) -> dict:
        self.get_campaign(campaign_id)
        data = {}
        if autonomy_level is not None:
            data["autonomy_level"] = AutonomyLevel.parse(autonomy_level)
        if confidence_threshold is not None:
            if not 0 <= confidence_threshold <= 100:
                raise WorkflowValidationError(["confidence_threshold must be between 0 and 100"])
            data["confidence_threshold"] = confidence_threshold
        return self.repo.update_campaign(campaign_id, data)

    def add_contact(self, campaign_id: str, data: dict) -> dict:
        """Create a contact in the campaign's workspace. It is scheduled on the next launch()."""
        campaign = self.get_campaign(campaign_id)
        if campaign["status"] == CampaignStatus.COMPLETED.value:
            raise CampaignStateError(campaign_id, campaign["status"], "add contacts to")
        contact = self.repo.create_contact({**data, "workspace_id": campaign["workspace_id"]})
        logger.info("Contact %s added to campaign %s", contact["id"], campaign_id,
                    extra={"campaign_id": campaign_id, "contact_id": contact["id"]})
        return contact

    # ─── LAUNCH ──────────────────────────────────────────────────

    def launch(self, campaign_id: str, contact_ids: List[str], start_at=None) -> dict:
        """Materialize every step for every contact and activate the campaign.

        Returns {"campaign", "scheduled", "contacts"}. Contacts that already have
        rows are skipped row-by-row, so launching again with more contacts only
        adds the new ones.
        """
        campaign = self.get_campaign(campaign_id)
        if campaign["status"] == CampaignStatus.COMPLETED.value:
            raise CampaignStateError(campaign_id, campaign["status"], "launch")

        steps = validate_workflow(campaign["workflow"])
        contacts = self.repo.get_contacts(list(dict.fromkeys(contact_ids)))
        missing = set(contact_ids) - {c["id"] for c in contacts}
        if missing:
            raise NotFoundError("contact", ", ".join(sorted(missing)))

        start = start_at or self.clock()
        rows = []
        for contact in contacts:
            rows.extend(self._materialize(campaign, contact, steps, start))

        scheduled = self.repo.insert_steps(rows)
        if campaign["status"] != CampaignStatus.ACTIVE.value:
            campaign = self.repo.update_campaign(campaign_id, {
                "status": CampaignStatus.ACTIVE,
                "launched_at": campaign.get("launched_at") or to_iso(self.clock()),
            })

        logger.info("Campaign %s launched: %d step(s) for %d contact(s)",
                    campaign_id, scheduled, len(contacts), extra={"campaign_id": campaign_id})
        return {"campaign": campaign, "scheduled": scheduled, "contacts": len(contacts)}

    def _materialize(self, campaign: dict, contact: dict, steps: List[WorkflowStep], start) -> list:
        rows = []
        for index, step in enumerate(steps, start=1):
            if index == 1:
                scheduled_at = to_iso(start + timedelta(seconds=step.delay_seconds))
            else:
                scheduled_at = FAR_FUTURE
            data = {"delay_seconds": step.delay_seconds}
            if step.confidence is not None:
                data["sophia_confidence"] = step.confidence
            rows.append({
                "campaign_id": campaign["id"],
                "workspace_id": campaign["workspace_id"],
                "contact_id": contact["id"],
                "step_index": index,
                "channel": step.channel,
                "subject": personalize(step.subject, contact),
                "content": personalize(step.content, contact),
                "status": StepStatus.PENDING,
                "scheduled_at": scheduled_at,
                "requires_approval": False,
                "personalization_data": data,
            })
        return rows

    # ─── PAUSE / RESUME ──────────────────────────────────────────

    def pause(self, campaign_id: str) -> dict:
        """Stop future polls from picking up this campaign. In-flight sends finish."""
        campaign = self.get_campaign(campaign_id)
        updated = self.repo.set_campaign_status(campaign_id, CampaignStatus.PAUSED,
                                                [CampaignStatus.ACTIVE])
        if updated is None:
            raise CampaignStateError(campaign_id, campaign["status"], "pause")
        logger.info("Campaign %s paused", campaign_id, extra={"campaign_id": campaign_id})
        return updated

    def resume(self, campaign_id: str) -> dict:
        campaign = self.get_campaign(campaign_id)
        updated = self.repo.set_campaign_status(campaign_id, CampaignStatus.ACTIVE,
                                                [CampaignStatus.PAUSED])
        if updated is None:
            raise CampaignStateError(campaign_id, campaign["status"], "resume")
        logger.info("Campaign %s resumed", campaign_id, extra={"campaign_id": campaign_id})
        return updated
