"""
Step Advancer - unlocks a contact's next step once the current one is sent.

Later steps are materialized at launch with a far-future scheduled_at. When step N
reaches 'sent', step N+1 (if still pending) is rescheduled to now plus its own
configured delay, so the next poll after that moment picks it up. A failed or
rejected step never advances: the contact's sequence stalls until a human acts.
"""

from datetime import timedelta
from typing import Optional

from campaign_engine.db.connection import to_iso, utcnow
from campaign_engine.engine.models import StepStatus
from campaign_engine.logging_config import get_engine_logger

logger = get_engine_logger("advancer")


class StepAdvancer:

    def __init__(self, repo, clock=None):
        self.repo = repo
        self.clock = clock or utcnow

    def advance(self, campaign_id: str, contact_id: str, completed_step_index: int) -> Optional[dict]:
        """Schedule step `completed_step_index + 1` for this contact.

        Returns the rescheduled step, or None when there is nothing to advance
        (predecessor not sent, no next step, or next step already moving).
        """
        log_extra = {"campaign_id": campaign_id, "contact_id": contact_id}

        current = self.repo.get_step_by_index(campaign_id, contact_id, completed_step_index)
        if current is None or current["status"] != StepStatus.SENT.value:
            logger.debug("Not advancing past step %s: predecessor is %s", completed_step_index,
                         current["status"] if current else "missing", extra=log_extra)
            return None

        nxt = self.repo.get_step_by_index(campaign_id, contact_id, completed_step_index + 1)
        if nxt is None:
            logger.info("Contact %s finished the sequence at step %s", contact_id,
                        completed_step_index, extra=log_extra)
            return None
        if nxt["status"] != StepStatus.PENDING.value:
            return None

        data = nxt.get("personalization_data") or {}
        delay_seconds = int(data.get("delay_seconds", 0)) if isinstance(data, dict) else 0
        run_at = self.clock() + timedelta(seconds=delay_seconds)

        updated = self.repo.update_step_schedule(nxt["id"], to_iso(run_at), StepStatus.PENDING)
        if updated:
            logger.info("Step %s for contact %s scheduled at %s", nxt["step_index"], contact_id,
                        updated["scheduled_at"], extra={**log_extra, "step_id": nxt["id"]})
        return updated
