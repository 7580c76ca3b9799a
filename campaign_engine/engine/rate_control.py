"""
Rate / Safety Controllers - per-channel throughput caps consulted before every send.

Interface:
    can_perform_action(account_id, action_type)
        -> {"allowed", "reason", "remaining_today", "remaining_this_week"}
    record_action(account_id, action_type)

StepCountRateController derives usage from the steps already sent, so counts
survive restarts and are shared by every worker on the same database.
"""

from datetime import timedelta

from campaign_engine.db.connection import to_iso, utcnow
from campaign_engine.engine.models import RATE_ACTION_TYPES

# Conservative LinkedIn warmup defaults; other action types are uncapped
DEFAULT_DAILY_LIMITS = {"connection_request": 20, "message": 15}
DEFAULT_WEEKLY_LIMITS = {"connection_request": 100, "message": 100}


class RateController:
    def can_perform_action(self, account_id: str, action_type: str) -> dict:
        raise NotImplementedError

    def record_action(self, account_id: str, action_type: str):
        raise NotImplementedError


class UnlimitedRateController(RateController):
    def can_perform_action(self, account_id, action_type):
        return {"allowed": True, "reason": None,
                "remaining_today": None, "remaining_this_week": None}

    def record_action(self, account_id, action_type):
        pass


class StepCountRateController(RateController):
    """Caps per workspace and action type, counted from sent steps."""

    def __init__(self, repo, daily_limits: dict = None, weekly_limits: dict = None, clock=None):
        self.repo = repo
        self.daily_limits = DEFAULT_DAILY_LIMITS if daily_limits is None else daily_limits
        self.weekly_limits = DEFAULT_WEEKLY_LIMITS if weekly_limits is None else weekly_limits
        self.clock = clock or utcnow

    def _channels(self, action_type: str):
        return [ch for ch, kind in RATE_ACTION_TYPES.items() if kind == action_type]

    def can_perform_action(self, account_id, action_type):
        daily = self.daily_limits.get(action_type)
        weekly = self.weekly_limits.get(action_type)
        if daily is None and weekly is None:
            return {"allowed": True, "reason": None,
                    "remaining_today": None, "remaining_this_week": None}

        now = self.clock()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = day_start - timedelta(days=day_start.weekday())
        channels = self._channels(action_type)
        sent_today = self.repo.count_sent_since(account_id, channels, to_iso(day_start))
        sent_week = self.repo.count_sent_since(account_id, channels, to_iso(week_start))

        remaining_today = None if daily is None else max(daily - sent_today, 0)
        remaining_week = None if weekly is None else max(weekly - sent_week, 0)

        if remaining_today == 0:
            reason = f"Daily {action_type} limit reached ({daily}/day)"
        elif remaining_week == 0:
            reason = f"Weekly {action_type} limit reached ({weekly}/week)"
        else:
            reason = None
        return {"allowed": reason is None, "reason": reason,
                "remaining_today": remaining_today, "remaining_this_week": remaining_week}

    def record_action(self, account_id, action_type):
        # Usage is read back from sent steps; nothing extra to store
        pass
