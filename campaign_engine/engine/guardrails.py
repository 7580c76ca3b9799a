"""
Safety guardrails applied to steps the autonomy table would auto-execute.

Each check raises PolicyBlockedError with the reason a human should see. They can
only add approval, never remove it.
"""

import re
from datetime import datetime
from typing import Iterable, Optional

from campaign_engine import config
from campaign_engine.engine.errors import PolicyBlockedError


def check_content(subject: Optional[str], content: Optional[str],
                  keywords: Iterable[str] = None):
    """Block messages that mention sensitive topics (pricing, contracts, ...)."""
    keywords = config.SENSITIVE_KEYWORDS if keywords is None else list(keywords)
    text = f"{subject or ''}\n{content or ''}"
    hits = [k for k in keywords
            if re.search(rf"\b{re.escape(k)}\b", text, flags=re.IGNORECASE)]
    if hits:
        raise PolicyBlockedError(f"Sensitive content detected: {', '.join(hits)}")


def check_working_hours(now: datetime, start: int = None, end: int = None):
    """Block dispatch outside [start, end) hours of the engine clock."""
    start = config.WORKING_HOURS_START if start is None else start
    end = config.WORKING_HOURS_END if end is None else end
    if now.hour < start or now.hour >= end:
        raise PolicyBlockedError(f"Outside working hours ({start}:00-{end}:00)")


class Guardrails:
    """Bundle of the configured checks, run in order."""

    def __init__(self, keywords: Iterable[str] = None, working_hours_only: bool = None,
                 start: int = None, end: int = None):
        self.keywords = list(config.SENSITIVE_KEYWORDS if keywords is None else keywords)
        self.working_hours_only = (config.WORKING_HOURS_ONLY
                                   if working_hours_only is None else working_hours_only)
        self.start = start
        self.end = end

    def check(self, step: dict, now: datetime):
        check_content(step.get("subject"), step.get("content"), self.keywords)
        if self.working_hours_only:
            check_working_hours(now, self.start, self.end)
