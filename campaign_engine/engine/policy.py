"""
Autonomy Policy - decides whether a step may fire on its own or needs human sign-off.

The rule is a table keyed by autonomy level. Each row is a small function of
(channel, confidence, threshold) returning (requires_approval, reason). Nothing
here touches the database or the clock.

    Level             | Requires approval when
    ------------------+---------------------------------------------------------
    manual_approval   | always
    semi_autonomous   | channel is always-approval OR confidence < threshold
    full_autonomous   | never
"""

from typing import NamedTuple

from campaign_engine.engine.models import (
    ALWAYS_APPROVAL_CHANNELS,
    CHANNEL_BASELINE_CONFIDENCE,
    DEFAULT_BASELINE_CONFIDENCE,
    AutonomyLevel,
)


class PolicyVerdict(NamedTuple):
    requires_approval: bool
    reason: str


def _manual(channel: str, confidence: float, threshold: float) -> PolicyVerdict:
    return PolicyVerdict(True, "Autonomy level is set to manual approval - all actions require human review")


def _semi(channel: str, confidence: float, threshold: float) -> PolicyVerdict:
    if channel in ALWAYS_APPROVAL_CHANNELS:
        return PolicyVerdict(True, f"{channel} channel requires approval in semi-autonomous mode")
    if confidence < threshold:
        return PolicyVerdict(
            True,
            f"Confidence level ({confidence:g}%) is below threshold ({threshold:g}%) for semi-autonomous mode",
        )
    return PolicyVerdict(False, "Meets semi-autonomous criteria")


def _full(channel: str, confidence: float, threshold: float) -> PolicyVerdict:
    return PolicyVerdict(False, "Fully autonomous mode - no approval required")


_DECISION_TABLE = {
    AutonomyLevel.MANUAL_APPROVAL: _manual,
    AutonomyLevel.SEMI_AUTONOMOUS: _semi,
    AutonomyLevel.FULL_AUTONOMOUS: _full,
}


def explain(channel: str, confidence: float, autonomy_level, threshold: float) -> PolicyVerdict:
    """Look up the verdict and the human-readable reason behind it."""
    level = AutonomyLevel.parse(autonomy_level)
    rule = _DECISION_TABLE[level]
    return rule((channel or "").lower(), confidence, threshold)


def decide(channel: str, confidence: float, autonomy_level, threshold: float) -> bool:
    """True if the step must wait for a human."""
    return explain(channel, confidence, autonomy_level, threshold).requires_approval


def resolve_confidence(step: dict) -> int:
    """Confidence for a materialized step.

    Uses the upstream score stored at launch when there is one, otherwise the
    channel's baseline.
    """
    data = step.get("personalization_data") or {}
    score = data.get("sophia_confidence") if isinstance(data, dict) else None
    if score is not None:
        return int(score)
    return CHANNEL_BASELINE_CONFIDENCE.get(step.get("channel"), DEFAULT_BASELINE_CONFIDENCE)
