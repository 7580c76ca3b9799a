"""
Retry policies for failed channel sends.

A policy answers one question: given a failed step and its error, when (if ever)
should it be tried again? Returning None means the step is marked failed.
The default is NoRetryPolicy: a failed send waits for a human.
"""

from datetime import datetime, timedelta
from typing import Optional

from campaign_engine import config

# Substrings that mark an error as a network hiccup rather than a real rejection
TRANSIENT_MARKERS = (
    "proxy", "timeout", "timed out", "econnrefused", "econnreset",
    "connection refused", "connection reset", "temporarily unavailable",
)


class RetryPolicy:
    """Base class. Subclasses override next_attempt()."""

    name = "base"

    def next_attempt(self, step: dict, error: str, now: datetime) -> Optional[datetime]:
        raise NotImplementedError


class NoRetryPolicy(RetryPolicy):
    name = "none"

    def next_attempt(self, step, error, now):
        return None


class BackoffRetryPolicy(RetryPolicy):
    """Retry any failure with exponential backoff, up to max_attempts sends in total."""

    name = "backoff"

    def __init__(self, max_attempts: int = 3, base_seconds: int = 900):
        self.max_attempts = max_attempts
        self.base_seconds = base_seconds

    def next_attempt(self, step, error, now):
        attempts = (step.get("attempt_count") or 0) + 1
        if attempts >= self.max_attempts:
            return None
        return now + timedelta(seconds=self.base_seconds * (2 ** (attempts - 1)))


class TransientErrorRetryPolicy(RetryPolicy):
    """Retry only network-style errors, after a fixed delay."""

    name = "transient"

    def __init__(self, max_attempts: int = 3, delay_seconds: int = 900):
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds

    @staticmethod
    def is_transient(error: str) -> bool:
        text = (error or "").lower()
        return any(marker in text for marker in TRANSIENT_MARKERS)

    def next_attempt(self, step, error, now):
        if not self.is_transient(error):
            return None
        if (step.get("attempt_count") or 0) + 1 >= self.max_attempts:
            return None
        return now + timedelta(seconds=self.delay_seconds)


def build_retry_policy(name: str = None) -> RetryPolicy:
    """Build the policy named in config (ENGINE_RETRY_POLICY)."""
    name = (name or config.RETRY_POLICY).lower()
    if name == "backoff":
        return BackoffRetryPolicy(config.RETRY_MAX_ATTEMPTS, config.RETRY_BACKOFF_SECONDS)
    if name == "transient":
        return TransientErrorRetryPolicy(config.RETRY_MAX_ATTEMPTS, config.RETRY_BACKOFF_SECONDS)
    if name == "none":
        return NoRetryPolicy()
    raise ValueError(f"Unknown retry policy '{name}'")
