"""
Unit tests for the step executor and retry policies.

Sections:
  1. Recipient resolution
  2. Successful sends
  3. Failures (no retry by default, backoff, transient-only)
  4. Rate controller refusal
  5. Claiming
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

from datetime import timedelta

import pytest

from campaign_engine.engine.errors import ExecutionError, InvalidTransitionError, PolicyBlockedError
from campaign_engine.engine.executor import StepExecutor, resolve_recipient
from campaign_engine.engine.rate_control import RateController
from campaign_engine.engine.retry import (
    BackoffRetryPolicy,
    NoRetryPolicy,
    TransientErrorRetryPolicy,
    build_retry_policy,
)


class RefusingRateController(RateController):
    def __init__(self):
        self.recorded = []

    def can_perform_action(self, account_id, action_type):
        return {"allowed": False, "reason": f"Daily {action_type} limit reached (0/day)",
                "remaining_today": 0, "remaining_this_week": 5}

    def record_action(self, account_id, action_type):
        self.recorded.append(action_type)


class CountingRateController(RefusingRateController):
    def can_perform_action(self, account_id, action_type):
        return {"allowed": True, "reason": None, "remaining_today": 3, "remaining_this_week": 10}


def _email_step(engine, campaign):
    return engine.repo.list_steps(campaign["id"])[0]


# ─── RECIPIENTS ───────────────────────────────────────────────

def test_resolve_recipient_per_channel():
    contact = {"email": "a@b.com", "phone": "+1555", "linkedin_url": "https://linkedin.com/in/a"}
    assert resolve_recipient("email", contact) == "a@b.com"
    assert resolve_recipient("sms", contact) == "+1555"
    assert resolve_recipient("voicemail", contact) == "+1555"
    assert resolve_recipient("linkedin_connection", contact) == "https://linkedin.com/in/a"


def test_resolve_recipient_missing_field():
    with pytest.raises(ExecutionError):
        resolve_recipient("sms", {"email": "a@b.com"})
    with pytest.raises(ExecutionError):
        resolve_recipient("fax", {"email": "a@b.com"})


# ─── SUCCESS ──────────────────────────────────────────────────

def test_successful_send_marks_step_sent(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    step = _email_step(engine, campaign)

    result = engine.executor.execute(step)
    assert result["status"] == "sent"
    assert result["message_id"] == "msg_1"
    assert result["executed_at"].startswith("2026-03-02T10:00:00")
    assert result["claimed_by"] is None
    assert sender.calls == [{"channel": "email", "recipient": "jane@testcorp.com",
                             "content": "Hi Jane, a quick idea for Test Corp.",
                             "subject": "Hello Jane"}]


def test_success_records_rate_action(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    rate = CountingRateController()
    executor = StepExecutor(engine.repo, sender, rate_controller=rate, clock=clock)
    executor.execute(_email_step(engine, campaign))
    assert rate.recorded == ["email"]


# ─── FAILURES ─────────────────────────────────────────────────

def test_failed_send_is_terminal_without_retry(engine, make_campaign, sender):
    campaign = make_campaign()
    sender.failures["email"] = "550 mailbox unavailable"
    result = engine.executor.execute(_email_step(engine, campaign))

    assert result["status"] == "failed"
    assert result["error_message"] == "550 mailbox unavailable"
    assert result["executed_at"] is not None
    assert len(sender.calls) == 1


def test_sender_exception_counts_as_failure(engine, make_campaign, sender):
    campaign = make_campaign()
    sender.raise_on.add("email")
    result = engine.executor.execute(_email_step(engine, campaign))
    assert result["status"] == "failed"
    assert "ConnectionError" in result["error_message"]


def test_malformed_send_result_counts_as_failure(engine, make_campaign, sender, monkeypatch):
    campaign = make_campaign()
    monkeypatch.setattr(sender, "send", lambda *args, **kwargs: "ok")
    result = engine.executor.execute(_email_step(engine, campaign))
    assert result["status"] == "failed"
    assert result["error_message"] == "Malformed send result: 'ok'"
    assert result["claimed_by"] is None


def test_missing_recipient_fails_without_sending(engine, make_campaign, sender):
    contact = engine.repo.create_contact({"workspace_id": "ws_test", "first_name": "NoMail"})
    campaign = make_campaign(contact_ids=[contact["id"]])
    result = engine.executor.execute(_email_step(engine, campaign))
    assert result["status"] == "failed"
    assert "no email" in result["error_message"]
    assert sender.calls == []


def test_backoff_policy_releases_step_for_retry(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    sender.failures["email"] = "503 try later"
    executor = StepExecutor(engine.repo, sender, retry_policy=BackoffRetryPolicy(3, 60), clock=clock)

    first = executor.execute(_email_step(engine, campaign))
    assert first["status"] == "pending"
    assert first["attempt_count"] == 1
    assert first["scheduled_at"].startswith("2026-03-02T10:01:00")

    second = executor.execute(first)
    assert second["status"] == "pending"
    assert second["attempt_count"] == 2
    assert second["scheduled_at"].startswith("2026-03-02T10:02:00")

    third = executor.execute(second)
    assert third["status"] == "failed"
    assert len(sender.calls) == 3


def test_transient_policy_only_retries_network_errors(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    executor = StepExecutor(engine.repo, sender, retry_policy=TransientErrorRetryPolicy(3, 300),
                            clock=clock)
    sender.raise_on.add("email")
    retried = executor.execute(_email_step(engine, campaign))
    assert retried["status"] == "pending"

    sender.raise_on.clear()
    sender.failures["email"] = "550 mailbox unavailable"
    failed = executor.execute(retried)
    assert failed["status"] == "failed"


def test_retry_of_approved_step_returns_to_approved(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    step = _email_step(engine, campaign)
    item = engine.approvals.create_approval_item(step, 50, "check")
    engine.approvals.resolve(item["id"], "approved", "user_1")
    sender.failures["email"] = "connection reset by peer"

    executor = StepExecutor(engine.repo, sender, retry_policy=BackoffRetryPolicy(3, 60), clock=clock)
    result = executor.execute(engine.repo.get_step(step["id"]))
    assert result["status"] == "approved"
    assert result["approved_by"] == "user_1"


def test_build_retry_policy():
    assert isinstance(build_retry_policy("none"), NoRetryPolicy)
    assert isinstance(build_retry_policy("backoff"), BackoffRetryPolicy)
    assert isinstance(build_retry_policy("Transient"), TransientErrorRetryPolicy)
    with pytest.raises(ValueError):
        build_retry_policy("forever")


def test_backoff_delays_double(clock):
    policy = BackoffRetryPolicy(max_attempts=5, base_seconds=100)
    now = clock()
    assert policy.next_attempt({"attempt_count": 0}, "x", now) == now + timedelta(seconds=100)
    assert policy.next_attempt({"attempt_count": 1}, "x", now) == now + timedelta(seconds=200)
    assert policy.next_attempt({"attempt_count": 2}, "x", now) == now + timedelta(seconds=400)
    assert policy.next_attempt({"attempt_count": 4}, "x", now) is None


# ─── RATE CONTROL ─────────────────────────────────────────────

def test_rate_refusal_raises_and_leaves_step_claimed(engine, make_campaign, sender, clock):
    campaign = make_campaign()
    executor = StepExecutor(engine.repo, sender, rate_controller=RefusingRateController(),
                            clock=clock, worker_id="w-rate")
    step = _email_step(engine, campaign)

    with pytest.raises(PolicyBlockedError) as exc:
        executor.execute(step)
    assert exc.value.remaining_today == 0
    assert exc.value.remaining_this_week == 5
    assert sender.calls == []

    current = engine.repo.get_step(step["id"])
    assert current["status"] == "executing"
    assert current["claimed_by"] == "w-rate"


# ─── CLAIMING ─────────────────────────────────────────────────

def test_execute_refuses_terminal_step(engine, make_campaign, sender):
    campaign = make_campaign()
    sent = engine.executor.execute(_email_step(engine, campaign))
    with pytest.raises(InvalidTransitionError):
        engine.executor.execute(sent)
    assert len(sender.calls) == 1


def test_execute_refuses_stale_snapshot(engine, make_campaign, sender):
    campaign = make_campaign()
    step = _email_step(engine, campaign)
    engine.repo.claim_step(step["id"], "pending", "someone-else", "2026-03-02T10:00:00.000000")

    with pytest.raises(InvalidTransitionError):
        engine.executor.execute(step)
    assert sender.calls == []
