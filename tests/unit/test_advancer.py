"""
Unit tests for the step advancer: a contact's step N+1 is only released once step N is sent.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

from campaign_engine.db.connection import FAR_FUTURE

THREE_STEPS = [
    {"channel": "email", "subject": "One", "content": "First touch", "delay": 0},
    {"channel": "sms", "content": "Second touch", "delay": 2, "delay_unit": "hours"},
    {"channel": "email", "subject": "Three", "content": "Third touch", "delay": 1},
]


def _steps(engine, campaign):
    return {s["step_index"]: s for s in engine.repo.list_steps(campaign["id"])}


def _send(engine, step):
    engine.repo.claim_step(step["id"], step["status"], "w1", "2026-03-02T10:00:00.000000")
    return engine.repo.transition_step(step["id"], ["executing"], "sent", {"message_id": "m"})


def test_later_steps_wait_until_predecessor_sent(engine, make_campaign):
    campaign = make_campaign(workflow=THREE_STEPS)
    steps = _steps(engine, campaign)
    assert steps[2]["scheduled_at"] == FAR_FUTURE
    assert steps[3]["scheduled_at"] == FAR_FUTURE

    # Step 1 still pending: nothing moves
    assert engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1) is None
    assert _steps(engine, campaign)[2]["scheduled_at"] == FAR_FUTURE


def test_advance_schedules_next_step_after_its_delay(engine, make_campaign, clock):
    campaign = make_campaign(workflow=THREE_STEPS)
    steps = _steps(engine, campaign)
    _send(engine, steps[1])

    clock.advance(minutes=30)
    nxt = engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1)
    assert nxt["step_index"] == 2
    assert nxt["status"] == "pending"
    assert nxt["scheduled_at"].startswith("2026-03-02T12:30:00")
    # Step 3 stays parked
    assert _steps(engine, campaign)[3]["scheduled_at"] == FAR_FUTURE


def test_day_delay_uses_default_unit(engine, make_campaign, clock):
    campaign = make_campaign(workflow=THREE_STEPS)
    steps = _steps(engine, campaign)
    _send(engine, steps[1])
    engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1)
    _send(engine, _steps(engine, campaign)[2])

    nxt = engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 2)
    assert nxt["scheduled_at"].startswith("2026-03-03T10:00:00")


def test_failed_or_rejected_step_stalls_sequence(engine, make_campaign):
    campaign = make_campaign(workflow=THREE_STEPS)
    steps = _steps(engine, campaign)
    engine.repo.claim_step(steps[1]["id"], "pending", "w1", "2026-03-02T10:00:00.000000")
    engine.repo.transition_step(steps[1]["id"], ["executing"], "failed", {"error_message": "bounce"})

    assert engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1) is None
    assert _steps(engine, campaign)[2]["scheduled_at"] == FAR_FUTURE


def test_last_step_has_nothing_to_advance(engine, make_campaign):
    campaign = make_campaign(workflow=THREE_STEPS[:1])
    step = _steps(engine, campaign)[1]
    _send(engine, step)
    assert engine.advancer.advance(campaign["id"], step["contact_id"], 1) is None


def test_advance_is_idempotent_for_moving_steps(engine, make_campaign):
    campaign = make_campaign(workflow=THREE_STEPS)
    steps = _steps(engine, campaign)
    _send(engine, steps[1])
    engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1)
    engine.repo.claim_step(steps[2]["id"], "pending", "w1", "2026-03-02T10:00:00.000000")

    # Next step already claimed: left alone
    assert engine.advancer.advance(campaign["id"], steps[1]["contact_id"], 1) is None
    assert engine.repo.get_step(steps[2]["id"])["status"] == "executing"
