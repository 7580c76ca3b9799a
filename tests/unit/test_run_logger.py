"""
Unit tests for the campaign run logger (ExecutionLog aggregation).
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

import pytest

from campaign_engine.engine.errors import NotFoundError


def _finish(engine, step, status):
    engine.repo.claim_step(step["id"], "pending", "w1", "2026-03-02T10:00:00.000000")
    engine.repo.transition_step(step["id"], ["executing"], status)


def test_fresh_campaign_counts(engine, make_campaign):
    campaign = make_campaign()
    log = engine.run_logger.record(campaign["id"])
    assert log["total_steps"] == 2
    assert log["completed_steps"] == 0
    assert log["failed_steps"] == 0
    assert log["pending_approval_steps"] == 0
    assert log["status"] == "completed"
    assert log["execution_type"] == "full_run"
    assert log["autonomy_level_used"] == "semi_autonomous"
    assert log["started_at"] == log["completed_at"]


def test_counts_follow_step_statuses(engine, make_campaign):
    campaign = make_campaign()
    first, second = engine.repo.list_steps(campaign["id"])
    _finish(engine, first, "sent")
    engine.approvals.create_approval_item(second, 70, "channel needs review")

    log = engine.run_logger.record(campaign["id"], started_at="2026-03-02T09:59:00.000000")
    assert log["completed_steps"] == 1
    assert log["pending_approval_steps"] == 1
    assert log["started_at"] == "2026-03-02T09:59:00.000000"
    assert log["status"] == "completed"


def test_all_failed_run_is_failed(engine, make_campaign):
    campaign = make_campaign()
    first = engine.repo.list_steps(campaign["id"])[0]
    _finish(engine, first, "failed")

    log = engine.run_logger.record(campaign["id"])
    assert log["failed_steps"] == 1
    assert log["status"] == "failed"


def test_error_message_marks_run_failed(engine, make_campaign):
    campaign = make_campaign()
    log = engine.run_logger.record(campaign["id"], error_message="gateway down")
    assert log["status"] == "failed"
    assert log["error_message"] == "gateway down"


def test_unknown_autonomy_recorded_as_manual(engine, make_campaign):
    campaign = make_campaign()
    engine.repo.update_campaign(campaign["id"], {"autonomy_level": "whatever"})
    assert engine.run_logger.record(campaign["id"])["autonomy_level_used"] == "manual_approval"


def test_unknown_campaign(engine):
    with pytest.raises(NotFoundError):
        engine.run_logger.record("cmp_missing")


def test_list_logs_newest_first(engine, make_campaign, clock):
    campaign = make_campaign()
    first = engine.run_logger.record(campaign["id"])
    clock.advance(minutes=5)
    second = engine.run_logger.record(campaign["id"], execution_type="metrics_snapshot")
    logs = engine.run_logger.list_logs(campaign["id"])
    assert [l["id"] for l in logs] == [second["id"], first["id"]]
    assert logs[0]["execution_type"] == "metrics_snapshot"
