"""
Shared pytest fixtures for the campaign engine test suite.
"""

import os
import sys
from datetime import datetime, timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from campaign_engine.db.init_db import init_db
from campaign_engine.db.repository import CampaignRepository
from campaign_engine.engine.channels import ChannelSender, send_result
from campaign_engine.engine.factory import build_engine
from campaign_engine.engine.guardrails import Guardrails
from campaign_engine.engine.rate_control import UnlimitedRateController
from campaign_engine.engine.retry import NoRetryPolicy


# A Monday, inside working hours
START = datetime(2026, 3, 2, 10, 0, 0)

# The end-to-end scenario: auto-sendable email, then an always-approval channel
TWO_STEP_WORKFLOW = [
    {"channel": "email", "subject": "Hello {{first_name}}",
     "content": "Hi {{first_name}}, a quick idea for {{company}}.", "delay": 0, "confidence": 90},
    {"channel": "linkedin_connection",
     "content": "Hi {{first_name}}, would love to connect.", "delay": 0, "confidence": 70},
]


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSender(ChannelSender):
    """Records every send. Channels in `failures` fail with the given error text."""

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.raise_on = set()

    def send(self, channel, recipient, content, subject=None):
        self.calls.append({"channel": channel, "recipient": recipient,
                           "content": content, "subject": subject})
        if channel in self.raise_on:
            raise ConnectionError("ECONNREFUSED 10.0.0.1:443")
        if channel in self.failures:
            return send_result(False, error=self.failures[channel])
        return send_result(True, message_id=f"msg_{len(self.calls)}")


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Create a fresh test database with all migrations applied."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setenv("ENGINE_DB_PATH", db_path)
    monkeypatch.setenv("ENGINE_JOURNAL_MODE", "DELETE")
    init_db(db_path, verbose=False)
    return db_path


@pytest.fixture
def repo(test_db):
    return CampaignRepository(test_db)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def engine(test_db, clock, sender):
    """Fully wired engine: fake clock and sender, no rate limits, no retries, no guardrails."""
    return build_engine(
        db_path=test_db,
        sender=sender,
        rate_controller=UnlimitedRateController(),
        retry_policy=NoRetryPolicy(),
        guardrails=Guardrails(keywords=[], working_hours_only=False),
        clock=clock,
        worker_id="test-worker",
        initialize=False,
    )


@pytest.fixture
def sample_contact(repo):
    return repo.create_contact({
        "workspace_id": "ws_test",
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane@testcorp.com",
        "phone": "+15550100",
        "linkedin_url": "https://linkedin.com/in/janedoe",
        "company": "Test Corp",
        "title": "QA Manager",
    })


@pytest.fixture
def make_campaign(engine, sample_contact):
    """Factory: create + launch a campaign for the sample contact (or given contacts)."""

    def _make(workflow=None, autonomy_level="semi_autonomous", threshold=80, contact_ids=None):
        campaign = engine.scheduler.create_campaign(
            workspace_id="ws_test", name="Test campaign",
            workflow=workflow or TWO_STEP_WORKFLOW,
            autonomy_level=autonomy_level, confidence_threshold=threshold,
        )
        engine.scheduler.launch(campaign["id"], contact_ids or [sample_contact["id"]])
        return engine.repo.get_campaign(campaign["id"])

    return _make
