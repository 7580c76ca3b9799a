"""
Unit tests for channel senders and per-channel connector configs.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))

import io
import json
from urllib.error import HTTPError, URLError

import pytest
from pydantic import ValidationError

from campaign_engine import config
from campaign_engine.engine import channels
from campaign_engine.engine.channels import HttpChannelSender, RecordingChannelSender
from campaign_engine.engine.models import (
    EmailConnectorConfig,
    LinkedInConnectorConfig,
    PhoneConnectorConfig,
    parse_connector_config,
)

CONNECTORS = {
    "email": {"from_address": "sdr@acme.io"},
    "linkedin": {"account_id": "li_123", "daily_connection_limit": 10},
    "phone": {"caller_id": "+15550000", "voicemail_drop": True},
}


class FakeResponse:
    def __init__(self, payload):
        self._body = json.dumps(payload).encode()

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


# ─── CONNECTOR CONFIGS ────────────────────────────────────────

def test_connector_config_picks_variant_by_channel():
    assert isinstance(parse_connector_config({"channel": "email", "from_address": "a@b.com"}),
                      EmailConnectorConfig)
    linkedin = parse_connector_config({"channel": "linkedin", "account_id": "li_1"})
    assert isinstance(linkedin, LinkedInConnectorConfig)
    assert linkedin.daily_connection_limit == 20


def test_connector_config_rejects_bad_data():
    with pytest.raises(ValidationError):
        parse_connector_config({"channel": "fax", "number": "1"})
    with pytest.raises(ValidationError):
        parse_connector_config({"channel": "email"})
    with pytest.raises(ValidationError):
        HttpChannelSender("http://gw", connectors={"linkedin": {"account_id": "x",
                                                                "daily_message_limit": -1}})


def test_step_channels_share_connectors():
    sender = HttpChannelSender("http://gw", connectors=CONNECTORS)
    assert isinstance(sender.connector_for("linkedin_connection"), LinkedInConnectorConfig)
    assert isinstance(sender.connector_for("voicemail"), PhoneConnectorConfig)
    assert sender.connector_for("sms") is None


# ─── HTTP SENDER ──────────────────────────────────────────────

def test_no_gateway_configured_fails(monkeypatch):
    monkeypatch.setattr(config, "CHANNEL_GATEWAY_URL", "")
    result = HttpChannelSender().send("email", "a@b.com", "hi", subject="s")
    assert result == {"success": False, "message_id": None, "error": "No channel gateway configured"}


def test_successful_gateway_send(monkeypatch):
    captured = {}

    def _urlopen(req, timeout=None):
        captured["url"] = req.full_url
        captured["body"] = json.loads(req.data.decode())
        captured["timeout"] = timeout
        return FakeResponse({"success": True, "message_id": "gw_42"})

    monkeypatch.setattr(channels, "urlopen", _urlopen)
    sender = HttpChannelSender("http://gw/", connectors=CONNECTORS, timeout=5)
    result = sender.send("linkedin_connection", "https://linkedin.com/in/a", "Hi!")

    assert result == {"success": True, "message_id": "gw_42", "error": None}
    assert captured["url"] == "http://gw/send"
    assert captured["timeout"] == 5
    assert captured["body"]["connector"]["account_id"] == "li_123"
    assert captured["body"]["channel"] == "linkedin_connection"


def test_gateway_reported_failure(monkeypatch):
    monkeypatch.setattr(channels, "urlopen",
                        lambda req, timeout=None: FakeResponse({"success": False, "error": "blocked"}))
    result = HttpChannelSender("http://gw").send("sms", "+1555", "hi")
    assert result["success"] is False
    assert result["error"] == "blocked"


def test_gateway_http_error(monkeypatch):
    def _urlopen(req, timeout=None):
        raise HTTPError(req.full_url, 429, "Too Many Requests", {},
                        io.BytesIO(b'{"error": "slow down"}'))

    monkeypatch.setattr(channels, "urlopen", _urlopen)
    result = HttpChannelSender("http://gw").send("sms", "+1555", "hi")
    assert result["error"] == "HTTP 429: slow down"


def test_gateway_unreachable(monkeypatch):
    def _urlopen(req, timeout=None):
        raise URLError("connection refused")

    monkeypatch.setattr(channels, "urlopen", _urlopen)
    result = HttpChannelSender("http://gw").send("email", "a@b.com", "hi", subject="s")
    assert result["success"] is False
    assert "connection refused" in result["error"]


# ─── RECORDING SENDER ─────────────────────────────────────────

def test_recording_sender():
    sender = RecordingChannelSender(fail_channels={"sms": "carrier rejected"})
    ok = sender.send("email", "a@b.com", "hi", subject="s")
    bad = sender.send("sms", "+1555", "hi")
    assert ok["success"] is True
    assert ok["message_id"].startswith("msg")
    assert bad == {"success": False, "message_id": None, "error": "carrier rejected"}
    assert [c["channel"] for c in sender.sent] == ["email", "sms"]
