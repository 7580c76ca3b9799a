"""
Channel Senders - the transport boundary for email, SMS, LinkedIn and phone.

Every sender implements:
    send(channel, recipient, content, subject=None) -> {"success", "message_id", "error"}

A sender never raises for a delivery problem; it reports it in the result. The
executor still treats a raised exception as a failed send.

HttpChannelSender posts to an outbound gateway service, carrying the
channel-specific connector config (EmailConnectorConfig, LinkedInConnectorConfig, ...)
that applies to the step's channel.
"""

import json
import logging
from typing import Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from campaign_engine import config
from campaign_engine.db.connection import gen_id
from campaign_engine.engine.models import CONNECTOR_FOR_CHANNEL, parse_connector_config

logger = logging.getLogger("campaign_engine.engine.channels")


def send_result(success: bool, message_id: str = None, error: str = None) -> dict:
    return {"success": success, "message_id": message_id, "error": error}


class ChannelSender:
    """Base class for channel transports."""

    def send(self, channel: str, recipient: str, content: str, subject: str = None) -> dict:
        raise NotImplementedError


class HttpChannelSender(ChannelSender):
    """Send through an HTTP gateway: POST {gateway}/send with a JSON body."""

    def __init__(self, gateway_url: str = None, connectors: Dict[str, dict] = None,
                 timeout: int = None):
        self.gateway_url = (gateway_url or config.CHANNEL_GATEWAY_URL).rstrip("/")
        self.timeout = timeout or config.CHANNEL_TIMEOUT_SECONDS
        # Validated up front so a bad connector config fails at startup, not mid-run
        self.connectors = {
            name: parse_connector_config({"channel": name, **raw})
            for name, raw in (connectors or {}).items()
        }

    def connector_for(self, channel: str):
        return self.connectors.get(CONNECTOR_FOR_CHANNEL.get(channel, channel))

    def send(self, channel: str, recipient: str, content: str, subject: str = None) -> dict:
        if not self.gateway_url:
            return send_result(False, error="No channel gateway configured")

        connector = self.connector_for(channel)
        payload = {
            "channel": channel,
            "recipient": recipient,
            "subject": subject,
            "content": content,
            "connector": connector.model_dump() if connector else None,
        }
        body = json.dumps(payload).encode("utf-8")
        req = Request(
            f"{self.gateway_url}/send",
            data=body,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode())
        except HTTPError as e:
            try:
                detail = json.loads(e.read().decode()).get("error", "")
            except Exception:
                detail = ""
            error = f"HTTP {e.code}: {detail or e.reason}"
            logger.warning("Gateway rejected %s send: %s", channel, error, extra={"channel": channel})
            return send_result(False, error=error)
        except URLError as e:
            error = f"Gateway unreachable: {e.reason}"
            logger.warning("%s send failed: %s", channel, error, extra={"channel": channel})
            return send_result(False, error=error)
        except TimeoutError:
            return send_result(False, error=f"Gateway timeout after {self.timeout}s")

        if data.get("success"):
            return send_result(True, message_id=data.get("message_id") or data.get("messageId"))
        return send_result(False, error=data.get("error") or "Gateway reported failure")


class RecordingChannelSender(ChannelSender):
    """In-memory sender that records every call. Used for dry runs and demos.

    `fail_channels` maps a channel to the error text it should fail with.
    """

    def __init__(self, fail_channels: Optional[Dict[str, str]] = None):
        self.fail_channels = dict(fail_channels or {})
        self.sent = []

    def send(self, channel: str, recipient: str, content: str, subject: str = None) -> dict:
        call = {"channel": channel, "recipient": recipient, "subject": subject, "content": content}
        self.sent.append(call)
        if channel in self.fail_channels:
            return send_result(False, error=self.fail_channels[channel])
        return send_result(True, message_id=gen_id("msg"))
