"""
API test suite for the campaign engine.
Tests campaign lifecycle, approval queue, execution logs and error endpoints.
"""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from starlette.testclient import TestClient

from campaign_engine.api.app import create_app
from campaign_engine.engine.error_handler import log_execution_error

WORKFLOW = [
    {"channel": "email", "subject": "Hello {{first_name}}",
     "content": "Hi {{first_name}}, quick idea for {{company}}.", "confidence": 90},
    {"channel": "linkedin_connection", "content": "Would love to connect, {{first_name}}."},
]


@pytest.fixture
def client(engine):
    """Test client around the fixture engine (fake clock + sender), worker disabled."""
    return TestClient(create_app(engine, start_worker=False))


@pytest.fixture
def campaign(client):
    response = client.post("/api/campaigns", json={
        "workspace_id": "ws_test", "name": "API campaign", "workflow": WORKFLOW,
        "autonomy_level": "semi_autonomous", "confidence_threshold": 80,
    })
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def launched(client, campaign):
    contact = client.post(f"/api/campaigns/{campaign['id']}/contacts", json={
        "first_name": "Sam", "email": "sam@acme.io", "company": "Acme",
        "linkedin_url": "https://linkedin.com/in/sam",
    }).json()
    response = client.post(f"/api/campaigns/{campaign['id']}/launch",
                           json={"contact_ids": [contact["id"]]})
    assert response.status_code == 200
    return {"campaign": campaign, "contact": contact, "launch": response.json()}


# =============================================================================
# HEALTH CHECK
# =============================================================================

class TestHealth:

    def test_health_check(self, client):
        """GET /api/health should report the database and worker state."""
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["tables"] >= 6
        assert data["worker"] == {"enabled": False, "running": False}


# =============================================================================
# CAMPAIGNS
# =============================================================================

class TestCampaigns:

    def test_create_campaign(self, campaign):
        """POST /api/campaigns creates a draft with the validated workflow."""
        assert campaign["status"] == "draft"
        assert campaign["autonomy_level"] == "semi_autonomous"
        assert len(campaign["workflow"]) == 2

    def test_invalid_workflow_returns_422_with_problems(self, client):
        response = client.post("/api/campaigns", json={
            "workspace_id": "ws_test", "name": "Bad",
            "workflow": [{"channel": "email", "content": "no subject"},
                         {"channel": "pigeon", "content": "coo"}],
        })
        assert response.status_code == 422
        problems = response.json()["problems"]
        assert len(problems) == 2

    def test_get_unknown_campaign_404(self, client):
        assert client.get("/api/campaigns/cmp_missing").status_code == 404

    def test_list_campaigns(self, client, campaign):
        data = client.get("/api/campaigns?workspace_id=ws_test").json()
        assert [c["id"] for c in data] == [campaign["id"]]

    def test_launch_materializes_steps(self, client, launched):
        assert launched["launch"]["scheduled"] == 2
        assert launched["launch"]["campaign"]["status"] == "active"

        cid = launched["campaign"]["id"]
        detail = client.get(f"/api/campaigns/{cid}").json()
        assert detail["step_counts"] == {"pending": 2}
        steps = client.get(f"/api/campaigns/{cid}/steps").json()
        assert steps[0]["subject"] == "Hello Sam"

    def test_launch_requires_contacts(self, client, campaign):
        response = client.post(f"/api/campaigns/{campaign['id']}/launch", json={"contact_ids": []})
        assert response.status_code == 400

    def test_launch_unknown_contact_404(self, client, campaign):
        response = client.post(f"/api/campaigns/{campaign['id']}/launch",
                               json={"contact_ids": ["con_ghost"]})
        assert response.status_code == 404

    def test_pause_resume_conflicts(self, client, launched):
        cid = launched["campaign"]["id"]
        assert client.post(f"/api/campaigns/{cid}/pause").json()["status"] == "paused"
        assert client.post(f"/api/campaigns/{cid}/pause").status_code == 409
        assert client.post(f"/api/campaigns/{cid}/advance").status_code == 409
        assert client.post(f"/api/campaigns/{cid}/resume").json()["status"] == "active"

    def test_update_autonomy(self, client, campaign):
        cid = campaign["id"]
        assert client.patch(f"/api/campaigns/{cid}/autonomy", json={}).status_code == 400
        data = client.patch(f"/api/campaigns/{cid}/autonomy",
                            json={"autonomy_level": "full_autonomous"}).json()
        assert data["autonomy_level"] == "full_autonomous"


# =============================================================================
# EXECUTION + APPROVALS
# =============================================================================

class TestExecutionFlow:

    def test_advance_then_approve(self, client, launched, sender):
        """Full flow over HTTP: advance sends the email, LinkedIn waits for approval."""
        cid = launched["campaign"]["id"]

        first = client.post(f"/api/campaigns/{cid}/advance").json()
        assert first["outcomes"] == {"sent": 1}
        second = client.post(f"/api/campaigns/{cid}/advance").json()
        assert second["outcomes"] == {"requires_approval": 1}
        assert second["execution_log"]["pending_approval_steps"] == 1

        pending = client.get(f"/api/approvals?campaign_id={cid}").json()
        assert len(pending) == 1
        approval_id = pending[0]["id"]
        assert client.get(f"/api/approvals/{approval_id}").json()["status"] == "pending"

        resolved = client.post(f"/api/approvals/{approval_id}/approve",
                               json={"resolver_id": "user_1", "notes": "ok"}).json()
        assert resolved["outcome"] == "sent"
        assert resolved["approval"]["status"] == "approved"
        assert len(sender.calls) == 2

        again = client.post(f"/api/approvals/{approval_id}/reject", json={"resolver_id": "user_2"})
        assert again.status_code == 409

    def test_reject(self, client, launched, sender):
        cid = launched["campaign"]["id"]
        client.patch(f"/api/campaigns/{cid}/autonomy", json={"autonomy_level": "manual_approval"})
        client.post(f"/api/campaigns/{cid}/advance")
        approval_id = client.get(f"/api/approvals?campaign_id={cid}").json()[0]["id"]

        assert client.post(f"/api/approvals/{approval_id}/reject",
                           json={"resolver_id": " "}).status_code == 400
        resolved = client.post(f"/api/approvals/{approval_id}/reject",
                               json={"resolver_id": "user_1"}).json()
        assert resolved["outcome"] == "rejected"
        assert resolved["step"]["status"] == "rejected"
        assert sender.calls == []

    def test_unknown_approval_404(self, client):
        assert client.get("/api/approvals/apv_missing").status_code == 404
        response = client.post("/api/approvals/apv_missing/approve", json={"resolver_id": "u"})
        assert response.status_code == 404

    def test_metrics_and_logs(self, client, launched):
        cid = launched["campaign"]["id"]
        client.post(f"/api/campaigns/{cid}/advance")
        snapshot = client.post(f"/api/campaigns/{cid}/metrics").json()
        assert snapshot["execution_type"] == "metrics_snapshot"
        assert snapshot["completed_steps"] == 1

        logs = client.get(f"/api/campaigns/{cid}/logs").json()
        assert len(logs) == 2
        assert {l["execution_type"] for l in logs} == {"full_run", "metrics_snapshot"}


# =============================================================================
# ERRORS
# =============================================================================

class TestErrors:

    def test_list_and_resolve_errors(self, client, test_db):
        error_id = log_execution_error(test_db, phase="process_step",
                                       error=RuntimeError("boom"), campaign_id="cmp_x")
        errors = client.get("/api/errors?campaign_id=cmp_x").json()
        assert [e["id"] for e in errors] == [error_id]

        assert client.post(f"/api/errors/{error_id}/resolve").json() == {"id": error_id, "resolved": True}
        assert client.get("/api/errors?campaign_id=cmp_x").json() == []
        assert len(client.get("/api/errors?campaign_id=cmp_x&include_resolved=true").json()) == 1
        assert client.post("/api/errors/99999/resolve").status_code == 404
