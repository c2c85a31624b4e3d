"""
API endpoint tests for the Launchpad Gate API

Uses pytest with FastAPI's TestClient, plus httpx.AsyncClient and
pytest-asyncio for the async transport. Tests cover validation, the three
admission handlers, admin authentication, KYC webhooks, exports, health
and the error format.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError

from config_manager import ConfigurationError
from database.connection import get_db
from database.eligibility_service import EligibilityService
from database.kyc_service import compute_signature
from database.models import DistributionJob, EligibilityCheck, QueueTicket

from conftest import make_project, make_kyc, make_investments

# Configure pytest-asyncio mode
pytest_plugins = ['pytest_asyncio']


@pytest.fixture
def app(db_provider, config, monkeypatch):
    """Application wired to the in-memory database and test config."""
    from api import server

    def override_get_db():
        yield from db_provider.get_session()

    monkeypatch.setattr(server, "API_KEY", "")
    monkeypatch.setattr(server, "get_db_provider", lambda: db_provider)
    monkeypatch.delenv("PERSONA_WEBHOOK_SECRET", raising=False)
    server.app.dependency_overrides[get_db] = override_get_db
    server.app.dependency_overrides[server.get_config_instance] = lambda: config
    yield server.app
    server.app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Test client; startup hooks are not run."""
    return TestClient(app)


@pytest.fixture
def admin_key(monkeypatch):
    from api import server
    monkeypatch.setattr(server, "API_KEY", "admin-secret")
    return "admin-secret"


@pytest.fixture
def project_id(db_provider):
    with db_provider.session_scope() as s:
        return make_project(s, name="Moon Token", symbol="MOON").id


# ============================================
# GENERAL
# ============================================

class TestGeneral:
    """Tests for health, CORS, request ids and the error format."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == "/api/docs"

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"]["healthy"] is True
        assert data["memory_usage_mb"] > 0

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/v1/eligibility/check",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type,x-provider-signature",
            },
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_cors_header_on_response(self, client):
        response = client.post(
            "/api/v1/eligibility/check",
            json={"walletAddress": "0xabc"},
            headers={"Origin": "https://app.example.com"},
        )
        assert response.headers["access-control-allow-origin"] == "*"

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Processing-Time-MS" in response.headers

    def test_request_id_generated(self, client):
        response = client.get("/")
        assert len(response.headers["X-Request-ID"]) == 32

    def test_unknown_route_error_shape(self, client):
        response = client.get("/api/v1/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}

    def test_store_failure_is_500_with_message(self, client, monkeypatch):
        def fail(self, wallet_address, ip_address=None):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(EligibilityService, "check", fail)
        response = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xabc"})

        assert response.status_code == 500
        assert response.json() == {"error": "database is locked"}

    def test_configuration_error_is_503(self, app, client):
        from api import server

        def broken_config():
            raise ConfigurationError("bad config")

        app.dependency_overrides[server.get_config_instance] = broken_config
        response = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xabc"})
        assert response.status_code == 503
        assert "error" in response.json()


# ============================================
# ELIGIBILITY
# ============================================

class TestEligibilityEndpoint:
    """Tests for POST /api/v1/eligibility/check."""

    def test_missing_wallet(self, client):
        response = client.post("/api/v1/eligibility/check", json={})
        assert response.status_code == 400
        assert "walletAddress" in response.json()["error"]

    def test_blank_wallet(self, client):
        response = client.post("/api/v1/eligibility/check", json={"walletAddress": "   "})
        assert response.status_code == 400
        assert "Wallet address is required" in response.json()["error"]

    def test_unknown_field_rejected(self, client):
        response = client.post(
            "/api/v1/eligibility/check", json={"walletAddress": "0xabc", "admin": True}
        )
        assert response.status_code == 400

    def test_malformed_json(self, client):
        response = client.post(
            "/api/v1/eligibility/check",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_no_kyc(self, client):
        response = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xabc"})
        assert response.status_code == 200
        assert response.json() == {
            "eligible": False,
            "kyc_approved": False,
            "geo_blocked": False,
            "sanctions_check": True,
            "country": None,
            "message": "KYC not approved",
        }

    def test_eligible_wallet_any_case(self, client, db_provider):
        with db_provider.session_scope() as s:
            make_kyc(s, "0xabcdef", country="DE")

        for wallet in ("0xabcdef", "0xABCDEF"):
            response = client.post("/api/v1/eligibility/check", json={"walletAddress": wallet})
            assert response.status_code == 200
            assert response.json()["eligible"] is True
            assert response.json()["message"] == "Eligible to participate"

    def test_geo_blocked(self, client, db_provider):
        with db_provider.session_scope() as s:
            make_kyc(s, "0xus", country="US")

        data = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xus"}).json()
        assert data["eligible"] is False
        assert data["geo_blocked"] is True
        assert data["sanctions_check"] is False
        assert data["country"] == "US"
        assert data["message"] == "Region is blocked"

    def test_overlong_wallet_rejected(self, client, db_provider):
        response = client.post(
            "/api/v1/eligibility/check", json={"walletAddress": "0x" + "a" * 100}
        )
        assert response.status_code == 400
        assert "walletAddress" in response.json()["error"]
        with db_provider.session_scope() as s:
            assert s.query(EligibilityCheck).count() == 0


# ============================================
# QUEUE
# ============================================

class TestQueueEndpoint:
    """Tests for POST /api/v1/queue."""

    def _join(self, client, wallet, project_id):
        return client.post(
            "/api/v1/queue", json={"walletAddress": wallet, "projectId": str(project_id)}
        )

    def test_join_default_action(self, client, project_id):
        response = self._join(client, "0xAAA", project_id)
        assert response.status_code == 200
        data = response.json()
        assert data["position"] == 1
        assert data["priority"] is False
        assert data["eta_seconds"] == 30
        assert data["message"] == "Added to queue"

    def test_join_is_idempotent(self, client, db_provider, project_id):
        first = self._join(client, "0xAAA", project_id).json()
        second = self._join(client, "0xaaa", project_id).json()

        assert second["ticket_id"] == first["ticket_id"]
        with db_provider.session_scope() as s:
            assert s.query(QueueTicket).count() == 1

    def test_positions_increase(self, client, project_id):
        positions = [self._join(client, f"0x{i}", project_id).json()["position"] for i in range(3)]
        assert positions == [1, 2, 3]

    def test_overlong_wallet_rejected(self, client, project_id):
        response = self._join(client, "0x" + "a" * 63, project_id)
        assert response.status_code == 400

    def test_status_and_leave(self, client, project_id):
        ticket_id = self._join(client, "0xAAA", project_id).json()["ticket_id"]

        status = client.post(f"/api/v1/queue?action=status&ticketId={ticket_id}")
        assert status.status_code == 200
        assert status.json()["status"] == "waiting"
        assert status.json()["position"] == 1

        leave = client.post("/api/v1/queue?action=leave", json={"ticketId": ticket_id})
        assert leave.status_code == 200
        assert leave.json() == {"success": True}

        status = client.post(f"/api/v1/queue?action=status&ticketId={ticket_id}")
        assert status.json()["status"] == "expired"

    def test_status_requires_ticket_id(self, client):
        response = client.post("/api/v1/queue?action=status")
        assert response.status_code == 400
        assert "ticketId" in response.json()["error"]

    def test_unknown_ticket(self, client):
        response = client.post(f"/api/v1/queue?action=status&ticketId={uuid.uuid4()}")
        assert response.status_code == 400
        assert response.json() == {"error": "Ticket not found"}

    def test_invalid_action(self, client):
        response = client.post("/api/v1/queue?action=skip", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    def test_join_validation(self, client):
        response = client.post("/api/v1/queue", json={"walletAddress": "0xabc", "projectId": "nope"})
        assert response.status_code == 400
        assert "projectId" in response.json()["error"]


# ============================================
# DISTRIBUTION
# ============================================

class TestDistributionEndpoint:
    """Tests for the planner and job endpoints."""

    def test_plan_batches(self, client, db_provider, project_id):
        with db_provider.session_scope() as s:
            make_investments(s, project_id, 120)

        response = client.post(
            "/api/v1/distribution/batches", json={"projectId": str(project_id), "batchSize": 50}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [b["total_recipients"] for b in data["batches"]] == [50, 50, 20]
        assert data["summary"]["total_batches"] == 3
        assert len(data["instructions"]["next_steps"]) == 4

    def test_no_pending(self, client, db_provider, project_id):
        response = client.post("/api/v1/distribution/batches", json={"projectId": str(project_id)})
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "No pending distributions",
            "batches": [],
        }
        with db_provider.session_scope() as s:
            assert s.query(DistributionJob).count() == 0

    def test_unknown_project(self, client):
        response = client.post("/api/v1/distribution/batches", json={"projectId": str(uuid.uuid4())})
        assert response.status_code == 400
        assert response.json() == {"error": "Project not found"}

    def test_batch_size_validation(self, client, project_id):
        zero = client.post(
            "/api/v1/distribution/batches", json={"projectId": str(project_id), "batchSize": 0}
        )
        assert zero.status_code == 400

        too_big = client.post(
            "/api/v1/distribution/batches", json={"projectId": str(project_id), "batchSize": 501}
        )
        assert too_big.status_code == 400
        assert too_big.json() == {"error": "Batch size must be between 1 and 500"}

    def test_job_lifecycle(self, client, db_provider, project_id):
        with db_provider.session_scope() as s:
            make_investments(s, project_id, 3)
        job_id = client.post(
            "/api/v1/distribution/batches", json={"projectId": str(project_id)}
        ).json()["job_id"]

        listed = client.get(f"/api/v1/distribution/jobs?projectId={project_id}").json()
        assert listed["count"] == 1
        assert listed["jobs"][0]["status"] == "pending"

        job = client.get(f"/api/v1/distribution/jobs/{job_id}").json()
        assert len(job["batches"]) == 1

        illegal = client.post(
            f"/api/v1/distribution/jobs/{job_id}/status", json={"status": "completed"}
        )
        assert illegal.status_code == 400
        assert "Cannot change job status" in illegal.json()["error"]

        started = client.post(
            f"/api/v1/distribution/jobs/{job_id}/status", json={"status": "in_progress"}
        )
        assert started.status_code == 200
        done = client.post(
            f"/api/v1/distribution/jobs/{job_id}/status", json={"status": "completed"}
        )
        assert done.json()["status"] == "completed"
        assert done.json()["completed_batches"] == 1

    def test_unknown_job(self, client):
        response = client.get(f"/api/v1/distribution/jobs/{uuid.uuid4()}")
        assert response.status_code == 400
        assert response.json() == {"error": "Distribution job not found"}


class TestAdminAuthentication:
    """Admin endpoints require X-API-Key when API_KEY is set."""

    def test_missing_key(self, client, admin_key, project_id):
        response = client.post("/api/v1/distribution/batches", json={"projectId": str(project_id)})
        assert response.status_code == 401
        assert "Missing API key" in response.json()["error"]

    def test_wrong_key(self, client, admin_key, project_id):
        response = client.post(
            "/api/v1/distribution/batches",
            json={"projectId": str(project_id)},
            headers={"X-API-Key": "guess"},
        )
        assert response.status_code == 403
        assert response.json() == {"error": "Invalid API key"}

    def test_valid_key(self, client, admin_key, project_id):
        response = client.post(
            "/api/v1/distribution/batches",
            json={"projectId": str(project_id)},
            headers={"X-API-Key": admin_key},
        )
        assert response.status_code == 200

    def test_public_endpoints_need_no_key(self, client, admin_key):
        response = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xabc"})
        assert response.status_code == 200


# ============================================
# KYC
# ============================================

class TestKYCEndpoints:
    """Tests for submission, review and webhooks."""

    SUBMISSION = {
        "walletAddress": "0xAlice",
        "fullName": "Alice Example",
        "email": "alice@example.com",
        "country": "DE",
        "documentType": "passport",
    }

    def test_submit_and_review(self, client):
        submitted = client.post("/api/v1/kyc/submit", json=self.SUBMISSION)
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "pending"
        kyc_id = submitted.json()["kyc_id"]

        reviewed = client.post(f"/api/v1/kyc/{kyc_id}/review", json={"decision": "approve"})
        assert reviewed.status_code == 200
        data = reviewed.json()
        assert data["status"] == "approved"
        assert data["reviewed_by"] == "dev-mode"
        assert data["eligibility"]["eligible"] is True

        eligibility = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xALICE"})
        assert eligibility.json()["eligible"] is True

    def test_duplicate_submission(self, client):
        client.post("/api/v1/kyc/submit", json=self.SUBMISSION)
        response = client.post("/api/v1/kyc/submit", json=self.SUBMISSION)
        assert response.status_code == 400
        assert response.json() == {"error": "KYC already submitted"}

    def test_invalid_email(self, client):
        response = client.post("/api/v1/kyc/submit", json={**self.SUBMISSION, "email": "nope"})
        assert response.status_code == 400
        assert "email" in response.json()["error"]

    def test_review_unknown_submission(self, client):
        response = client.post(f"/api/v1/kyc/{uuid.uuid4()}/review", json={"decision": "approve"})
        assert response.status_code == 400
        assert response.json() == {"error": "KYC submission not found"}

    def _webhook(self, client, payload, secret="test-secret", signature=None):
        body = json.dumps(payload).encode()
        headers = {"Content-Type": "application/json"}
        if secret is not None:
            headers["X-Provider-Signature"] = signature or compute_signature(secret, body)
        return client.post("/api/v1/kyc/webhook", content=body, headers=headers)

    def test_signed_webhook(self, client):
        response = self._webhook(
            client, {"provider": "persona", "wallet_address": "0xBob", "status": "approved"}
        )
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["status"] == "approved"

        eligibility = client.post("/api/v1/eligibility/check", json={"walletAddress": "0xbob"})
        assert eligibility.json()["kyc_approved"] is True

    def test_unsigned_webhook_rejected(self, client):
        response = self._webhook(
            client, {"provider": "persona", "wallet_address": "0xBob", "status": "approved"},
            secret=None,
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    def test_bad_signature_rejected(self, client):
        response = self._webhook(
            client, {"provider": "persona", "wallet_address": "0xBob", "status": "approved"},
            signature="00" * 32,
        )
        assert response.status_code == 401

    def test_non_ascii_signature_rejected(self, client):
        body = json.dumps(
            {"provider": "persona", "wallet_address": "0xBob", "status": "approved"}
        ).encode()
        response = client.post(
            "/api/v1/kyc/webhook",
            content=body,
            headers={"Content-Type": "application/json", "X-Provider-Signature": b"\xe9" * 64},
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}

    def test_overlong_submission_wallet_rejected(self, client):
        response = client.post(
            "/api/v1/kyc/submit", json={**self.SUBMISSION, "walletAddress": "0x" + "b" * 80}
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("field,length", [
        ("wallet_address", 65),
        ("full_name", 201),
        ("email", 321),
        ("country", 65),
        ("document_type", 51),
    ])
    def test_overlong_webhook_field_rejected(self, client, field, length):
        payload = {"provider": "persona", "wallet_address": "0xBob", "status": "approved"}
        payload[field] = "x" * length
        response = self._webhook(client, payload)
        assert response.status_code == 400
        assert field in response.json()["error"]

    def test_webhook_missing_fields(self, client):
        response = self._webhook(client, {"provider": "persona", "status": "approved"})
        assert response.status_code == 400
        assert "wallet_address" in response.json()["error"]

    def test_webhook_invalid_json(self, client):
        response = client.post(
            "/api/v1/kyc/webhook",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}


# ============================================
# REPORTS AND PROJECTS
# ============================================

class TestReportAndProjectEndpoints:

    def test_export_csv(self, client, project_id):
        for method in ("get", "post"):
            response = getattr(client, method)(f"/api/v1/reports/sale?projectId={project_id}")
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/csv")
            assert 'filename="MOON_sale_report_' in response.headers["content-disposition"]
            assert response.text.startswith("Sale Report\n")

    def test_export_requires_project(self, client):
        response = client.get("/api/v1/reports/sale")
        assert response.status_code == 400
        assert response.json() == {"error": "Project ID is required"}

    def test_export_unknown_project(self, client):
        response = client.get(f"/api/v1/reports/sale?projectId={uuid.uuid4()}")
        assert response.status_code == 400

    def test_refresh_statuses(self, client, db_provider):
        with db_provider.session_scope() as s:
            make_project(s, name="Ended", end_date=datetime.now(timezone.utc) - timedelta(hours=1),
                         raised_amount=75.0)

        response = client.post("/api/v1/projects/statuses/refresh")
        assert response.status_code == 200
        data = response.json()
        assert data["updated"] == 1
        assert data["updates"][0]["status"] == "success"

        again = client.post("/api/v1/projects/statuses/refresh").json()
        assert again == {"message": "No projects to update", "updated": 0, "updates": []}


# ============================================
# ASYNC TRANSPORT
# ============================================

class TestAsyncClient:
    """The same app served over httpx's ASGI transport."""

    @pytest.mark.asyncio
    async def test_health(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_queue_join(self, app, project_id):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(
                "/api/v1/queue",
                json={"walletAddress": "0xasync", "projectId": str(project_id)},
            )
        assert response.status_code == 200
        assert response.json()["position"] == 1
