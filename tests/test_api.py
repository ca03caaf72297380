"""Tests for the FastAPI application."""

import sys

import pytest
from fastapi.testclient import TestClient

from stackweave import orchestrator
from stackweave.api import app
from stackweave.errors import PermanentProvisioningError


class TestAPI:
    """Tests for the REST endpoints."""

    @pytest.fixture
    def client(self, stackweave_home):
        """FastAPI test client."""
        return TestClient(app)

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["version"] == "0.1.0"

    def test_synth(self, client):
        response = client.post("/synth", json={"environment": "Staging"})

        assert response.status_code == 200
        assert response.json()["valid"] is True

    def test_deploy_lifecycle(self, client):
        """Background deploy completes before the test client returns."""
        response = client.post("/deployments", json={"db_password": "s3cret-pw", "tags": {"owner": "ops"}})

        assert response.status_code == 202
        assert "s3cret-pw" not in response.text
        deployment_id = response.json()["deployment_id"]

        status = client.get(f"/deployments/{deployment_id}/status").json()
        assert status["status"] == "deployed"
        assert status["failed"] == []

        outputs = client.get(f"/deployments/{deployment_id}/outputs").json()
        assert outputs["VPCId"].startswith("vpc-")

        events = client.get(f"/deployments/{deployment_id}/events")
        assert "s3cret-pw" not in events.text
        assert events.json()[-1]["type"] == "DONE"

        response = client.delete(f"/deployments/{deployment_id}")
        assert response.json() == {"ok": True, "status": "destroyed"}

    def test_password_required(self, client):
        assert client.post("/deployments", json={}).status_code == 422

    def test_unknown_backend(self, client):
        response = client.post("/deployments", json={"db_password": "pw", "backend": "gcp"})

        assert response.status_code == 422

    def test_invalid_deployment_id(self, client):
        response = client.post("/deployments", json={"db_password": "pw", "deployment_id": "../etc"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_deployment_id"

    @pytest.mark.parametrize("path", ["status", "outputs", "events"])
    def test_not_found(self, client, path):
        response = client.get(f"/deployments/d-20260101-000000-zzzz/{path}")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "deployment_not_found"

    def test_destroy_not_found(self, client):
        assert client.delete("/deployments/d-20260101-000000-zzzz").status_code == 404

    def test_unexpected_error_uses_envelope(self, stackweave_home, monkeypatch):
        def failing_destroy(deployment_id, **kwargs):
            raise PermanentProvisioningError("backend unreachable")

        monkeypatch.setattr(sys.modules["stackweave.api.app"], "deployment_exists", lambda deployment_id: True)
        monkeypatch.setattr(orchestrator, "destroy", failing_destroy)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.delete("/deployments/d-20260101-000000-abcd")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_error"
        assert "backend unreachable" not in response.text
