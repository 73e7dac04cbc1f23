"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from interview_inbox.main import app

client = TestClient(app)


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_readyz_endpoint_database_healthy():
    """Test readiness endpoint when the database pool is healthy."""
    with patch(
        "interview_inbox.routes.health.db_health_check",
        AsyncMock(return_value={"healthy": True}),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert isinstance(data["checks"]["database"]["latency_ms"], (int, float))


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when Postgres is down."""
    with patch(
        "interview_inbox.routes.health.db_health_check",
        AsyncMock(return_value={"healthy": False, "error": "Connection failed"}),
    ):
        response = client.get("/readyz")

    # Should still return 200, but overall_ok should be False
    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Connection failed"


def test_readyz_endpoint_database_check_raises():
    with patch(
        "interview_inbox.routes.health.db_health_check",
        AsyncMock(side_effect=RuntimeError("pool not initialized")),
    ):
        response = client.get("/readyz")

    data = response.json()
    assert data["overall_ok"] is False
    assert "RuntimeError" in data["checks"]["database"]["error"]


def test_readyz_reports_overdue_poller():
    poller_job = MagicMock()
    poller_job.health_check.return_value = {"healthy": False, "is_overdue": True}
    app.state.poller_job = poller_job
    try:
        with patch(
            "interview_inbox.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True}),
        ):
            response = client.get("/readyz")
    finally:
        app.state.poller_job = None

    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["interview_poller"]["is_overdue"] is True


def test_poller_status_when_not_hosted_in_api():
    response = client.get("/jobs/interview-poller")

    assert response.status_code == 200
    assert response.json()["enabled"] is False


def test_poller_status_when_hosted_in_api():
    poller_job = MagicMock()
    poller_job.get_job_status.return_value = {"job_name": "interview_poller", "is_running": False}
    app.state.poller_job = poller_job
    try:
        response = client.get("/jobs/interview-poller")
    finally:
        app.state.poller_job = None

    data = response.json()
    assert data["enabled"] is True
    assert data["is_running"] is False
