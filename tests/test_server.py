"""
Tests for the observability endpoints and metric helpers.
"""

from unittest.mock import patch

from fastapi.testclient import TestClient

from dispute_mirror.server import REGISTRY, app, record_sync_result

client = TestClient(app)


class TestHealthEndpoint:
    """Test cases for /healthz."""

    def test_healthy(self):
        health = {"status": "healthy", "checks": {"database": "healthy"}, "accounts": {}}
        with patch("dispute_mirror.server.get_health_status", return_value=health):
            response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_unhealthy(self):
        health = {"status": "unhealthy", "checks": {"database": "unhealthy"}, "accounts": {}}
        with patch("dispute_mirror.server.get_health_status", return_value=health):
            response = client.get("/healthz")

        assert response.status_code == 503
        assert response.json()["detail"]["status"] == "unhealthy"


class TestMetrics:
    """Test cases for metric recording and exposition."""

    def test_record_sync_result(self):
        labels = {"account": "acc-metrics", "status": "success"}
        before = REGISTRY.get_sample_value("sync_runs_total", labels) or 0
        inserts_before = REGISTRY.get_sample_value("disputes_upserted_total", {"operation": "insert"}) or 0

        record_sync_result(
            "acc-metrics",
            {"success": True, "created": 3, "updated": 1, "status_changes": 1, "duration_seconds": 2.5},
        )

        assert REGISTRY.get_sample_value("sync_runs_total", labels) == before + 1
        assert (
            REGISTRY.get_sample_value("disputes_upserted_total", {"operation": "insert"})
            == inserts_before + 3
        )

    def test_metrics_endpoint(self):
        with patch("dispute_mirror.server.check_database_health", return_value=True):
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "sync_runs_total" in response.text
