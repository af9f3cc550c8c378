"""Integration tests for /health, /health/ready and /metrics endpoints."""

import pytest
from unittest.mock import AsyncMock, patch

from httpx import AsyncClient

from hookrelay.main import app


class TestLivenessEndpoint:
    @pytest.mark.asyncio
    async def test_liveness_returns_healthy(self, client: AsyncClient):
        """GET /health returns 200 with status healthy."""
        resp = await client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"


class TestReadinessEndpoint:
    @pytest.mark.asyncio
    async def test_readiness_checks_all_services(self, client: AsyncClient):
        """GET /health/ready reports the database and the delivery engine."""
        with patch("hookrelay.core.database.engine") as mock_engine:
            mock_conn = AsyncMock()
            mock_conn.execute = AsyncMock()
            mock_ctx = AsyncMock()
            mock_ctx.__aenter__ = AsyncMock(return_value=mock_conn)
            mock_ctx.__aexit__ = AsyncMock(return_value=False)
            mock_engine.connect.return_value = mock_ctx

            resp = await client.get("/health/ready")
            assert resp.status_code == 200
            data = resp.json()
            assert data["status"] == "ready"
            assert data["checks"] == {"database": "ok", "delivery_engine": "ok"}

    @pytest.mark.asyncio
    async def test_readiness_returns_503_on_failure(self, client: AsyncClient):
        """GET /health/ready returns 503 when the database check fails."""
        with patch("hookrelay.core.database.engine") as mock_engine:
            mock_engine.connect.side_effect = Exception("Connection refused")

            resp = await client.get("/health/ready")
            assert resp.status_code == 503
            data = resp.json()
            assert data["status"] == "not ready"
            assert data["checks"]["database"].startswith("error:")

    @pytest.mark.asyncio
    async def test_readiness_without_delivery_engine(self, client: AsyncClient):
        """GET /health/ready returns 503 before the engine is attached."""
        engine = app.state.delivery_engine
        app.state.delivery_engine = None
        try:
            resp = await client.get("/health/ready")
        finally:
            app.state.delivery_engine = engine
        assert resp.status_code == 503
        assert resp.json()["checks"]["delivery_engine"] == "not started"


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_exposes_webhook_counters(self, client: AsyncClient):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "webhook_deliveries_total" in resp.text

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, client: AsyncClient):
        with patch("hookrelay.api.v1.health.settings") as mock_settings:
            mock_settings.METRICS_ENABLED = False
            resp = await client.get("/metrics")
        assert resp.status_code == 404


class TestRequestID:
    @pytest.mark.asyncio
    async def test_caller_id_is_echoed(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "req-abc"})
        assert resp.headers["X-Request-ID"] == "req-abc"

    @pytest.mark.asyncio
    async def test_id_generated_when_missing(self, client: AsyncClient):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 36
