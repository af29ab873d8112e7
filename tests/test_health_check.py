"""
בדיקות ל-Health Check — liveness, readiness, וסיווג מצב ה-ledger.
"""
import pytest
from unittest.mock import AsyncMock, patch

import httpx

from app.domain.services.health_service import (
    any_platform_configured,
    classify_ledger_health,
    platform_configuration,
)
from app.domain.services.webhook_retry_service import WebhookMetrics


# ============================================================================
# Liveness Probe: GET /health
# ============================================================================


class TestLivenessProbe:
    """בדיקות ל-endpoint /health (liveness probe)."""

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        """liveness probe מחזיר status=healthy תמיד."""
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ============================================================================
# Readiness Probe: GET /health/ready
# ============================================================================


class TestReadinessProbe:
    """בדיקות ל-endpoint /health/ready (readiness probe)."""

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        """כשכל התלויות תקינות — status=healthy ו-HTTP 200."""
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="ok",
        ), patch(
            "app.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="ok",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "db": "ok", "celery": "ok"}

    @pytest.mark.unit
    async def test_readiness_celery_broker_down(self, test_client: httpx.AsyncClient) -> None:
        """כש-broker לא זמין — status=degraded ו-HTTP 503."""
        with patch(
            "app.domain.services.health_service._check_db",
            new_callable=AsyncMock,
            return_value="ok",
        ), patch(
            "app.domain.services.health_service._check_celery",
            new_callable=AsyncMock,
            return_value="error: celery_unavailable",
        ):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["celery"] == "error: celery_unavailable"


# ============================================================================
# בדיקות יחידה לפונקציות בדיקה פנימיות
# ============================================================================


class TestHealthCheckFunctions:
    """בדיקות ישירות לפונקציות הבדיקה בשירות."""

    @pytest.mark.unit
    async def test_check_db_failure(self) -> None:
        """_check_db מחזיר error כש-DB לא זמין."""
        mock_session = AsyncMock()
        mock_session.execute = AsyncMock(side_effect=ConnectionError("refused"))
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(
            "app.domain.services.health_service.AsyncSessionLocal",
            return_value=mock_session,
        ):
            from app.domain.services.health_service import _check_db
            result = await _check_db()

        assert result == "error: db_unavailable"

    @pytest.mark.unit
    async def test_check_celery_success(self) -> None:
        """_check_celery מחזיר ok כש-Celery broker זמין."""
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(return_value=True)
        mock_client.aclose = AsyncMock()

        with patch(
            "app.domain.services.health_service.aioredis.from_url",
            return_value=mock_client,
        ):
            from app.domain.services.health_service import _check_celery
            result = await _check_celery()

        assert result == "ok"
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.unit
    async def test_check_celery_failure(self) -> None:
        """_check_celery מחזיר error כש-Celery broker לא זמין."""
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        mock_client.aclose = AsyncMock()

        with patch(
            "app.domain.services.health_service.aioredis.from_url",
            return_value=mock_client,
        ):
            from app.domain.services.health_service import _check_celery
            result = await _check_celery()

        assert result.startswith("error:")


# ============================================================================
# סיווג ה-ledger וקונפיגורציית פלטפורמות
# ============================================================================


class TestLedgerClassification:
    @pytest.mark.unit
    def test_empty_ledger_is_healthy(self) -> None:
        assert classify_ledger_health(WebhookMetrics()) == "healthy"

    @pytest.mark.unit
    def test_any_dead_letter_is_critical(self) -> None:
        assert classify_ledger_health(WebhookMetrics(total=100, successful=99, dead_letter=1)) == "critical"

    @pytest.mark.unit
    def test_open_ratio_above_threshold_is_degraded(self) -> None:
        assert classify_ledger_health(WebhookMetrics(total=10, successful=8, failed=2)) == "degraded"
        assert classify_ledger_health(WebhookMetrics(total=10, successful=9, failed=1)) == "healthy"


class TestPlatformConfiguration:
    @pytest.mark.unit
    def test_configured_from_settings(self) -> None:
        configuration = platform_configuration()

        assert configuration["zoom"]["webhook"] is True
        assert configuration["microsoft_teams"]["webhook"] is True
        assert any_platform_configured(configuration) is True

    @pytest.mark.unit
    def test_meet_audience_alone_does_not_count(self) -> None:
        configuration = {
            "zoom": {"webhook": False, "api": False},
            "microsoft_teams": {"webhook": False, "api": False},
            "google_meet": {"webhook": True, "api": False},
        }
        assert any_platform_configured(configuration) is False

    @pytest.mark.unit
    async def test_webhook_health_endpoint(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/api/webhooks/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert set(data["platforms"]) == {"zoom", "microsoft_teams", "google_meet"}
        assert data["ledger"]["total"] == 0

    @pytest.mark.unit
    async def test_webhook_health_unconfigured(self, test_client: httpx.AsyncClient) -> None:
        unconfigured = {
            "zoom": {"webhook": False, "api": False},
            "microsoft_teams": {"webhook": False, "api": False},
            "google_meet": {"webhook": True, "api": False},
        }
        with patch(
            "app.api.routes.webhook_monitoring.platform_configuration",
            return_value=unconfigured,
        ):
            response = await test_client.get("/api/webhooks/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unconfigured"
