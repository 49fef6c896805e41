from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from kpay_gateway.core.dependency_container import DependencyContainer
from kpay_gateway.main import app


def test_health_check_with_mocked_startup():
    mock_container = MagicMock(spec=DependencyContainer)
    mock_container.http_client = AsyncMock()

    async def mock_initialize_dependencies(settings):
        return mock_container

    with patch("kpay_gateway.main.initialize_app_dependencies", mock_initialize_dependencies):
        with TestClient(app) as client:
            response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    mock_container.http_client.aclose.assert_awaited_once()


def test_kpay_routes_are_registered():
    paths = {route.path for route in app.routes}
    for expected in (
        "/kpay/response",
        "/kpay/payments",
        "/kpay/payments/{track_id}",
        "/kpay/refunds",
        "/kpay/inquiries/{track_id}",
    ):
        assert expected in paths
