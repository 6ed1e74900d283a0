from unittest.mock import Mock

from fastapi.testclient import TestClient

from tradelogapi.main import create_app


class TestHealthRoute:
    def test_health_reports_pool_state(self, catalog):
        app = create_app()
        pool = Mock(running=True, depth=3, max_depth=100, running_workers=4)
        app.container.services.review_worker_pool.override(pool)
        app.container.externals.instrument_catalog.override(catalog)

        response = TestClient(app).get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["review_queue_depth"] == 3
        assert data["review_workers_running"] == 4
        assert data["instruments_loaded"] == 2

    def test_health_degraded_without_workers(self, catalog):
        app = create_app()
        pool = Mock(running=False, depth=0, max_depth=100, running_workers=0)
        app.container.services.review_worker_pool.override(pool)
        app.container.externals.instrument_catalog.override(catalog)

        response = TestClient(app).get("/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["system_operational"] is False
