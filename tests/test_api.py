"""API endpoint tests"""
import pytest
from unittest.mock import AsyncMock

from vending.api.jobs import get_cleanup_stale_payment_intents_job, get_expire_stale_orders_job
from vending.core.metrics import JobMetrics, get_job_metrics
from vending.main import app
from vending.models.alert import Alert
from vending.models.enums import AlertType
from vending.tasks.cleanup_stale_payment_intents import CleanupStalePaymentIntentsResult
from vending.tasks.expire_stale_orders import ExpireStaleOrdersJob, ExpireStaleOrdersResult


@pytest.mark.high
class TestJobsAPI:

    def test_run_expire_stale_orders(self, client, session_factory, payment_provider, machine, product, make_stock, make_order):
        make_stock(machine, product)
        make_order(machine, [(product.id, 1, 1)])
        app.dependency_overrides[get_expire_stale_orders_job] = lambda: ExpireStaleOrdersJob(
            session_factory=session_factory, payment_provider=payment_provider, metrics=JobMetrics()
        )

        response = client.post("/api/jobs/expire-stale-orders/run")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["result"]["orders_expired"] == 1
        assert data["result"]["stock_released"] == 1

    def test_run_cleanup_reports_errors(self, client):
        job = AsyncMock()
        job.execute_manually.return_value = CleanupStalePaymentIntentsResult(errors=["boom"], execution_time=3)
        app.dependency_overrides[get_cleanup_stale_payment_intents_job] = lambda: job

        response = client.post("/api/jobs/cleanup-stale-payment-intents/run")

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "result": {"payment_intents_canceled": 0, "payments_updated": 0, "errors": ["boom"], "execution_time": 3},
        }

    def test_manual_run_uses_execute_manually(self, client):
        job = AsyncMock()
        job.execute_manually.return_value = ExpireStaleOrdersResult()
        app.dependency_overrides[get_expire_stale_orders_job] = lambda: job

        client.post("/api/jobs/expire-stale-orders/run")

        job.execute_manually.assert_awaited_once()

    def test_jobs_status(self, client):
        response = client.get("/api/jobs/status")

        assert response.status_code == 200
        assert len(response.json()["jobs"]) == 3

    def test_metrics_snapshot_and_reset(self, client):
        metrics = JobMetrics()
        metrics.increment_expired_orders(2)
        app.dependency_overrides[get_job_metrics] = lambda: metrics

        assert client.get("/api/jobs/metrics").json()["orders_expired_total"] == 2

        assert client.post("/api/jobs/metrics/reset").status_code == 200
        assert client.get("/api/jobs/metrics").json()["orders_expired_total"] == 0


@pytest.mark.high
class TestAlertsAPI:

    def test_update_and_summary(self, client, machine, product, make_stock):
        make_stock(machine, product, slot_number=1, quantity=0)

        response = client.post(f"/api/alerts/machines/{machine.id}/update")
        assert response.status_code == 200
        assert response.json()["alert"]["type"] == AlertType.CRITICAL.value

        summary = client.get("/api/alerts/summary").json()["alerts"]
        assert [a["machine_id"] for a in summary] == [machine.id]

        details = client.get(f"/api/alerts/machines/{machine.id}").json()
        assert details["status"]["empty_slots"] == 1

    def test_update_unknown_machine(self, client):
        assert client.post("/api/alerts/machines/999/update").status_code == 404
        assert client.get("/api/alerts/machines/999").status_code == 404

    def test_resolve_alert(self, client, db_session, machine):
        client.post(f"/api/alerts/machines/{machine.id}/update")
        alert_id = db_session.query(Alert).one().id

        response = client.post(f"/api/alerts/{alert_id}/resolve")

        assert response.status_code == 200
        assert response.json()["alert"]["is_active"] is False
        assert client.post("/api/alerts/999/resolve").status_code == 404

    def test_maintenance_endpoints(self, client, machine):
        assert client.post("/api/alerts/recalculate").json() == {"machines_processed": 1}
        assert client.post("/api/alerts/cleanup-duplicates").json() == {"cleaned": 0, "machines_processed": 1}


@pytest.mark.high
class TestStocksAPI:

    def test_add_slot_and_restock(self, client, machine, product):
        response = client.post(
            f"/api/stocks/machines/{machine.id}/slots",
            json={"product_id": product.id, "slot_number": 1, "max_capacity": 8, "quantity": 2},
        )
        assert response.status_code == 200
        stock_id = response.json()["stock"]["id"]

        response = client.post(f"/api/stocks/{stock_id}/restock", json={"quantity": 3})
        assert response.status_code == 200
        assert response.json()["adjustment"]["quantity_after"] == 5

        response = client.post(f"/api/stocks/{stock_id}/restock-to-max", json={})
        assert response.json()["adjustment"]["quantity_after"] == 8

    def test_domain_errors_map_to_http(self, client, machine, product, make_stock):
        stock = make_stock(machine, product, quantity=9, max_capacity=10)

        assert client.post(f"/api/stocks/{stock.id}/restock", json={"quantity": 5}).status_code == 400
        assert client.post("/api/stocks/999/restock", json={"quantity": 1}).status_code == 404
        response = client.post(
            f"/api/stocks/machines/{machine.id}/slots",
            json={"product_id": product.id, "slot_number": 1, "max_capacity": 8},
        )
        assert response.status_code == 400

    def test_restock_machine_and_remove_slot(self, client, machine, product, make_stock):
        stock = make_stock(machine, product, quantity=1, max_capacity=4)

        response = client.post(f"/api/stocks/machines/{machine.id}/restock-to-max", json={"notes": "round"})
        assert len(response.json()["adjustments"]) == 1

        assert client.delete(f"/api/stocks/{stock.id}").status_code == 200
        assert client.delete(f"/api/stocks/{stock.id}").status_code == 404


@pytest.mark.medium
class TestMonitoring:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_prometheus_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "vending_orders_expired_total" in response.text
