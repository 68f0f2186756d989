"""Tests for scheduler helpers"""
import pytest
from datetime import timedelta
from unittest.mock import patch

from vending.models.alert import Alert
from vending.models.enums import AlertType
from vending.models.stock import Stock
from vending.services.reservation_service import create_reservation
from vending.tasks.scheduler import get_jobs_status, run_reservation_cleanup
from vending.tasks.utils import now_utc


@pytest.mark.medium
class TestScheduler:

    def test_jobs_status_lists_every_job(self):
        jobs = {job["name"]: job for job in get_jobs_status()}

        assert set(jobs) == {"expire-stale-orders", "cleanup-stale-payment-intents", "cleanup-expired-reservations"}
        assert jobs["expire-stale-orders"]["interval_seconds"] == 300
        assert jobs["cleanup-stale-payment-intents"]["interval_seconds"] == 7 * 24 * 3600

    def test_reservation_cleanup_refreshes_alerts(self, uow, db_session, session_factory, machine, product, make_stock, make_order):
        stock = make_stock(machine, product, quantity=1, low_threshold=0)
        order = make_order(machine, [(product.id, 1, 1)], expired=False)
        create_reservation(uow, product.id, machine.id, 1, order.id, now_utc() - timedelta(minutes=1))
        stock_id, machine_id = stock.id, machine.id

        assert run_reservation_cleanup(session_factory) == 1

        db_session.expire_all()
        assert db_session.query(Stock).filter(Stock.id == stock_id).one().quantity == 1
        alert = db_session.query(Alert).filter(Alert.machine_id == machine_id, Alert.is_active.is_(True)).one()
        assert alert.type == AlertType.INCOMPLETE.value

    def test_reservation_cleanup_without_work_skips_alerts(self, session_factory):
        with patch("vending.tasks.scheduler.refresh_machine_alerts") as refresh:
            assert run_reservation_cleanup(session_factory) == 0

        refresh.assert_not_called()
