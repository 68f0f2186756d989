"""Tests for machine alert calculation and maintenance"""
import pytest
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import patch

from vending.core.exceptions import AlertNotFoundError, MachineNotFoundError
from vending.models.alert import Alert
from vending.models.enums import AlertLevel, AlertStatus, AlertType, alert_priority
from vending.models.stock import Stock
from vending.services.alert_service import (
    cleanup_duplicate_alerts, compute_machine_alert_status, get_alerts_summary_by_machine,
    recalculate_all_machine_alerts, refresh_machine_alerts, resolve_alert, update_machine_alerts
)
from vending.tasks.utils import now_utc


def _slot(quantity, low_threshold=2):
    return SimpleNamespace(quantity=quantity, low_threshold=low_threshold)


def _fill_machine(make_stock, machine, product, quantities, low_threshold=2):
    return [
        make_stock(machine, product, slot_number=i + 1, quantity=q, max_capacity=10, low_threshold=low_threshold)
        for i, q in enumerate(quantities)
    ]


def _active_alerts(db_session, machine_id):
    db_session.expire_all()
    return db_session.query(Alert).filter(Alert.machine_id == machine_id, Alert.is_active.is_(True)).all()


@pytest.mark.critical
class TestAlertPriority:
    """Pure calculation over a slot snapshot"""

    def test_empty_slot_dominates_low_stock(self):
        """6 slots, 1 empty and 2 at threshold: CRITICAL even though 3/6 qualifies as LOW_STOCK"""
        stocks = [_slot(0), _slot(2), _slot(1), _slot(8), _slot(9), _slot(7)]

        status = compute_machine_alert_status(stocks, total_slots=6, low_stock_ratio=0.5)

        assert status.alert_type == AlertType.CRITICAL.value
        assert status.alert_level == AlertLevel.CRITICAL.value
        assert status.empty_slots == 1
        assert status.low_stock_slots == 2
        assert status.slots_at_threshold == 3

    def test_low_stock_at_half_of_configured_slots(self):
        stocks = [_slot(1), _slot(2), _slot(2), _slot(8), _slot(9), _slot(7)]

        status = compute_machine_alert_status(stocks, total_slots=6, low_stock_ratio=0.5)

        assert status.slots_at_threshold == 3
        assert status.alert_type == AlertType.LOW_STOCK.value
        assert status.alert_level == AlertLevel.WARNING.value

    def test_below_low_stock_ratio_needs_no_alert(self):
        stocks = [_slot(1), _slot(2), _slot(5), _slot(8), _slot(9), _slot(7)]

        status = compute_machine_alert_status(stocks, total_slots=6, low_stock_ratio=0.5)

        assert status.alert_type is None
        assert status.alert_level is None

    def test_incomplete_only_when_nothing_else_applies(self):
        healthy = [_slot(8), _slot(9), _slot(7)]
        status = compute_machine_alert_status(healthy, total_slots=6, low_stock_ratio=0.5)
        assert status.alert_type == AlertType.INCOMPLETE.value
        assert status.metadata == {"configured_slots": 3, "total_slots": 6}

        with_empty = [_slot(0), _slot(9), _slot(7)]
        status = compute_machine_alert_status(with_empty, total_slots=6, low_stock_ratio=0.5)
        assert status.alert_type == AlertType.CRITICAL.value

    def test_machine_without_slots_is_incomplete(self):
        status = compute_machine_alert_status([], total_slots=6, low_stock_ratio=0.5)

        assert status.alert_type == AlertType.INCOMPLETE.value
        assert "0/6" in status.message

    def test_priority_order(self):
        assert alert_priority(AlertType.CRITICAL) > alert_priority(AlertType.LOW_STOCK.value)
        assert alert_priority(AlertType.LOW_STOCK) > alert_priority(AlertType.INCOMPLETE)
        assert alert_priority(AlertType.INCOMPLETE) > alert_priority(None)
        assert alert_priority("MACHINE_OFFLINE") == 0


@pytest.mark.critical
class TestUpdateMachineAlerts:

    def test_creates_single_active_alert(self, uow, db_session, machine, product, make_stock):
        _fill_machine(make_stock, machine, product, [0, 5, 6, 8, 9, 7])

        alert = update_machine_alerts(uow, machine.id)

        assert alert.type == AlertType.CRITICAL.value
        assert alert.status == AlertStatus.OPEN.value
        assert alert.alert_metadata["empty_slots"] == 1
        assert len(_active_alerts(db_session, machine.id)) == 1

    def test_type_change_resolves_previous_alert(self, uow, db_session, machine, product, make_stock):
        stocks = _fill_machine(make_stock, machine, product, [0, 5, 6, 8, 9, 7])
        first = update_machine_alerts(uow, machine.id)
        first_id = first.id

        stocks[0].quantity = 1
        stocks[1].quantity = 1
        stocks[2].quantity = 2
        db_session.commit()
        second = update_machine_alerts(uow, machine.id)

        assert second.type == AlertType.LOW_STOCK.value
        active = _active_alerts(db_session, machine.id)
        assert [a.id for a in active] == [second.id]
        previous = db_session.query(Alert).filter(Alert.id == first_id).one()
        assert previous.status == AlertStatus.RESOLVED.value
        assert previous.resolved_at is not None

    def test_same_type_updates_message_in_place(self, uow, db_session, machine, product, make_stock):
        stocks = _fill_machine(make_stock, machine, product, [0, 5, 6, 8, 9, 7])
        first = update_machine_alerts(uow, machine.id)
        first_id = first.id

        stocks[1].quantity = 0
        db_session.commit()
        second = update_machine_alerts(uow, machine.id)

        assert second.id == first_id
        assert "2 empty slot(s)" in second.message
        assert db_session.query(Alert).count() == 1

    def test_resolves_when_no_alert_needed(self, uow, db_session, machine, product, make_stock):
        stocks = _fill_machine(make_stock, machine, product, [0, 5, 6, 8, 9, 7])
        update_machine_alerts(uow, machine.id)

        stocks[0].quantity = 9
        db_session.commit()

        assert update_machine_alerts(uow, machine.id) is None
        assert _active_alerts(db_session, machine.id) == []

    def test_repeated_updates_keep_one_active_alert(self, uow, db_session, machine, product, make_stock):
        stocks = _fill_machine(make_stock, machine, product, [5, 5, 5])
        for quantity in (0, 1, 9, 0, 3):
            stocks[0].quantity = quantity
            db_session.commit()
            update_machine_alerts(uow, machine.id)
            assert len(_active_alerts(db_session, machine.id)) <= 1

    def test_unknown_machine(self, uow):
        with pytest.raises(MachineNotFoundError):
            update_machine_alerts(uow, 4242)

    def test_refresh_swallows_failures(self, uow, machine):
        with patch("vending.services.alert_service.update_machine_alerts", side_effect=RuntimeError("db down")):
            assert refresh_machine_alerts(uow, machine.id) is False

        assert refresh_machine_alerts(uow, machine.id) is True


@pytest.mark.high
class TestAlertMaintenance:

    def _add_alert(self, db_session, machine_id, alert_type, minutes_ago):
        alert = Alert(
            machine_id=machine_id,
            type=alert_type,
            level=AlertLevel.WARNING.value,
            status=AlertStatus.OPEN.value,
            is_active=True,
            message=alert_type,
            created_at=now_utc() - timedelta(minutes=minutes_ago),
        )
        db_session.add(alert)
        db_session.commit()
        return alert.id

    def test_cleanup_duplicate_alerts_keeps_newest(self, uow, db_session, machine):
        self._add_alert(db_session, machine.id, AlertType.INCOMPLETE.value, 30)
        self._add_alert(db_session, machine.id, AlertType.LOW_STOCK.value, 20)
        newest_id = self._add_alert(db_session, machine.id, AlertType.CRITICAL.value, 10)

        result = cleanup_duplicate_alerts(uow)

        assert result == {"cleaned": 2, "machines_processed": 1}
        assert [a.id for a in _active_alerts(db_session, machine.id)] == [newest_id]

    def test_recalculate_all_machine_alerts(self, uow, db_session, machine, product, make_stock):
        _fill_machine(make_stock, machine, product, [0, 5, 6, 8, 9, 7])

        assert recalculate_all_machine_alerts(uow) == 1
        active = _active_alerts(db_session, machine.id)
        assert len(active) == 1
        assert active[0].type == AlertType.CRITICAL.value

    def test_summary_uses_alert_priority(self, uow, db_session, machine):
        self._add_alert(db_session, machine.id, AlertType.CRITICAL.value, 30)
        self._add_alert(db_session, machine.id, AlertType.INCOMPLETE.value, 5)

        summary = get_alerts_summary_by_machine(db_session)

        assert len(summary) == 1
        assert summary[0].type == AlertType.CRITICAL.value

    def test_resolve_alert(self, uow, db_session, machine):
        alert_id = self._add_alert(db_session, machine.id, AlertType.LOW_STOCK.value, 5)

        alert = resolve_alert(uow, alert_id)

        assert alert.is_active is False
        assert alert.status == AlertStatus.RESOLVED.value
        with pytest.raises(AlertNotFoundError):
            resolve_alert(uow, 999)
