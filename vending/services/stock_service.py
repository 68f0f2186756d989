"""Slot configuration and restocking for machines"""
import logging
from typing import List, Optional

from vending.core.config import settings
from vending.core.exceptions import (
    InvalidSlotError, MachineNotFoundError, ProductNotFoundError, ReservationInUseError,
    SlotOccupiedError, StockCapacityError, StockNotFoundError
)
from vending.db.session import UnitOfWork
from vending.models.enums import MachineStatus, ReservationStatus
from vending.models.machine import Machine
from vending.models.product import Product
from vending.models.stock import Stock
from vending.models.stock_adjustment import StockAdjustment
from vending.models.stock_reservation import StockReservation
from vending.services.alert_service import refresh_machine_alerts
from vending.services.reservation_service import adjust_stock
from vending.tasks.utils import now_utc

logger = logging.getLogger(__name__)


def _sync_machine_readiness(machine: Machine, configured_slots: int):
    """ONLINE only once every slot is configured"""
    capacity = settings.MACHINE_SLOT_CAPACITY
    if configured_slots >= capacity and machine.status == MachineStatus.OFFLINE.value:
        machine.status = MachineStatus.ONLINE.value
        machine.last_update = now_utc()
        logger.info(f"Machine {machine.id} fully configured, now ONLINE")
    elif configured_slots < capacity and machine.status == MachineStatus.ONLINE.value:
        machine.status = MachineStatus.OFFLINE.value
        machine.last_update = now_utc()
        logger.info(f"Machine {machine.id} has {configured_slots}/{capacity} slots, now OFFLINE")


def add_slot(
    uow: UnitOfWork,
    machine_id: int,
    product_id: int,
    slot_number: int,
    max_capacity: int,
    quantity: int = 0,
    low_threshold: int = 0
) -> Stock:
    """Configure a new slot on a machine.

    Raises:
        MachineNotFoundError, ProductNotFoundError, InvalidSlotError,
        SlotOccupiedError, StockCapacityError
    """
    capacity = settings.MACHINE_SLOT_CAPACITY
    if not 1 <= slot_number <= capacity:
        raise InvalidSlotError(f"Slot number must be between 1 and {capacity}")
    if max_capacity <= 0:
        raise StockCapacityError("Max capacity must be positive")
    if quantity < 0 or quantity > max_capacity:
        raise StockCapacityError(f"Quantity must be between 0 and max capacity ({max_capacity})")
    if low_threshold < 0:
        raise StockCapacityError("Low threshold cannot be negative")

    with uow.begin() as db:
        machine = db.query(Machine).filter(Machine.id == machine_id).first()
        if machine is None:
            raise MachineNotFoundError(f"Machine {machine_id} not found")
        if db.query(Product.id).filter(Product.id == product_id).first() is None:
            raise ProductNotFoundError(f"Product {product_id} not found")

        existing = db.query(Stock).filter(Stock.machine_id == machine_id).all()
        if any(s.slot_number == slot_number for s in existing):
            raise SlotOccupiedError(f"Slot {slot_number} of machine {machine_id} is already configured")
        if len(existing) >= capacity:
            raise InvalidSlotError(f"Machine {machine_id} already has {capacity} slots")

        stock = Stock(
            machine_id=machine_id,
            product_id=product_id,
            slot_number=slot_number,
            quantity=quantity,
            max_capacity=max_capacity,
            low_threshold=low_threshold,
        )
        db.add(stock)
        db.flush()
        _sync_machine_readiness(machine, len(existing) + 1)

    logger.info(f"Slot {slot_number} configured on machine {machine_id} with product {product_id}")
    refresh_machine_alerts(uow, machine_id)
    return stock


def remove_slot(uow: UnitOfWork, stock_id: int) -> None:
    """Remove a slot that holds no active reservation"""
    with uow.begin() as db:
        stock = db.query(Stock).filter(Stock.id == stock_id).first()
        if stock is None:
            raise StockNotFoundError(f"Stock {stock_id} not found")

        active = db.query(StockReservation.id).filter(
            StockReservation.stock_id == stock_id,
            StockReservation.status == ReservationStatus.ACTIVE.value
        ).first()
        if active is not None:
            raise ReservationInUseError(f"Slot {stock.slot_number} still has active reservations")

        machine_id = stock.machine_id
        db.query(StockAdjustment).filter(StockAdjustment.stock_id == stock_id).delete(synchronize_session=False)
        db.query(StockReservation).filter(StockReservation.stock_id == stock_id).delete(synchronize_session=False)
        db.delete(stock)
        db.flush()

        machine = db.query(Machine).filter(Machine.id == machine_id).first()
        remaining = db.query(Stock).filter(Stock.machine_id == machine_id).count()
        _sync_machine_readiness(machine, remaining)

    logger.info(f"Slot {stock_id} removed from machine {machine_id}")
    refresh_machine_alerts(uow, machine_id)


def manual_restock(uow: UnitOfWork, stock_id: int, quantity: int, notes: Optional[str] = None) -> StockAdjustment:
    """Add units to one slot"""
    if quantity <= 0:
        raise StockCapacityError("Restock quantity must be positive")
    adjustment = adjust_stock(uow, stock_id, quantity, reason="restock", notes=notes or "Manual restock")
    refresh_machine_alerts(uow, adjustment.machine_id)
    return adjustment


def restock_slot_to_max(uow: UnitOfWork, stock_id: int, notes: Optional[str] = None) -> StockAdjustment:
    """Fill one slot up to its max capacity"""
    stock = uow.db.query(Stock).filter(Stock.id == stock_id).first()
    if stock is None:
        raise StockNotFoundError(f"Stock {stock_id} not found")
    missing = stock.max_capacity - stock.quantity
    if missing <= 0:
        raise StockCapacityError("Slot is already at max capacity")
    adjustment = adjust_stock(uow, stock_id, missing, reason="restock_to_max", notes=notes)
    refresh_machine_alerts(uow, adjustment.machine_id)
    return adjustment


def restock_machine_to_max(uow: UnitOfWork, machine_id: int, notes: Optional[str] = None) -> List[StockAdjustment]:
    """Fill every slot of a machine up to its max capacity, in one transaction"""
    adjustments = []
    with uow.begin() as db:
        if db.query(Machine.id).filter(Machine.id == machine_id).first() is None:
            raise MachineNotFoundError(f"Machine {machine_id} not found")
        stocks = db.query(Stock).filter(Stock.machine_id == machine_id).order_by(Stock.slot_number).all()
        if not stocks:
            raise StockCapacityError(f"No slot configured for machine {machine_id}")
        for stock in stocks:
            missing = stock.max_capacity - stock.quantity
            if missing > 0:
                adjustments.append(adjust_stock(uow, stock.id, missing, reason="restock_to_max", notes=notes))

    logger.info(f"Machine {machine_id} restocked to max ({len(adjustments)} slots changed)")
    refresh_machine_alerts(uow, machine_id)
    return adjustments
