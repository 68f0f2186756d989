"""Reservation ledger - the only code allowed to change Stock.quantity.

Every debit goes through ``create_reservation``; every credit goes through a
reservation release, the expired-reservation cleanup, or ``adjust_stock``
(administrative changes, audited in StockAdjustment). Each function opens a
``UnitOfWork.begin()`` block: standalone calls commit on their own, calls made
inside a job's transaction join it.
"""
import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from vending.core.exceptions import InsufficientStockError, StockCapacityError, StockNotFoundError
from vending.db.session import UnitOfWork
from vending.models.enums import ReservationStatus
from vending.models.order import Order, OrderItem
from vending.models.stock import Stock
from vending.models.stock_adjustment import StockAdjustment
from vending.models.stock_reservation import StockReservation
from vending.tasks.utils import is_expired, now_utc

logger = logging.getLogger(__name__)


def _credit_stock(stock: Stock, quantity: int) -> int:
    """Add units back to a slot, never past max_capacity. Returns units credited."""
    room = max(0, stock.max_capacity - stock.quantity)
    credited = min(quantity, room)
    if credited < quantity:
        logger.warning(
            f"Stock {stock.id} (machine {stock.machine_id}, slot {stock.slot_number}) would exceed capacity: "
            f"crediting {credited} of {quantity} units"
        )
    stock.quantity += credited
    return credited


def create_reservation(
    uow: UnitOfWork,
    product_id: int,
    machine_id: int,
    quantity: int,
    order_id: int,
    expires_at: datetime
) -> StockReservation:
    """Reserve units of a product on a machine for an order.

    Creates the ACTIVE reservation and debits the slot in the same transaction.

    Raises:
        ValueError: quantity is not positive
        InsufficientStockError: no slot holds the product, or not enough units on hand
    """
    if quantity <= 0:
        raise ValueError("Reservation quantity must be positive")

    with uow.begin() as db:
        stock = db.query(Stock).filter(
            Stock.machine_id == machine_id,
            Stock.product_id == product_id
        ).with_for_update().first()

        available = stock.quantity if stock else 0
        if stock is None or stock.quantity < quantity:
            raise InsufficientStockError(product_id, available, quantity)

        reservation = StockReservation(
            stock_id=stock.id,
            order_id=order_id,
            quantity=quantity,
            status=ReservationStatus.ACTIVE.value,
            reserved_at=now_utc(),
            expires_at=expires_at,
        )
        db.add(reservation)
        stock.quantity -= quantity
        db.flush()

    logger.info(f"Reserved {quantity} units of product {product_id} on machine {machine_id} for order {order_id}")
    return reservation


def _release_item(db: Session, order: Order, item: OrderItem, touched: Set[int]) -> int:
    reservations = db.query(StockReservation).join(Stock).filter(
        StockReservation.order_id == order.id,
        Stock.product_id == item.product_id
    ).all()

    if not reservations:
        # Direct-decrement order (no reservation rows): credit the slot itself
        # and leave a RELEASED row behind so a second release is a no-op.
        stock = _find_fallback_stock(db, order, item)
        if stock is None:
            logger.warning(f"No stock row for product {item.product_id} of order {order.id}, nothing released")
            return 0
        credited = _credit_stock(stock, item.quantity)
        released_at = now_utc()
        db.add(StockReservation(
            stock_id=stock.id,
            order_id=order.id,
            quantity=item.quantity,
            status=ReservationStatus.RELEASED.value,
            reserved_at=released_at,
            expires_at=released_at,
            released_at=released_at,
            notes=f"Released without reservation - order {order.id}",
        ))
        touched.add(stock.machine_id)
        return credited

    released = 0
    for reservation in reservations:
        if reservation.status != ReservationStatus.ACTIVE.value or reservation.quantity <= 0:
            continue
        released += _credit_stock(reservation.stock, reservation.quantity)
        reservation.status = ReservationStatus.RELEASED.value
        reservation.released_at = now_utc()
        reservation.notes = f"Released automatically - order {order.id} expired"
        touched.add(reservation.stock.machine_id)
    return released


def _find_fallback_stock(db: Session, order: Order, item: OrderItem) -> Optional[Stock]:
    query = db.query(Stock).filter(Stock.product_id == item.product_id)
    if order.machine_id is not None and item.slot_number is not None:
        exact = query.filter(
            Stock.machine_id == order.machine_id,
            Stock.slot_number == item.slot_number
        ).first()
        if exact is not None:
            return exact
    return query.order_by(Stock.id).first()


def release_for_order(uow: UnitOfWork, order_id: int) -> int:
    """Release the stock held by an order and return the units credited back.

    Idempotent: once everything is released, further calls return 0.
    Storage errors propagate to the caller.
    """
    released, _ = release_for_order_with_machines(uow, order_id)
    return released


def release_for_order_with_machines(uow: UnitOfWork, order_id: int):
    """Same as ``release_for_order`` but also returns the ids of machines whose stock changed"""
    touched: Set[int] = set()
    with uow.begin() as db:
        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None or not order.items:
            logger.info(f"No items found for order {order_id}")
            return 0, touched

        total_released = 0
        for item in order.items:
            total_released += _release_item(db, order, item, touched)
        db.flush()

    if total_released:
        logger.info(f"Released {total_released} stock units for order {order_id}")
    return total_released, touched


def is_reservation_valid(db: Session, reservation_id: int) -> bool:
    """True iff the reservation is ACTIVE and not yet past expires_at"""
    reservation = db.query(StockReservation).filter(StockReservation.id == reservation_id).first()
    if reservation is None:
        return False
    return reservation.status == ReservationStatus.ACTIVE.value and not is_expired(reservation.expires_at)


def cleanup_expired_reservations(uow: UnitOfWork) -> int:
    """Credit back and mark EXPIRED every ACTIVE reservation past its expiry. Returns rows cleaned."""
    cleaned, _ = cleanup_expired_reservations_with_machines(uow)
    return cleaned


def cleanup_expired_reservations_with_machines(uow: UnitOfWork):
    touched: Set[int] = set()
    with uow.begin() as db:
        expired: List[StockReservation] = db.query(StockReservation).filter(
            StockReservation.status == ReservationStatus.ACTIVE.value,
            StockReservation.expires_at < now_utc()
        ).order_by(StockReservation.expires_at).all()

        for reservation in expired:
            _credit_stock(reservation.stock, reservation.quantity)
            reservation.status = ReservationStatus.EXPIRED.value
            reservation.released_at = now_utc()
            reservation.notes = "Reservation expired automatically"
            touched.add(reservation.stock.machine_id)
        db.flush()

    if expired:
        logger.info(f"Cleaned up {len(expired)} expired stock reservations")
    return len(expired), touched


def adjust_stock(
    uow: UnitOfWork,
    stock_id: int,
    quantity_delta: int,
    reason: str,
    notes: Optional[str] = None
) -> StockAdjustment:
    """Administrative stock change (restock, correction), recorded in StockAdjustment.

    Raises:
        StockNotFoundError: unknown stock id
        StockCapacityError: result would be negative or above max_capacity
    """
    with uow.begin() as db:
        stock = db.query(Stock).filter(Stock.id == stock_id).with_for_update().first()
        if stock is None:
            raise StockNotFoundError(f"Stock {stock_id} not found")

        quantity_before = stock.quantity
        quantity_after = quantity_before + quantity_delta
        if quantity_after < 0:
            raise StockCapacityError(
                f"Slot {stock.slot_number} holds {quantity_before} units, cannot remove {-quantity_delta}"
            )
        if quantity_after > stock.max_capacity:
            raise StockCapacityError(
                f"Final quantity ({quantity_after}) would exceed max capacity ({stock.max_capacity}) "
                f"for slot {stock.slot_number}"
            )

        stock.quantity = quantity_after
        adjustment = StockAdjustment(
            stock_id=stock.id,
            machine_id=stock.machine_id,
            reason=reason,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            quantity_delta=quantity_delta,
            notes=notes,
            created_at=now_utc(),
        )
        db.add(adjustment)
        db.flush()

    logger.info(f"Stock {stock_id} adjusted {quantity_before} -> {quantity_after} ({reason})")
    return adjustment
