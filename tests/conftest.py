"""Shared pytest fixtures for test suite"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

import pytest
from datetime import timedelta
from typing import Generator, List, Optional
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from vending.core.metrics import JobMetrics
from vending.db.session import UnitOfWork, get_db
from vending.main import app
from vending.models import Base
from vending.models.enums import MachineStatus, OrderStatus, PaymentStatus
from vending.models.machine import Machine
from vending.models.order import Order, OrderItem
from vending.models.payment import Payment
from vending.models.product import Product
from vending.models.stock import Stock
from vending.services.stripe_service import PaymentIntentInfo
from vending.tasks.utils import now_utc


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def uow(db_session: Session) -> UnitOfWork:
    return UnitOfWork(db_session)


@pytest.fixture(scope="function")
def session_factory(db_session: Session):
    """Session factory handing the jobs the test session (they close it, the fixture keeps it usable)"""
    return lambda: db_session


@pytest.fixture(scope="function")
def job_metrics() -> JobMetrics:
    return JobMetrics()


@pytest.fixture(scope="function")
def payment_provider():
    """Stripe provider double: every intent is cancelable unless a test says otherwise"""
    provider = AsyncMock()
    provider.retrieve_intent.side_effect = lambda intent_id: PaymentIntentInfo(
        id=intent_id, status=PaymentStatus.REQUIRES_PAYMENT_METHOD.value
    )
    provider.cancel_intent.side_effect = lambda intent_id, reason=None: PaymentIntentInfo(
        id=intent_id, status=PaymentStatus.CANCELED.value
    )
    return provider


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database (lifespan not started, so no scheduler)"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def product(db_session: Session) -> Product:
    product = Product(name="Sparkling water", price_cents=150)
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture(scope="function")
def machine(db_session: Session) -> Machine:
    machine = Machine(label="Lobby", location="Building A", status=MachineStatus.OFFLINE.value)
    db_session.add(machine)
    db_session.commit()
    db_session.refresh(machine)
    return machine


@pytest.fixture(scope="function")
def make_stock(db_session: Session):
    """Factory: create a slot on a machine"""

    def _make_stock(machine: Machine, product: Product, slot_number: int = 1, quantity: int = 5,
                    max_capacity: int = 10, low_threshold: int = 2) -> Stock:
        stock = Stock(
            machine_id=machine.id,
            product_id=product.id,
            slot_number=slot_number,
            quantity=quantity,
            max_capacity=max_capacity,
            low_threshold=low_threshold,
        )
        db_session.add(stock)
        db_session.commit()
        db_session.refresh(stock)
        return stock

    return _make_stock


@pytest.fixture(scope="function")
def make_product(db_session: Session):
    """Factory: create an extra product"""

    def _make_product(name: str) -> Product:
        product = Product(name=name, price_cents=200)
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make_product


@pytest.fixture(scope="function")
def make_order(db_session: Session):
    """Factory: create an order with items, optionally expired and with a payment"""

    def _make_order(machine: Optional[Machine], items: List[tuple], status: str = OrderStatus.PENDING.value,
                    expired: bool = True, payment_status: Optional[str] = None,
                    intent_id: Optional[str] = None) -> Order:
        offset = timedelta(minutes=-10) if expired else timedelta(minutes=10)
        order = Order(
            machine_id=machine.id if machine else None,
            status=status,
            amount_total_cents=0,
            expires_at=now_utc() + offset,
        )
        for product_id, quantity, slot_number in items:
            order.items.append(OrderItem(product_id=product_id, quantity=quantity, slot_number=slot_number))
        db_session.add(order)
        db_session.flush()

        if payment_status is not None:
            db_session.add(Payment(
                order_id=order.id,
                stripe_payment_intent_id=intent_id,
                amount_cents=150,
                status=payment_status,
            ))
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make_order


@pytest.fixture(scope="function")
def make_payment(db_session: Session):
    """Factory: create a payment, by default older than the staleness window"""

    def _make_payment(status: str = PaymentStatus.REQUIRES_PAYMENT_METHOD.value, intent_id: Optional[str] = "pi_test",
                      order: Optional[Order] = None, age_days: int = 8) -> Payment:
        payment = Payment(
            order_id=order.id if order else None,
            stripe_payment_intent_id=intent_id,
            amount_cents=150,
            status=status,
            created_at=now_utc() - timedelta(days=age_days),
        )
        db_session.add(payment)
        db_session.commit()
        db_session.refresh(payment)
        return payment

    return _make_payment
