"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from vending.models.base import Base
from vending.models.machine import Machine
from vending.models.product import Product
from vending.models.stock import Stock
from vending.models.stock_reservation import StockReservation
from vending.models.stock_adjustment import StockAdjustment
from vending.models.order import Order, OrderItem
from vending.models.payment import Payment
from vending.models.payment_event import PaymentEvent
from vending.models.alert import Alert

# Export all for convenience
__all__ = [
    "Base", "Machine", "Product", "Stock", "StockReservation", "StockAdjustment",
    "Order", "OrderItem", "Payment", "PaymentEvent", "Alert"
]
