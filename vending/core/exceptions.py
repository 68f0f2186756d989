"""Domain errors.

All of them are validation failures, not system faults: callers should not
retry them. They subclass ValueError so API handlers can map them to 4xx.
"""


class InsufficientStockError(ValueError):
    def __init__(self, product_id: int, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: {available} available, {requested} requested"
        )


class StockCapacityError(ValueError):
    """Stock quantity would leave the 0..max_capacity range"""


class StockNotFoundError(ValueError):
    pass


class MachineNotFoundError(ValueError):
    pass


class ProductNotFoundError(ValueError):
    pass


class InvalidSlotError(ValueError):
    pass


class SlotOccupiedError(ValueError):
    pass


class ReservationInUseError(ValueError):
    """Slot still has ACTIVE reservations"""


class AlertNotFoundError(ValueError):
    pass
