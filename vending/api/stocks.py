"""Stock API routes: slot configuration and restocking"""
import logging

from fastapi import APIRouter, Depends

from vending.api.deps import get_uow, to_http_error
from vending.db.session import UnitOfWork
from vending.schemas.stocks import AddSlotRequest, RestockRequest, RestockToMaxRequest
from vending.services.stock_service import (
    add_slot, manual_restock, remove_slot, restock_machine_to_max, restock_slot_to_max
)

router = APIRouter(prefix="/api/stocks", tags=["stocks"])
logger = logging.getLogger(__name__)


def _adjustment_to_dict(adjustment):
    return {
        "stock_id": adjustment.stock_id,
        "machine_id": adjustment.machine_id,
        "reason": adjustment.reason,
        "quantity_before": adjustment.quantity_before,
        "quantity_after": adjustment.quantity_after,
        "quantity_delta": adjustment.quantity_delta,
    }


@router.post("/machines/{machine_id}/slots")
def add_slot_endpoint(machine_id: int, request_data: AddSlotRequest, uow: UnitOfWork = Depends(get_uow)):
    """Configure a new slot on a machine"""
    try:
        stock = add_slot(
            uow,
            machine_id,
            request_data.product_id,
            request_data.slot_number,
            request_data.max_capacity,
            quantity=request_data.quantity,
            low_threshold=request_data.low_threshold,
        )
    except ValueError as e:
        raise to_http_error(e)
    return {
        "stock": {
            "id": stock.id,
            "machine_id": stock.machine_id,
            "product_id": stock.product_id,
            "slot_number": stock.slot_number,
            "quantity": stock.quantity,
            "max_capacity": stock.max_capacity,
            "low_threshold": stock.low_threshold,
        }
    }


@router.delete("/{stock_id}")
def remove_slot_endpoint(stock_id: int, uow: UnitOfWork = Depends(get_uow)):
    try:
        remove_slot(uow, stock_id)
    except ValueError as e:
        raise to_http_error(e)
    return {"message": f"Slot {stock_id} removed"}


@router.post("/{stock_id}/restock")
def restock_endpoint(stock_id: int, request_data: RestockRequest, uow: UnitOfWork = Depends(get_uow)):
    try:
        adjustment = manual_restock(uow, stock_id, request_data.quantity, request_data.notes)
    except ValueError as e:
        raise to_http_error(e)
    return {"adjustment": _adjustment_to_dict(adjustment)}


@router.post("/{stock_id}/restock-to-max")
def restock_slot_to_max_endpoint(stock_id: int, request_data: RestockToMaxRequest, uow: UnitOfWork = Depends(get_uow)):
    try:
        adjustment = restock_slot_to_max(uow, stock_id, request_data.notes)
    except ValueError as e:
        raise to_http_error(e)
    return {"adjustment": _adjustment_to_dict(adjustment)}


@router.post("/machines/{machine_id}/restock-to-max")
def restock_machine_to_max_endpoint(machine_id: int, request_data: RestockToMaxRequest, uow: UnitOfWork = Depends(get_uow)):
    """Fill every slot of a machine"""
    try:
        adjustments = restock_machine_to_max(uow, machine_id, request_data.notes)
    except ValueError as e:
        raise to_http_error(e)
    return {"adjustments": [_adjustment_to_dict(a) for a in adjustments]}
