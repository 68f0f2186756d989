"""Alert API routes: reads, operator resolution and maintenance"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from vending.api.deps import get_uow, to_http_error
from vending.db.session import UnitOfWork
from vending.models.machine import Machine
from vending.services.alert_service import (
    alert_to_dict, calculate_machine_alert_status, cleanup_duplicate_alerts, get_active_alerts,
    get_alerts_summary_by_machine, get_machine_alerts, recalculate_all_machine_alerts, resolve_alert,
    status_to_dict, update_machine_alerts
)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])
logger = logging.getLogger(__name__)


@router.get("")
def list_active_alerts(uow: UnitOfWork = Depends(get_uow)):
    """All active alerts, most severe first"""
    return {"alerts": [alert_to_dict(a) for a in get_active_alerts(uow.db)]}


@router.get("/summary")
def alerts_summary(uow: UnitOfWork = Depends(get_uow)):
    """Highest-priority active alert of each machine"""
    return {"alerts": [alert_to_dict(a) for a in get_alerts_summary_by_machine(uow.db)]}


@router.get("/machines/{machine_id}")
def machine_alerts(machine_id: int, uow: UnitOfWork = Depends(get_uow)):
    if uow.db.query(Machine.id).filter(Machine.id == machine_id).first() is None:
        raise HTTPException(404, f"Machine {machine_id} not found")
    return {
        "alerts": [alert_to_dict(a) for a in get_machine_alerts(uow.db, machine_id)],
        "status": status_to_dict(calculate_machine_alert_status(uow.db, machine_id)),
    }


@router.post("/machines/{machine_id}/update")
def update_alerts_for_machine(machine_id: int, uow: UnitOfWork = Depends(get_uow)):
    """Recompute the active alert of one machine"""
    try:
        alert = update_machine_alerts(uow, machine_id)
    except ValueError as e:
        raise to_http_error(e)
    return {"alert": alert_to_dict(alert) if alert is not None else None}


@router.post("/{alert_id}/resolve")
def resolve_alert_endpoint(alert_id: int, uow: UnitOfWork = Depends(get_uow)):
    try:
        alert = resolve_alert(uow, alert_id)
    except ValueError as e:
        raise to_http_error(e)
    return {"alert": alert_to_dict(alert)}


@router.post("/cleanup-duplicates")
def cleanup_duplicates(uow: UnitOfWork = Depends(get_uow)):
    """Resolve all but the newest active alert of each machine"""
    return cleanup_duplicate_alerts(uow)


@router.post("/recalculate")
def recalculate_alerts(uow: UnitOfWork = Depends(get_uow)):
    """Recompute alerts of every machine"""
    processed = recalculate_all_machine_alerts(uow)
    return {"machines_processed": processed}
