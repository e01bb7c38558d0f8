"""
Alerts Router — inventory sweep, listing, acknowledgment, dev restock.
"""

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.restock import DEFAULT_RESTOCK_ACTOR, DEFAULT_RESTOCK_QTY
from alerts.store import AlertStore, serialize_alert
from api.deps import get_db, get_services
from api.state import Services
from core.errors import UpstreamUnavailableError, ValidationError
from db.models import AlertStatus

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])

DEGRADED_WARNING = "Database unavailable; serving last known alerts"


# ─── Schemas ────────────────────────────────────────────────────────────────


class InventoryCheckRequest(BaseModel):
    workspace_id: str | None = None
    force: bool = False


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str | None = None


class MockRestockRequest(BaseModel):
    qty: int = DEFAULT_RESTOCK_QTY
    actor: str = DEFAULT_RESTOCK_ACTOR


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/inventory")
async def check_inventory(
    body: InventoryCheckRequest,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Sweep one workspace and return its open alerts afterwards."""
    workspace_id = (body.workspace_id or "").strip()
    if not workspace_id:
        raise ValidationError("Missing workspace_id")

    try:
        result = await services.engine.sweep(db, workspace_id, force=body.force)
        open_alerts = await AlertStore(db).list_open(workspace_id)
    except SQLAlchemyError as exc:
        logger.error("alerts.inventory_check_failed", workspace_id=workspace_id, error=str(exc))
        raise UpstreamUnavailableError("Failed to run inventory check", workspace_id=workspace_id) from exc

    return {
        "alerts": [serialize_alert(a) for a in open_alerts],
        "created": len(result.created),
        "closed": len(result.closed),
        "products_checked": result.products_checked,
        "summary": {
            "new_alerts_created": len(result.created),
            "alerts_closed": len(result.closed),
            "total_open_alerts": len(open_alerts),
        },
    }


@router.get("/inventory")
async def list_inventory_alerts(
    workspace_id: str | None = None,
    status: str | None = Query(AlertStatus.OPEN.value),
    alert_type: str | None = Query(None, alias="type"),
    severity: str | None = None,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    List a workspace's alerts, newest first.

    If the store is unreachable, answer with the last listing cached for the
    same filters (or an empty list) plus a ``warning``.
    """
    if not workspace_id:
        raise ValidationError("Missing workspace_id")

    cache_key = (workspace_id, status, alert_type, severity)
    try:
        alerts = await AlertStore(db).list_alerts(
            workspace_id, status=status, alert_type=alert_type, severity=severity
        )
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("alerts.list_degraded", workspace_id=workspace_id, error=str(exc))
        return {"alerts": services.alert_cache.get(cache_key, []), "warning": DEGRADED_WARNING}

    payload = [serialize_alert(a) for a in alerts]
    services.alert_cache.set(cache_key, payload)
    return {"alerts": payload}


@router.patch("/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    body: AcknowledgeRequest | None = None,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Mark an open alert as acknowledged (once)."""
    acknowledged_by = body.acknowledged_by if body else None
    try:
        alert = await services.acknowledger.acknowledge(db, alert_id, acknowledged_by)
    except SQLAlchemyError as exc:
        logger.error("alerts.acknowledge_failed", alert_id=alert_id, error=str(exc))
        raise UpstreamUnavailableError("Failed to acknowledge alert", alert_id=alert_id) from exc

    return {
        "success": True,
        "alert": serialize_alert(alert),
        "message": "Alert acknowledged successfully",
    }


@router.post("/{alert_id}/mock-restock")
async def mock_restock(
    alert_id: str,
    body: MockRestockRequest | None = None,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Development only: add stock to the alert's product and re-sweep."""
    body = body or MockRestockRequest()
    try:
        result = await services.restocker.restock(db, alert_id, qty=body.qty, actor=body.actor)
    except SQLAlchemyError as exc:
        logger.error("alerts.mock_restock_failed", alert_id=alert_id, error=str(exc))
        raise UpstreamUnavailableError("Failed to update product inventory", alert_id=alert_id) from exc
    return result.to_dict()
