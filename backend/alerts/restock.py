"""
Mock restock — development tool that adds stock to the product behind an
alert and re-runs the workspace sweep so recovered stock closes the alert.

Disabled in production.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.acknowledge import parse_alert_id
from alerts.audit import AuditEntry, AuditLogWriter
from alerts.engine import AlertLifecycleEngine, SweepResult
from alerts.store import AlertStore
from core.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from db.models import AlertStatus, Product, utcnow
from inventory.reader import InventoryReader

logger = structlog.get_logger()

DEFAULT_RESTOCK_QTY = 20
DEFAULT_RESTOCK_ACTOR = "system:mock_restock"


@dataclass
class RestockResult:
    alert_id: str
    alert_type: str
    sku: str
    status: str
    previous_inventory: int
    new_inventory: int
    quantity_added: int
    sweep: SweepResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": f"Mock restock completed. Added {self.quantity_added} units to {self.sku}",
            "product": {
                "sku": self.sku,
                "previous_inventory": self.previous_inventory,
                "new_inventory": self.new_inventory,
                "quantity_added": self.quantity_added,
            },
            "alert": {
                "alert_id": self.alert_id,
                "alert_type": self.alert_type,
                "sku": self.sku,
                "status": self.status,
            },
            "inventory_check": self.sweep.to_dict(),
        }


class MockRestocker:
    def __init__(self, engine: AlertLifecycleEngine, audit: AuditLogWriter, enabled: bool):
        self.engine = engine
        self.audit = audit
        self.enabled = enabled

    async def restock(
        self,
        db: AsyncSession,
        alert_id: str,
        qty: int = DEFAULT_RESTOCK_QTY,
        actor: str = DEFAULT_RESTOCK_ACTOR,
    ) -> RestockResult:
        if not self.enabled:
            raise ForbiddenError("Mock restock is only available in development mode")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError("Invalid quantity. Must be a positive number")

        alert_uuid = parse_alert_id(alert_id)
        alert = await AlertStore(db).get(alert_uuid)
        if alert is None:
            raise NotFoundError("Alert not found", alert_id=alert_id)
        if alert.status == AlertStatus.CLOSED.value:
            raise InvalidStateError("Cannot restock for a closed alert", alert_id=alert_id)

        product = await InventoryReader(db).get_product_by_sku(alert.workspace_id, alert.sku)
        if product is None:
            raise NotFoundError("Product not found for this alert", sku=alert.sku)

        try:
            result = await db.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(
                    inventory_quantity=func.coalesce(Product.inventory_quantity, 0) + qty,
                    updated_at=utcnow(),
                )
                .returning(Product.inventory_quantity)
                .execution_options(synchronize_session=False)
            )
            new_quantity = result.scalar_one()
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        previous = new_quantity - qty

        alert_type, sku, workspace_id = alert.alert_type, alert.sku, alert.workspace_id
        await self.audit.log_many(
            [
                AuditEntry(
                    actor,
                    "mock_restock",
                    "alert",
                    str(alert_uuid),
                    {
                        "alert_type": alert_type,
                        "sku": sku,
                        "product_id": alert.product_id,
                        "quantity_added": qty,
                        "previous_inventory": previous,
                        "new_inventory": new_quantity,
                    },
                ),
                AuditEntry(
                    actor,
                    "mock_restock",
                    "product",
                    str(product.id),
                    {
                        "sku": sku,
                        "quantity_added": qty,
                        "previous_inventory": previous,
                        "new_inventory": new_quantity,
                    },
                ),
            ]
        )
        logger.info("alerts.mock_restock", alert_id=str(alert_uuid), sku=sku, previous=previous, new=new_quantity)

        sweep = await self.engine.sweep(db, workspace_id, force=True)
        await db.refresh(alert)
        return RestockResult(
            alert_id=str(alert_uuid),
            alert_type=alert_type,
            sku=sku,
            status=alert.status,
            previous_inventory=previous,
            new_inventory=new_quantity,
            quantity_added=qty,
            sweep=sweep,
        )
