"""
Alert Lifecycle Engine — stock classification and alert reconciliation.

Alert Types:
  - out_of_stock (critical): quantity below the low-stock floor (default ≤ 0)
  - low_stock (warning): floor ≤ quantity < threshold (default 1..9)

A sweep reads every product snapshot of a workspace plus its open alerts,
plans the creates/closes that bring the alert set in line with current stock,
and applies them as one batch. Running it twice on unchanged inventory is a
no-op the second time.
"""

import asyncio
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.audit import AuditEntry, AuditLogWriter
from alerts.notifications import AlertEvent, NotificationDispatcher
from alerts.store import AlertStore, serialize_alert
from core.concurrency import BackgroundTaskTracker, WorkspaceLocks
from db.models import Alert, AlertSeverity, AlertType, utcnow
from inventory.reader import InventoryReader, ProductSnapshot

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StockPolicy:
    threshold: int = 10
    floor: int = 1

    def __post_init__(self):
        if self.floor < 1 or self.floor >= self.threshold:
            raise ValueError(f"invalid stock policy: floor={self.floor} threshold={self.threshold}")


class StockLevel(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    HEALTHY = "healthy"


def classify_stock(quantity: int, policy: StockPolicy) -> StockLevel:
    if quantity < policy.floor:
        return StockLevel.OUT_OF_STOCK
    if quantity < policy.threshold:
        return StockLevel.LOW_STOCK
    return StockLevel.HEALTHY


def build_alert_message(alert_type: AlertType, product: ProductSnapshot) -> str:
    if alert_type == AlertType.OUT_OF_STOCK:
        return f'Product "{product.display_name}" is out of stock'
    return f'Only {product.inventory_quantity} units left for "{product.display_name}"'


# ──────────────────────────────────────────────────────────────────────────
# Planning
# ──────────────────────────────────────────────────────────────────────────


@dataclass
class SweepPlan:
    to_create: list[dict[str, Any]] = field(default_factory=list)
    to_close: list[Alert] = field(default_factory=list)
    products_checked: int = 0
    skipped: int = 0


def _new_alert_row(alert_type: AlertType, product: ProductSnapshot) -> dict[str, Any]:
    severity = AlertSeverity.CRITICAL if alert_type == AlertType.OUT_OF_STOCK else AlertSeverity.WARNING
    return {
        "workspace_id": product.workspace_id,
        "product_id": product.product_id,
        "sku": product.sku,
        "alert_type": alert_type.value,
        "severity": severity.value,
        "message": build_alert_message(alert_type, product),
    }


def plan_sweep(
    products: Sequence[ProductSnapshot],
    open_by_sku: Mapping[str, Iterable[Alert]],
    policy: StockPolicy,
) -> SweepPlan:
    """
    Decide which alerts to create and which open alerts to close.

    Products are classified in input order. When several products share a
    SKU, the last one classified decides that SKU's desired state, so the
    plan converges and a second sweep finds nothing to do.
    """
    plan = SweepPlan(products_checked=len(products))
    desired: dict[str, tuple[StockLevel, ProductSnapshot]] = {}

    for product in products:
        if not product.sku:
            plan.skipped += 1
            logger.info("alerts.sweep.product_skipped", reason="missing_sku", product_id=product.product_id)
            continue
        if product.inventory_quantity is None:
            plan.skipped += 1
            logger.info(
                "alerts.sweep.product_skipped",
                reason="unknown_quantity",
                product_id=product.product_id,
                sku=product.sku,
            )
            continue
        desired[product.sku] = (classify_stock(product.inventory_quantity, policy), product)

    for sku, (level, product) in desired.items():
        open_alerts = list(open_by_sku.get(sku, ()))
        open_low = [a for a in open_alerts if a.alert_type == AlertType.LOW_STOCK.value]
        open_out = [a for a in open_alerts if a.alert_type == AlertType.OUT_OF_STOCK.value]

        if level == StockLevel.OUT_OF_STOCK:
            if not open_out:
                plan.to_create.append(_new_alert_row(AlertType.OUT_OF_STOCK, product))
            # out of stock supersedes low stock
            plan.to_close.extend(open_low)
        elif level == StockLevel.LOW_STOCK:
            if not open_low and not open_out:
                plan.to_create.append(_new_alert_row(AlertType.LOW_STOCK, product))
        else:
            plan.to_close.extend(open_alerts)

    return plan


# ──────────────────────────────────────────────────────────────────────────
# Sweep
# ──────────────────────────────────────────────────────────────────────────


@dataclass
class SweepResult:
    workspace_id: str
    created: list[Alert]
    closed: list[Alert]
    products_checked: int
    skipped: int = 0

    @property
    def closed_ids(self) -> list[uuid.UUID]:
        return [a.alert_id for a in self.closed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace_id": self.workspace_id,
            "created": len(self.created),
            "closed": len(self.closed),
            "products_checked": self.products_checked,
            "skipped": self.skipped,
            "created_alerts": [serialize_alert(a) for a in self.created],
            "closed_alert_ids": [str(alert_id) for alert_id in self.closed_ids],
        }


def sweep_actor(workspace_id: str) -> str:
    return f"system:inventory_check:{workspace_id}"


class AlertLifecycleEngine:
    def __init__(
        self,
        audit: AuditLogWriter,
        notifier: NotificationDispatcher,
        tasks: BackgroundTaskTracker,
        locks: WorkspaceLocks,
        policy: StockPolicy,
    ):
        self.audit = audit
        self.notifier = notifier
        self.tasks = tasks
        self.locks = locks
        self.policy = policy

    async def sweep(
        self,
        db: AsyncSession,
        workspace_id: str,
        *,
        force: bool = False,
        timeout: float | None = None,
    ) -> SweepResult:
        """
        Reconcile a workspace's alerts with its current stock.

        Closes and inserts are committed together; store errors roll back and
        propagate. ``timeout`` bounds the read, plan and commit phase only. Once
        the batch is committed its audit records are written and notifications
        go out in the background.
        """
        async with asyncio.timeout(timeout):
            async with self.locks.hold(workspace_id):
                reader = InventoryReader(db)
                store = AlertStore(db)
                try:
                    products = await reader.list_products(workspace_id)
                    open_by_sku = await store.open_alerts_by_sku(workspace_id)
                    plan = plan_sweep(products, open_by_sku, self.policy)

                    now = utcnow()
                    # alerts closed elsewhere since the read are not ours to report
                    closed = await store.bulk_close(plan.to_close, now)
                    created = await store.bulk_insert(plan.to_create, now)
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise

        result = SweepResult(
            workspace_id=workspace_id,
            created=created,
            closed=closed,
            products_checked=plan.products_checked,
            skipped=plan.skipped,
        )
        await self._record(result, force)
        self._announce(result)

        logger.info(
            "alerts.sweep.completed",
            workspace_id=workspace_id,
            products_checked=result.products_checked,
            created=len(result.created),
            closed=len(result.closed),
            skipped=result.skipped,
            force=force,
        )
        return result

    async def _record(self, result: SweepResult, force: bool) -> None:
        actor = sweep_actor(result.workspace_id)
        entries = [
            AuditEntry(
                actor,
                "close",
                "alert",
                str(alert.alert_id),
                {"reason": "inventory_recovered", "alert_type": alert.alert_type, "sku": alert.sku},
            )
            for alert in result.closed
        ]
        entries += [
            AuditEntry(
                actor,
                "create",
                "alert",
                str(alert.alert_id),
                {"type": alert.alert_type, "sku": alert.sku, "severity": alert.severity},
            )
            for alert in result.created
        ]
        entries.append(
            AuditEntry(
                actor,
                "inventory_check",
                "workspace",
                result.workspace_id,
                {
                    "products_checked": result.products_checked,
                    "alerts_created": len(result.created),
                    "alerts_closed": len(result.closed),
                    "force_check": force,
                },
            )
        )
        await self.audit.log_many(entries)

    def _announce(self, result: SweepResult) -> None:
        if result.closed:
            self.tasks.spawn(
                dispatch_notifications(self.notifier, AlertEvent.CLOSED, list(result.closed)),
                name=f"notify-closed-{result.workspace_id}",
            )
        if result.created:
            self.tasks.spawn(
                dispatch_notifications(self.notifier, AlertEvent.CREATED, list(result.created)),
                name=f"notify-created-{result.workspace_id}",
            )


async def dispatch_notifications(notifier: NotificationDispatcher, event: AlertEvent, alerts: list[Alert]) -> None:
    """One notification per alert, plus a bulk one when there is more than one. Never raises."""
    calls = [([alert], False) for alert in alerts]
    if len(alerts) > 1:
        calls.append((alerts, True))

    for batch, bulk in calls:
        try:
            await notifier.notify(event, batch, bulk=bulk)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notifications.failed",
                event=event.value,
                bulk=bulk,
                alert_ids=[str(a.alert_id) for a in batch],
                error=str(exc),
            )
