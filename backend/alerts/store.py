"""
Alert Store Adapter — persistence access for alert records.

All mutations are narrow batch statements (close-by-id, multi-row insert,
conditional acknowledge) so concurrent sweeps contend as little as possible.
Callers own the transaction and commit.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from db.models import Alert, AlertStatus


def serialize_alert(alert: Alert) -> dict[str, Any]:
    return {
        "alert_id": str(alert.alert_id),
        "workspace_id": alert.workspace_id,
        "product_id": alert.product_id,
        "sku": alert.sku,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "status": alert.status,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "updated_at": alert.updated_at.isoformat() if alert.updated_at else None,
    }


class AlertStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, alert_id: uuid.UUID) -> Alert | None:
        result = await self.db.execute(
            select(Alert).where(Alert.alert_id == alert_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_alerts(
        self,
        workspace_id: str,
        *,
        status: str | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
    ) -> list[Alert]:
        """Alerts of a workspace matching the filters, newest first."""
        query = select(Alert).where(Alert.workspace_id == workspace_id)
        if status:
            query = query.where(Alert.status == status)
        if alert_type:
            query = query.where(Alert.alert_type == alert_type)
        if severity:
            query = query.where(Alert.severity == severity)
        query = query.order_by(Alert.created_at.desc(), Alert.sku).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_open(self, workspace_id: str) -> list[Alert]:
        return await self.list_alerts(workspace_id, status=AlertStatus.OPEN.value)

    async def open_alerts_by_sku(self, workspace_id: str) -> dict[str, list[Alert]]:
        by_sku: dict[str, list[Alert]] = defaultdict(list)
        for alert in await self.list_open(workspace_id):
            by_sku[alert.sku].append(alert)
        return dict(by_sku)

    async def bulk_close(self, alerts: list[Alert], closed_at: datetime) -> list[Alert]:
        """
        Close the given alerts in one statement and return the ones this call closed.

        Rows another writer already closed do not match the guard and are left out.
        """
        if not alerts:
            return []
        result = await self.db.execute(
            update(Alert)
            .where(Alert.alert_id.in_([a.alert_id for a in alerts]), Alert.status == AlertStatus.OPEN.value)
            .values(status=AlertStatus.CLOSED.value, updated_at=closed_at)
            .returning(Alert.alert_id)
            .execution_options(synchronize_session=False)
        )
        closed_ids = set(result.scalars().all())
        closed = [a for a in alerts if a.alert_id in closed_ids]
        for alert in closed:
            set_committed_value(alert, "status", AlertStatus.CLOSED.value)
            set_committed_value(alert, "updated_at", closed_at)
        return closed

    async def bulk_insert(self, rows: list[dict[str, Any]], created_at: datetime) -> list[Alert]:
        if not rows:
            return []
        alerts = [
            Alert(
                alert_id=uuid.uuid4(),
                status=AlertStatus.OPEN.value,
                created_at=created_at,
                updated_at=created_at,
                **row,
            )
            for row in rows
        ]
        self.db.add_all(alerts)
        await self.db.flush()
        return alerts

    async def mark_acknowledged(self, alert_id: uuid.UUID, acknowledged_by: str, acknowledged_at: datetime) -> bool:
        """
        Set the acknowledgment only if the alert is open and not yet acknowledged.

        Returns False when the guard did not match (caller re-reads to explain why).
        """
        result = await self.db.execute(
            update(Alert)
            .where(
                Alert.alert_id == alert_id,
                Alert.status == AlertStatus.OPEN.value,
                Alert.acknowledged_by.is_(None),
            )
            .values(
                acknowledged_by=acknowledged_by,
                acknowledged_at=acknowledged_at,
                updated_at=acknowledged_at,
            )
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)
