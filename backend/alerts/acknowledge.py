"""
Acknowledgment Handler — open+unacknowledged → open+acknowledged.

Acknowledgment never changes status and can happen at most once. The write
is a guarded UPDATE, so two racing acknowledgers cannot both win.
"""

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.audit import AuditLogWriter
from alerts.engine import dispatch_notifications
from alerts.notifications import AlertEvent, NotificationDispatcher
from alerts.store import AlertStore
from core.concurrency import BackgroundTaskTracker
from core.errors import AlreadyAcknowledgedError, InvalidStateError, NotFoundError, ValidationError
from db.models import Alert, AlertStatus, utcnow

logger = structlog.get_logger()


def parse_alert_id(raw: str | uuid.UUID) -> uuid.UUID:
    """Malformed ids cannot match any alert, so they are reported as not found."""
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise NotFoundError("Alert not found", alert_id=str(raw)) from None


def _ensure_acknowledgeable(alert: Alert | None, alert_id: uuid.UUID) -> Alert:
    if alert is None:
        raise NotFoundError("Alert not found", alert_id=str(alert_id))
    if alert.status == AlertStatus.CLOSED.value:
        raise InvalidStateError("Cannot acknowledge a closed alert", alert_id=str(alert_id))
    if alert.acknowledged_by:
        raise AlreadyAcknowledgedError(
            alert.acknowledged_by,
            alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        )
    return alert


class AcknowledgmentHandler:
    def __init__(self, audit: AuditLogWriter, notifier: NotificationDispatcher, tasks: BackgroundTaskTracker):
        self.audit = audit
        self.notifier = notifier
        self.tasks = tasks

    async def acknowledge(self, db: AsyncSession, alert_id: str | uuid.UUID, acknowledged_by: str | None) -> Alert:
        if not acknowledged_by or not acknowledged_by.strip():
            raise ValidationError("Missing acknowledged_by field")
        acknowledged_by = acknowledged_by.strip()
        alert_uuid = parse_alert_id(alert_id)

        store = AlertStore(db)
        try:
            alert = _ensure_acknowledgeable(await store.get(alert_uuid), alert_uuid)
            previous_status = alert.status

            updated = await store.mark_acknowledged(alert_uuid, acknowledged_by, utcnow())
            if not updated:
                # lost a race: re-read and report the state that beat us
                await db.rollback()
                await db.refresh(alert)
                _ensure_acknowledgeable(alert, alert_uuid)
                raise InvalidStateError("Alert could not be acknowledged", alert_id=str(alert_uuid))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        await db.refresh(alert)
        await self.audit.log(
            acknowledged_by,
            "acknowledge",
            "alert",
            str(alert_uuid),
            {
                "previous_status": previous_status,
                "alert_type": alert.alert_type,
                "sku": alert.sku,
                "severity": alert.severity,
            },
        )
        self.tasks.spawn(
            dispatch_notifications(self.notifier, AlertEvent.ACKNOWLEDGED, [alert]),
            name=f"notify-acknowledged-{alert_uuid}",
        )
        logger.info("alerts.acknowledged", alert_id=str(alert_uuid), acknowledged_by=acknowledged_by)
        return alert
