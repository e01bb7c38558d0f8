"""
Notification Dispatcher — announce alert lifecycle events.

Delivery is best-effort: callers spawn notify() off the critical path and a
failure here never fails a sweep or an acknowledgment.
"""

import json
from enum import Enum
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog

from db.models import Alert

logger = structlog.get_logger()


class AlertEvent(str, Enum):
    CREATED = "created"
    CLOSED = "closed"
    ACKNOWLEDGED = "acknowledged"


class NotificationDispatcher(Protocol):
    async def notify(self, event: AlertEvent, alerts: list[Alert], *, bulk: bool = False) -> None: ...


def _alert_payload(alert: Alert) -> dict[str, Any]:
    return {
        "alert_id": str(alert.alert_id),
        "workspace_id": alert.workspace_id,
        "sku": alert.sku,
        "alert_type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "status": alert.status,
        "acknowledged_by": alert.acknowledged_by,
    }


class RedisNotificationDispatcher:
    """
    Publish alert events to Redis pub/sub, one channel per workspace.

    Per-alert messages have type "alert"; a bulk call publishes a single
    "alert_batch" message per workspace instead.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url

    async def notify(self, event: AlertEvent, alerts: list[Alert], *, bulk: bool = False) -> None:
        if not alerts:
            return

        redis = aioredis.from_url(self.redis_url)
        try:
            total_subs = 0
            if bulk:
                by_workspace: dict[str, list[Alert]] = {}
                for alert in alerts:
                    by_workspace.setdefault(alert.workspace_id, []).append(alert)
                for workspace_id, group in by_workspace.items():
                    message = json.dumps(
                        {
                            "type": "alert_batch",
                            "event": event.value,
                            "payload": {"count": len(group), "alerts": [_alert_payload(a) for a in group]},
                        }
                    )
                    total_subs += await redis.publish(f"alerts:{workspace_id}", message)
            else:
                for alert in alerts:
                    message = json.dumps({"type": "alert", "event": event.value, "payload": _alert_payload(alert)})
                    total_subs += await redis.publish(f"alerts:{alert.workspace_id}", message)
            logger.debug("notifications.published", event=event.value, count=len(alerts), bulk=bulk, subscribers=total_subs)
        finally:
            await redis.aclose()


class LogNotificationDispatcher:
    """Log-only dispatcher used when notifications are disabled."""

    async def notify(self, event: AlertEvent, alerts: list[Alert], *, bulk: bool = False) -> None:
        logger.info(
            "notifications.logged",
            event=event.value,
            count=len(alerts),
            bulk=bulk,
            alert_ids=[str(a.alert_id) for a in alerts],
        )
