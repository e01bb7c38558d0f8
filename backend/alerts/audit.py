"""
Audit Log Writer — append-only trail of state-changing actions.

Writes go through their own session so a failed audit insert can never roll
back the transition it describes. Failures are logged and swallowed.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import AuditLog

logger = structlog.get_logger()

SYSTEM_SCHEDULER_ACTOR = "system:scheduler"
MANUAL_TRIGGER_ACTOR = "user:manual_trigger"


@dataclass(frozen=True)
class AuditEntry:
    actor: str
    action: str
    target_type: str
    target_id: str
    payload: dict[str, Any] | None = field(default=None)


class AuditLogWriter:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log(
        self,
        actor: str,
        action: str,
        target_type: str,
        target_id: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        await self.log_many([AuditEntry(actor, action, target_type, str(target_id), payload)])

    async def log_many(self, entries: list[AuditEntry]) -> None:
        """Persist entries in one transaction. Never raises."""
        if not entries:
            return
        try:
            async with self._session_factory() as session:
                session.add_all(
                    [
                        AuditLog(
                            actor=e.actor,
                            action=e.action,
                            target_type=e.target_type,
                            target_id=str(e.target_id),
                            payload=e.payload,
                        )
                        for e in entries
                    ]
                )
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "audit.write_failed",
                actions=sorted({e.action for e in entries}),
                count=len(entries),
                error=str(exc),
            )

    async def recent(self, action: str, limit: int = 10) -> list[AuditLog]:
        """Latest records for an action, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(AuditLog).where(AuditLog.action == action).order_by(AuditLog.created_at.desc()).limit(limit)
            )
            return list(result.scalars().all())


def serialize_audit(record: AuditLog) -> dict[str, Any]:
    return {
        "audit_id": str(record.audit_id),
        "actor": record.actor,
        "action": record.action,
        "target_type": record.target_type,
        "target_id": record.target_id,
        "payload": record.payload,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }
