"""
Multi-workspace inventory scheduler.

Sweeps every active workspace (or a single one) concurrently, each sweep
wrapped in retry-with-backoff and a per-attempt timeout. A failing workspace
is reported in the results and never aborts its siblings. Every completed run
leaves exactly one ``scheduler_run`` audit record; a run that fails as a whole
leaves a ``scheduler_error`` record instead.
"""

from __future__ import annotations

import asyncio
import time
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alerts.audit import MANUAL_TRIGGER_ACTOR, SYSTEM_SCHEDULER_ACTOR, AuditLogWriter, serialize_audit
from alerts.engine import AlertLifecycleEngine
from core.errors import SchedulerRunError
from core.retry import retry_async
from db.models import utcnow
from inventory.reader import InventoryReader
from workers.celery_app import celery_app

logger = structlog.get_logger()

SCHEDULER_TARGET = ("system", "inventory_scheduler")


class RunMode(str, Enum):
    MANUAL = "manual"
    TIMED = "timed"


@dataclass
class WorkspaceOutcome:
    workspace_id: str
    success: bool
    attempts: int
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"workspace_id": self.workspace_id, "success": self.success, "attempts": self.attempts}
        if self.success:
            data["result"] = self.result
        else:
            data["error"] = self.error
        return data


@dataclass
class SchedulerRunResult:
    mode: RunMode
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    outcomes: list[WorkspaceOutcome] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        successful = sum(1 for o in self.outcomes if o.success)
        return {
            "workspaces_checked": len(self.outcomes),
            "successful_checks": successful,
            "failed_checks": len(self.outcomes) - successful,
            "duration_ms": self.duration_ms,
        }

    @property
    def message(self) -> str:
        if not self.outcomes:
            return "No active workspaces found"
        return f"Inventory check completed for {len(self.outcomes)} workspace(s)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "message": self.message,
            "summary": self.summary,
            "results": [o.to_dict() for o in self.outcomes],
        }

    def audit_payload(self) -> dict[str, Any]:
        return {
            "manual": self.mode == RunMode.MANUAL,
            **self.summary,
            "start_time": self.started_at.isoformat(),
            "end_time": self.finished_at.isoformat(),
            "results": [o.to_dict() for o in self.outcomes],
        }


class InventoryScheduler:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AlertLifecycleEngine,
        audit: AuditLogWriter,
        *,
        retry_attempts: int = 3,
        base_delay_ms: int = 1000,
        max_concurrency: int = 10,
        sweep_timeout_seconds: float = 10.0,
        check_interval_minutes: int = 30,
        recent_runs_limit: int = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.audit = audit
        self.retry_attempts = retry_attempts
        self.base_delay_ms = base_delay_ms
        self.max_concurrency = max_concurrency
        self.sweep_timeout_seconds = sweep_timeout_seconds
        self.check_interval_minutes = check_interval_minutes
        self.recent_runs_limit = recent_runs_limit
        self._sleep = sleep
        self._clock = clock

    @property
    def configuration(self) -> dict[str, Any]:
        return {
            "check_interval_minutes": self.check_interval_minutes,
            "retry_attempts": self.retry_attempts,
            "base_delay_ms": self.base_delay_ms,
        }

    async def active_workspaces(self) -> list[str]:
        async with self.session_factory() as db:
            return await InventoryReader(db).list_active_workspaces()

    async def run(self, mode: RunMode = RunMode.TIMED, workspace_id: str | None = None) -> SchedulerRunResult:
        actor = MANUAL_TRIGGER_ACTOR if mode == RunMode.MANUAL else SYSTEM_SCHEDULER_ACTOR
        started_at = utcnow()
        start = self._clock()
        logger.info("scheduler.run_started", mode=mode.value, workspace_id=workspace_id)

        try:
            workspaces = [workspace_id] if workspace_id else await self.active_workspaces()
            semaphore = asyncio.Semaphore(self.max_concurrency)
            outcomes = await asyncio.gather(*(self._sweep_workspace(ws, semaphore) for ws in workspaces))
        except Exception as exc:
            logger.error("scheduler.run_failed", mode=mode.value, error=str(exc), exc_info=True)
            await self.audit.log(
                actor,
                "scheduler_error",
                *SCHEDULER_TARGET,
                {"error": str(exc), "stack": traceback.format_exc()},
            )
            raise SchedulerRunError(str(exc) or type(exc).__name__) from exc

        run = SchedulerRunResult(
            mode=mode,
            started_at=started_at,
            finished_at=utcnow(),
            duration_ms=int((self._clock() - start) * 1000),
            outcomes=list(outcomes),
        )
        await self.audit.log(actor, "scheduler_run", *SCHEDULER_TARGET, run.audit_payload())
        logger.info("scheduler.run_completed", mode=mode.value, **run.summary)
        return run

    async def _sweep_workspace(self, workspace_id: str, semaphore: asyncio.Semaphore) -> WorkspaceOutcome:
        attempts = 0

        async def attempt():
            nonlocal attempts
            async with semaphore:
                attempts += 1
                async with self.session_factory() as db:
                    return await self.engine.sweep(db, workspace_id, timeout=self.sweep_timeout_seconds)

        try:
            result = await retry_async(
                attempt,
                attempts=self.retry_attempts,
                base_delay=self.base_delay_ms / 1000,
                sleep=self._sleep,
                label=f"inventory_sweep:{workspace_id}",
            )
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            logger.error("scheduler.workspace_failed", workspace_id=workspace_id, attempts=attempts, error=error)
            return WorkspaceOutcome(workspace_id=workspace_id, success=False, attempts=attempts, error=error)

        return WorkspaceOutcome(workspace_id=workspace_id, success=True, attempts=attempts, result=result.to_dict())

    async def status(self) -> dict[str, Any]:
        """Recent runs plus configuration. Degrades to empty lists when the store is down."""
        try:
            active = await self.active_workspaces()
            runs = await self.audit.recent("scheduler_run", self.recent_runs_limit)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("scheduler.status_degraded", error=str(exc))
            return {
                "scheduler_status": "active",
                "active_workspaces": [],
                "recent_runs": [],
                "configuration": self.configuration,
                "warning": "Store unavailable; scheduler status is incomplete",
            }
        return {
            "scheduler_status": "active",
            "active_workspaces": active,
            "recent_runs": [serialize_audit(r) for r in runs],
            "configuration": self.configuration,
        }


@celery_app.task(
    name="workers.scheduler.run_inventory_sweep",
    bind=True,
    acks_late=True,
)
def run_inventory_sweep(self, workspace_id: str | None = None, manual: bool = False):
    """
    Timed (beat) or queued sweep across workspaces.

    Runs on its own engine and event loop; retries happen per workspace inside
    the scheduler, so the task itself is not retried.
    """
    from api.state import build_services
    from core.config import get_settings
    from db.session import build_engine, build_session_factory

    run_id = self.request.id or "manual"
    mode = RunMode.MANUAL if manual else RunMode.TIMED

    async def _run():
        settings = get_settings()
        engine = build_engine(settings.database_url)
        services = build_services(settings, build_session_factory(engine))
        try:
            run = await services.scheduler.run(mode, workspace_id)
            summary = {**run.to_dict(), "run_id": run_id}
            logger.info("scheduler.task_complete", run_id=run_id, **run.summary)
            return summary
        finally:
            await services.tasks.drain()
            await engine.dispose()

    try:
        return asyncio.run(_run())
    except SchedulerRunError as exc:
        logger.error("scheduler.task_failed", run_id=run_id, error=exc.message, details=exc.context.get("details"))
        return {**exc.to_payload(), "run_id": run_id}
