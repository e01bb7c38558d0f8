"""Service container shared by the API process and Celery tasks."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alerts.acknowledge import AcknowledgmentHandler
from alerts.audit import AuditLogWriter
from alerts.engine import AlertLifecycleEngine, StockPolicy
from alerts.notifications import LogNotificationDispatcher, NotificationDispatcher, RedisNotificationDispatcher
from alerts.restock import MockRestocker
from core.cache import TTLCache
from core.concurrency import BackgroundTaskTracker, WorkspaceLocks
from core.config import Settings
from workers.scheduler import InventoryScheduler


@dataclass
class Services:
    settings: Settings
    audit: AuditLogWriter
    engine: AlertLifecycleEngine
    acknowledger: AcknowledgmentHandler
    restocker: MockRestocker
    scheduler: InventoryScheduler
    alert_cache: TTLCache
    tasks: BackgroundTaskTracker


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: NotificationDispatcher | None = None,
) -> Services:
    if notifier is None:
        notifier = (
            RedisNotificationDispatcher(settings.redis_url)
            if settings.notifications_enabled
            else LogNotificationDispatcher()
        )

    tasks = BackgroundTaskTracker()
    audit = AuditLogWriter(session_factory)
    engine = AlertLifecycleEngine(
        audit=audit,
        notifier=notifier,
        tasks=tasks,
        locks=WorkspaceLocks(),
        policy=StockPolicy(threshold=settings.low_stock_threshold, floor=settings.low_stock_floor),
    )
    return Services(
        settings=settings,
        audit=audit,
        engine=engine,
        acknowledger=AcknowledgmentHandler(audit, notifier, tasks),
        restocker=MockRestocker(engine, audit, enabled=not settings.is_production),
        scheduler=InventoryScheduler(
            session_factory,
            engine,
            audit,
            retry_attempts=settings.scheduler_retry_attempts,
            base_delay_ms=settings.scheduler_base_delay_ms,
            max_concurrency=settings.scheduler_max_concurrency,
            sweep_timeout_seconds=settings.scheduler_sweep_timeout_seconds,
            check_interval_minutes=settings.scheduler_check_interval_minutes,
            recent_runs_limit=settings.scheduler_recent_runs_limit,
        ),
        alert_cache=TTLCache(settings.alert_cache_ttl_seconds, max_entries=settings.alert_cache_max_entries),
        tasks=tasks,
    )


def init_services(app: FastAPI, services: Services) -> None:
    app.state.services = services


def get_app_services(app: FastAPI) -> Services:
    return app.state.services
