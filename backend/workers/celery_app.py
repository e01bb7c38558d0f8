"""
Celery Application Configuration
"""

from datetime import timedelta

from celery import Celery

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stockguard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.scheduler"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.scheduler.*": {"queue": "alerts"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "inventory-sweep": {
            "task": "workers.scheduler.run_inventory_sweep",
            "schedule": timedelta(minutes=settings.scheduler_check_interval_minutes),
            "kwargs": {"manual": False},
            "options": {"queue": "alerts"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
