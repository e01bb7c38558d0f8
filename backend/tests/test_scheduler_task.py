import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import Settings
from db.session import Base
from workers.celery_app import celery_app
from workers.scheduler import run_inventory_sweep


def test_run_inventory_sweep_checks_every_workspace(tmp_path, monkeypatch):
    from db.models import Alert, AuditLog, Product

    db_path = tmp_path / "sweep.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add_all(
                [
                    Product(workspace_id="ws-north", product_id="p-1", sku="MUG-01", title="Mug", inventory_quantity=0),
                    Product(workspace_id="ws-north", product_id="p-2", sku="CUP-01", title="Cup", inventory_quantity=40),
                    Product(workspace_id="ws-south", product_id="p-3", sku="MUG-01", title="Mug", inventory_quantity=6),
                ]
            )
            await db.commit()

    asyncio.run(_seed())

    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: Settings(
            _env_file=None,
            app_env="test",
            database_url=db_url,
            notifications_enabled=False,
            scheduler_base_delay_ms=0,
        ),
    )

    result = run_inventory_sweep.run()
    assert result["success"] is True
    assert result["summary"]["workspaces_checked"] == 2
    assert result["summary"]["successful_checks"] == 2
    assert result["run_id"] == "manual"

    async def _read():
        async with session_factory() as db:
            alerts = (await db.execute(select(Alert).order_by(Alert.workspace_id))).scalars().all()
            runs = (await db.execute(select(AuditLog).where(AuditLog.action == "scheduler_run"))).scalars().all()
            return alerts, runs

    alerts, runs = asyncio.run(_read())
    assert [(a.workspace_id, a.alert_type) for a in alerts] == [
        ("ws-north", "out_of_stock"),
        ("ws-south", "low_stock"),
    ]
    assert len(runs) == 1
    assert runs[0].actor == "system:scheduler"

    asyncio.run(engine.dispose())


def test_beat_schedule_runs_inventory_sweep():
    entry = celery_app.conf.beat_schedule["inventory-sweep"]
    assert entry["task"] == "workers.scheduler.run_inventory_sweep"
    assert entry["schedule"].total_seconds() == 30 * 60
