"""
Test Configuration — Fixtures for async DB, services, and the test client.

Each test gets its own on-disk SQLite database (aiosqlite) so that code paths
opening their own sessions (audit writer, scheduler sweeps) see the same data
as the test.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select, update

from api.deps import get_db, get_services
from api.main import app
from api.state import build_services
from core.config import Settings
from db.models import AuditLog, Product
from db.session import Base, build_engine, build_session_factory

WORKSPACE_ID = "ws-test-001"


class RecordingNotifier:
    """Notification dispatcher double that records (event, skus, bulk) per call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[str, list[str], bool]] = []

    async def notify(self, event, alerts, *, bulk=False):
        self.calls.append((event.value, [a.sku for a in alerts], bulk))
        if self.fail:
            raise ConnectionError("notification transport down")


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'stockguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        app_env="test",
        notifications_enabled=False,
        scheduler_base_delay_ms=0,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def services(test_settings, session_factory, notifier):
    services = build_services(test_settings, session_factory, notifier=notifier)
    yield services
    await services.tasks.drain()


@pytest.fixture
async def client(test_db, services):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_services] = lambda: services

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Helpers ────────────────────────────────────────────────────────────


async def seed_products(session_factory, workspace_id: str, stock: dict[str, int | None]) -> None:
    """Insert one product per SKU with the given quantity."""
    async with session_factory() as db:
        db.add_all(
            [
                Product(
                    workspace_id=workspace_id,
                    product_id=f"prod-{sku}",
                    sku=sku,
                    title=f"Product {sku}",
                    inventory_quantity=qty,
                )
                for sku, qty in stock.items()
            ]
        )
        await db.commit()


async def set_quantity(session_factory, workspace_id: str, sku: str, qty: int | None) -> None:
    async with session_factory() as db:
        await db.execute(
            update(Product)
            .where(Product.workspace_id == workspace_id, Product.sku == sku)
            .values(inventory_quantity=qty)
        )
        await db.commit()


async def audit_records(session_factory, action: str | None = None) -> list[AuditLog]:
    async with session_factory() as db:
        query = select(AuditLog).order_by(AuditLog.created_at)
        if action:
            query = query.where(AuditLog.action == action)
        result = await db.execute(query)
        return list(result.scalars().all())
