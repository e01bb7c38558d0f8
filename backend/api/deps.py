"""
StockGuard API Dependencies

Dependency injection for DB sessions and the shared service container.
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from api.state import Services, get_app_services
from db.session import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_services(request: Request) -> Services:
    """Services built at startup (see api.main lifespan)."""
    return get_app_services(request.app)
