"""
Product Inventory Reader + Workspace Enumerator.

Read-only access to the per-workspace product snapshot. Quantities are owned
by the catalog sync; this module never writes them except through the dev
restock tool (see alerts.restock).
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Product


@dataclass(frozen=True)
class ProductSnapshot:
    """Point-in-time view of one product's stock."""

    workspace_id: str
    product_id: str
    sku: str | None
    title: str | None
    inventory_quantity: int | None

    @property
    def display_name(self) -> str:
        return self.title or self.sku or self.product_id

    @classmethod
    def from_row(cls, row: Product) -> "ProductSnapshot":
        return cls(
            workspace_id=row.workspace_id,
            product_id=row.product_id,
            sku=row.sku.strip() if row.sku else None,
            title=row.title,
            inventory_quantity=row.inventory_quantity,
        )


class InventoryReader:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_products(self, workspace_id: str) -> list[ProductSnapshot]:
        """All products of a workspace, in stable insertion order."""
        result = await self.db.execute(
            select(Product)
            .where(Product.workspace_id == workspace_id)
            .order_by(Product.created_at, Product.product_id)
            .execution_options(populate_existing=True)
        )
        return [ProductSnapshot.from_row(row) for row in result.scalars().all()]

    async def list_active_workspaces(self) -> list[str]:
        """Distinct workspaces that own at least one product."""
        result = await self.db.execute(
            select(Product.workspace_id)
            .where(Product.workspace_id.is_not(None), Product.workspace_id != "")
            .distinct()
            .order_by(Product.workspace_id)
        )
        return [row.workspace_id for row in result.all()]

    async def get_product_by_sku(self, workspace_id: str, sku: str) -> Product | None:
        result = await self.db.execute(
            select(Product)
            .where(Product.workspace_id == workspace_id, Product.sku == sku)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
