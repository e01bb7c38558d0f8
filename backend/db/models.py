"""
StockGuard Database Models

Multi-tenant via workspace_id on every table.

Tables:
  1. products    - Inventory snapshot per workspace (owned by the catalog sync)
  2. alerts      - Low-stock / out-of-stock alerts and their lifecycle
  3. audit_logs  - Append-only trail of every state-changing action
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


class AlertType(str, Enum):
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


# ─── 1. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(String(100), nullable=False)
    product_id = Column(String(100), nullable=False)  # id in the source catalog
    sku = Column(String(100))
    title = Column(String(255))
    inventory_quantity = Column(Integer)  # NULL = unknown, distinct from 0
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("workspace_id", "product_id", name="uq_product_per_workspace"),
        Index("ix_products_workspace", "workspace_id"),
        Index("ix_products_workspace_sku", "workspace_id", "sku"),
    )


# ─── 2. Alerts ──────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(String(100), nullable=False)
    product_id = Column(String(100))
    sku = Column(String(100), nullable=False)
    alert_type = Column(String(30), nullable=False)
    severity = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=AlertStatus.OPEN.value)
    acknowledged_by = Column(String(255))
    acknowledged_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_alerts_workspace_status", "workspace_id", "status"),
        Index("ix_alerts_workspace_sku", "workspace_id", "sku"),
        # At most one open alert per (workspace, sku, type).
        Index(
            "uq_alerts_open_sku_type",
            "workspace_id",
            "sku",
            "alert_type",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
        CheckConstraint("alert_type IN ('low_stock', 'out_of_stock')", name="ck_alert_type"),
        CheckConstraint("severity IN ('warning', 'critical')", name="ck_alert_severity"),
        CheckConstraint("status IN ('open', 'closed')", name="ck_alert_status"),
        CheckConstraint("sku <> ''", name="ck_alert_sku_not_empty"),
    )


# ─── 3. Audit Logs ─────────────────────────────────────────────────────────


class AuditLog(Base):
    __tablename__ = "audit_logs"

    audit_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    actor = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(100), nullable=False)
    payload = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_audit_logs_action_created", "action", "created_at"),
        Index("ix_audit_logs_target", "target_type", "target_id"),
    )
