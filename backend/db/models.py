"""
DeliveryScore Database Models

Tables:
  1. tenants                  - Merchant organizations (scoping key)
  2. global_customers         - Cross-tenant identity keyed by contact fingerprint
  3. customers                - Tenant-scoped customers carrying delivery_score
  4. shipments                - Shipments + write-once scoring fields
  5. shipment_status_history  - One row per persisted status change
  6. delivery_score_journal   - One scoring event per shipment (audit trail)

Multi-tenant via explicit tenant_id on every tenant-owned table.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from db.session import Base


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
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


SHIPMENT_STATUS_CHECK = (
    "status IN ('pending', 'picked_up', 'in_transit', 'out_for_delivery', "
    "'delivered', 'failed', 'returned', 'cancelled')"
)

# ─── 1. Tenants ────────────────────────────────────────────────────────────


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    can_view_global_scores = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'trial', 'inactive', 'suspended')", name="ck_tenant_status"),
    )

    customers = relationship("Customer", back_populates="tenant")


# ─── 2. Global Customers ───────────────────────────────────────────────────


class GlobalCustomer(Base):
    __tablename__ = "global_customers"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    primary_email = Column(String(255))
    primary_phone = Column(String(64))
    hashed_fingerprint = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    customers = relationship("Customer", back_populates="global_customer")


# ─── 3. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.id"), nullable=False)
    global_customer_id = Column(GUID(), ForeignKey("global_customers.id"), nullable=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    phone = Column(String(64))
    # Mutated only by the scoring coordinator; equals the journal delta sum
    delivery_score = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_customers_tenant", "tenant_id"),
        Index("ix_customers_global", "global_customer_id"),
    )

    tenant = relationship("Tenant", back_populates="customers")
    global_customer = relationship("GlobalCustomer", back_populates="customers")
    shipments = relationship("Shipment", back_populates="customer")


# ─── 4. Shipments ──────────────────────────────────────────────────────────


class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.id"), nullable=False)
    customer_id = Column(GUID(), ForeignKey("customers.id"), nullable=True)
    global_customer_id = Column(GUID(), ForeignKey("global_customers.id"), nullable=True)
    tracking_number = Column(String(100))
    status = Column(String(32), nullable=False, default="pending")
    # Write-once scoring markers, set in the same transaction as the journal row
    scored_at = Column(DateTime, nullable=True)
    scored_delta = Column(SmallInteger, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_shipments_tenant_status", "tenant_id", "status"),
        Index("ix_shipments_customer_status", "customer_id", "status"),
        Index("ix_shipments_global_status", "global_customer_id", "status"),
        CheckConstraint(SHIPMENT_STATUS_CHECK, name="ck_shipment_status"),
        CheckConstraint("scored_delta IN (-1, 1) OR scored_delta IS NULL", name="ck_shipment_scored_delta"),
    )

    customer = relationship("Customer", back_populates="shipments")
    status_history = relationship("ShipmentStatusHistory", back_populates="shipment")


# ─── 5. Shipment Status History ────────────────────────────────────────────


class ShipmentStatusHistory(Base):
    __tablename__ = "shipment_status_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.id"), nullable=False)
    tenant_id = Column(GUID(), ForeignKey("tenants.id"), nullable=False)
    status = Column(String(32), nullable=False)
    description = Column(Text)
    location = Column(String(255))
    correlation_id = Column(String(64))
    happened_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_status_history_shipment_time", "shipment_id", "happened_at"),
        CheckConstraint(SHIPMENT_STATUS_CHECK, name="ck_status_history_status"),
    )

    shipment = relationship("Shipment", back_populates="status_history")


# ─── 6. Delivery Score Journal ─────────────────────────────────────────────


class DeliveryScoreJournal(Base):
    """
    Append-mostly audit trail of score changes.

    One row per scored shipment (unique shipment_id). delta, reason,
    created_at and id are write-once; customer_id/tenant_id may only be
    corrected through the unique-by-shipment upsert in scoring.ledger.
    """

    __tablename__ = "delivery_score_journal"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    shipment_id = Column(GUID(), ForeignKey("shipments.id"), nullable=False, unique=True)
    customer_id = Column(GUID(), ForeignKey("customers.id"), nullable=False)
    tenant_id = Column(GUID(), ForeignKey("tenants.id"), nullable=True)
    delta = Column(SmallInteger, nullable=False)
    reason = Column(String(32), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_journal_customer_created", "customer_id", "created_at"),
        Index("ix_journal_tenant_created", "tenant_id", "created_at"),
        CheckConstraint("delta IN (-1, 1)", name="ck_journal_delta"),
        CheckConstraint("reason IN ('delivered', 'returned', 'cancelled')", name="ck_journal_reason"),
    )
