"""
Global Identity Aggregator — cross-tenant view of one real-world customer.

Tenant-scoped customers sharing an e-mail/phone fingerprint are linked to one
GlobalCustomer. The global score is recomputed on every read from shipment
statuses across all tenants; it is advisory only and never feeds back into a
tenant's own delivery_score.
"""

from __future__ import annotations

import hashlib
import re
import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Customer, GlobalCustomer, Shipment
from db.upsert import execute_upsert
from scoring.classifier import MIN_COMPLETED_SHIPMENTS, ScoreStatus, classify, is_risky
from scoring.status import ShipmentStatus

logger = structlog.get_logger()

_NON_DIGITS = re.compile(r"\D+")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_phone(phone: str | None) -> str:
    """Digits only; a leading 00 international prefix becomes +."""
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", phone)
    if digits.startswith("00"):
        digits = "+" + digits[2:]
    return digits


def generate_fingerprint(email: str | None, phone: str | None, pepper: str) -> str:
    # Delimiters keep ("ab", "c") and ("a", "bc") apart
    material = f"{pepper}|{normalize_email(email)}|{normalize_phone(phone)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


async def find_or_create_global_customer(
    db: AsyncSession,
    email: str | None,
    phone: str | None,
    *,
    pepper: str,
) -> GlobalCustomer:
    """Race-safe get-or-create keyed by the unique fingerprint."""
    email = normalize_email(email)
    phone = normalize_phone(phone)
    if not email and not phone:
        raise ValueError("At least one of email or phone is required to link a global customer")

    fingerprint = generate_fingerprint(email, phone, pepper)
    now = datetime.utcnow()
    await execute_upsert(
        db,
        GlobalCustomer.__table__,
        {
            "id": uuid.uuid4(),
            "primary_email": email or None,
            "primary_phone": phone or None,
            "hashed_fingerprint": fingerprint,
            "created_at": now,
            "updated_at": now,
        },
        conflict_columns=["hashed_fingerprint"],
        update_columns=["primary_email", "primary_phone", "updated_at"],
    )
    result = await db.execute(
        select(GlobalCustomer)
        .where(GlobalCustomer.hashed_fingerprint == fingerprint)
        .execution_options(populate_existing=True)
    )
    global_customer = result.scalar_one()
    logger.info("global_customer.resolved", global_customer_id=str(global_customer.id))
    return global_customer


async def find_global_customer(
    db: AsyncSession,
    email: str | None,
    phone: str | None,
    *,
    pepper: str,
) -> GlobalCustomer | None:
    fingerprint = generate_fingerprint(email, phone, pepper)
    result = await db.execute(select(GlobalCustomer).where(GlobalCustomer.hashed_fingerprint == fingerprint))
    return result.scalar_one_or_none()


async def link_customer(db: AsyncSession, customer: Customer, *, pepper: str) -> GlobalCustomer | None:
    """
    Attach a customer (and its unlinked shipments) to its global identity.
    Returns None for customers with neither e-mail nor phone.
    """
    if not normalize_email(customer.email) and not normalize_phone(customer.phone):
        return None
    global_customer = await find_or_create_global_customer(db, customer.email, customer.phone, pepper=pepper)
    customer.global_customer_id = global_customer.id
    await db.execute(
        update(Shipment)
        .where(Shipment.customer_id == customer.id, Shipment.global_customer_id.is_(None))
        .values(global_customer_id=global_customer.id)
        .execution_options(synchronize_session=False)
    )
    await db.flush()
    return global_customer


@dataclass(frozen=True)
class GlobalScore:
    global_customer_id: uuid.UUID
    completed_shipments: int
    delivered_shipments: int
    failed_outcomes: int  # returned + cancelled
    has_enough_data: bool
    score: int | None
    success_percentage: float | None

    @property
    def score_status(self) -> ScoreStatus | None:
        return classify(self.score) if self.score is not None else None

    def is_risky(self, threshold: int = -3) -> bool:
        return self.score is not None and is_risky(self.score, threshold)

    def as_dict(self) -> dict:
        status = self.score_status
        return {
            "score": self.score,
            "has_enough_data": self.has_enough_data,
            "score_status": status.as_dict() if status else None,
            "is_risky": self.is_risky(),
            "success_percentage": self.success_percentage,
            "completed_shipments": self.completed_shipments,
            "delivered_shipments": self.delivered_shipments,
        }


async def global_score(
    db: AsyncSession,
    global_customer_id: uuid.UUID,
    *,
    min_completed: int = MIN_COMPLETED_SHIPMENTS,
) -> GlobalScore:
    """Aggregate terminal shipment counts across every tenant for one identity."""
    linked_customers = select(Customer.id).where(Customer.global_customer_id == global_customer_id)
    result = await db.execute(
        select(Shipment.status, func.count(Shipment.id))
        .where(
            or_(
                Shipment.global_customer_id == global_customer_id,
                Shipment.customer_id.in_(linked_customers),
            ),
            Shipment.status.in_(
                [ShipmentStatus.DELIVERED.value, ShipmentStatus.RETURNED.value, ShipmentStatus.CANCELLED.value]
            ),
        )
        .group_by(Shipment.status)
    )
    counts = {status: int(count) for status, count in result.all()}
    delivered = counts.get(ShipmentStatus.DELIVERED.value, 0)
    failed = counts.get(ShipmentStatus.RETURNED.value, 0) + counts.get(ShipmentStatus.CANCELLED.value, 0)
    completed = delivered + failed
    has_enough_data = completed >= min_completed

    return GlobalScore(
        global_customer_id=global_customer_id,
        completed_shipments=completed,
        delivered_shipments=delivered,
        failed_outcomes=failed,
        has_enough_data=has_enough_data,
        score=(delivered - failed) if has_enough_data else None,
        success_percentage=(delivered / completed) * 100 if completed > 0 else None,
    )
