"""
Delivery score journal (ledger store).

The journal is the single source of truth for "was this shipment already
scored". One row per shipment, enforced by the unique index on shipment_id.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DeliveryScoreJournal
from db.upsert import execute_upsert

# Columns a later upsert may correct; everything else is write-once.
CORRECTABLE_COLUMNS = ["customer_id", "tenant_id"]


async def upsert_scored(
    db: AsyncSession,
    *,
    shipment_id: uuid.UUID,
    customer_id: uuid.UUID,
    tenant_id: uuid.UUID | None,
    delta: int,
    reason: str,
    now: datetime,
) -> None:
    """
    Insert the journal row for a shipment, or correct its owner if it exists.

    Atomic against the unique shipment_id index: two transactions that both
    passed a stale ``scored_at IS NULL`` check still end with one row whose
    delta/reason/created_at are those of the first insert. The coordinator
    checks for an existing row before incrementing, so the score never moves
    for a conflicting insert.
    """
    await execute_upsert(
        db,
        DeliveryScoreJournal.__table__,
        {
            "id": uuid.uuid4(),
            "shipment_id": shipment_id,
            "customer_id": customer_id,
            "tenant_id": tenant_id,
            "delta": delta,
            "reason": reason,
            "created_at": now,
        },
        conflict_columns=["shipment_id"],
        update_columns=CORRECTABLE_COLUMNS,
    )


async def journal_entry_for_shipment(db: AsyncSession, shipment_id: uuid.UUID) -> DeliveryScoreJournal | None:
    result = await db.execute(
        select(DeliveryScoreJournal).where(DeliveryScoreJournal.shipment_id == shipment_id).limit(1)
    )
    return result.scalar_one_or_none()


async def journal_for_customer(
    db: AsyncSession,
    customer_id: uuid.UUID,
    *,
    tenant_id: uuid.UUID | None = None,
    limit: int = 50,
) -> list[DeliveryScoreJournal]:
    query = select(DeliveryScoreJournal).where(DeliveryScoreJournal.customer_id == customer_id)
    if tenant_id is not None:
        query = query.where(DeliveryScoreJournal.tenant_id == tenant_id)
    query = query.order_by(DeliveryScoreJournal.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def journal_sum_for_customer(db: AsyncSession, customer_id: uuid.UUID) -> int:
    """Score re-derived from history; equals customers.delivery_score when consistent."""
    result = await db.execute(
        select(func.coalesce(func.sum(DeliveryScoreJournal.delta), 0)).where(
            DeliveryScoreJournal.customer_id == customer_id
        )
    )
    return int(result.scalar() or 0)
