"""Locked increment of customers.delivery_score."""

from __future__ import annotations

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Customer


async def increment(
    db: AsyncSession,
    customer_id: uuid.UUID,
    tenant_id: uuid.UUID,
    delta: int,
) -> int:
    """
    Add ``delta`` to the customer's score and return the new value.

    Caller must already hold the shipment lock and the customer row lock.
    This is a plain Core UPDATE: no ORM events, no logging, no side effects.
    """
    await db.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        .values(delivery_score=Customer.delivery_score + delta)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        select(Customer.delivery_score).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
    )
    return int(result.scalar_one())
