"""
Customers Router — read-only delivery score views.

Endpoints:
  GET /api/v1/customers/{customer_id}/delivery-score — Score, classification, success range, global view
  GET /api/v1/customers/{customer_id}/delivery-score/journal — Scoring events, newest first
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_tenant_id
from db.models import Customer, Tenant
from scoring import ledger
from scoring.classifier import classify, customer_success_rate, is_risky
from scoring.global_identity import global_score

router = APIRouter(prefix="/api/v1/customers", tags=["customers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class JournalEntryResponse(BaseModel):
    id: UUID
    shipment_id: UUID
    customer_id: UUID
    delta: int
    reason: str
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Helpers ────────────────────────────────────────────────────────────────


async def _get_customer(db: AsyncSession, customer_id: UUID, tenant_id: UUID) -> Customer:
    result = await db.execute(select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id))
    customer = result.scalar_one_or_none()
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


async def _global_block(db: AsyncSession, customer: Customer, tenant_id: UUID) -> dict[str, Any]:
    tenant = await db.get(Tenant, tenant_id)
    if tenant is None or not tenant.can_view_global_scores or customer.global_customer_id is None:
        return {"enabled": False}
    score = await global_score(db, customer.global_customer_id)
    return {"enabled": True, **score.as_dict()}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{customer_id}/delivery-score")
async def get_delivery_score(
    customer_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    customer = await _get_customer(db, customer_id, tenant_id)
    score = customer.delivery_score or 0
    rate = await customer_success_rate(db, customer.id, tenant_id)

    return {
        "customer_id": str(customer.id),
        "name": customer.name,
        "delivery_score": score,
        "score_status": classify(score).as_dict(),
        "is_risky": is_risky(score),
        "has_enough_data": rate.has_enough_data,
        "success_percentage": rate.percentage,
        "success_rate_range": rate.display,
        "completed_shipments": rate.completed,
        "delivered_shipments": rate.delivered,
        "global": await _global_block(db, customer, tenant_id),
    }


@router.get("/{customer_id}/delivery-score/journal", response_model=list[JournalEntryResponse])
async def get_delivery_score_journal(
    customer_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    customer = await _get_customer(db, customer_id, tenant_id)
    return await ledger.journal_for_customer(db, customer.id, tenant_id=tenant_id, limit=limit)
