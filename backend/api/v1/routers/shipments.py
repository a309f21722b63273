"""
Shipments Router — status updates that drive delivery scoring.

Endpoints:
  PATCH /api/v1/shipments/{shipment_id}/status — Persist a status change, then score it
"""

import uuid
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_scoring_coordinator, get_tenant_id
from scoring.coordinator import ScoringCoordinator
from scoring.status import UnknownShipmentStatus
from scoring.transitions import ShipmentNotFound, change_status_and_score

router = APIRouter(prefix="/api/v1/shipments", tags=["shipments"])

DEFERRED = "deferred"


# ─── Schemas ────────────────────────────────────────────────────────────────


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1, max_length=32)
    description: str | None = None
    location: str | None = Field(None, max_length=255)
    happened_at: datetime | None = None


class StatusUpdateResponse(BaseModel):
    shipment_id: UUID
    old_status: str
    new_status: str
    changed: bool
    scoring_outcome: str | None = None
    delta: int | None = None
    new_score: int | None = None
    correlation_id: str


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.patch("/{shipment_id}/status", response_model=StatusUpdateResponse)
async def update_shipment_status(
    shipment_id: UUID,
    update: StatusUpdate,
    x_correlation_id: str | None = Header(None, alias="X-Correlation-ID"),
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    coordinator: ScoringCoordinator = Depends(get_scoring_coordinator),
):
    """
    Commit the status change first; scoring runs afterwards and a scoring
    failure is reported as ``deferred`` instead of failing the request.
    """
    correlation_id = x_correlation_id or str(uuid.uuid4())
    try:
        transition, scoring = await change_status_and_score(
            db,
            coordinator,
            shipment_id=shipment_id,
            tenant_id=tenant_id,
            new_status=update.status,
            description=update.description,
            location=update.location,
            correlation_id=correlation_id,
            happened_at=update.happened_at,
        )
    except UnknownShipmentStatus as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ShipmentNotFound:
        raise HTTPException(status_code=404, detail="Shipment not found")

    scoring_outcome = None
    if scoring is not None:
        scoring_outcome = scoring.outcome.value
    elif transition.changed:
        scoring_outcome = DEFERRED

    return StatusUpdateResponse(
        shipment_id=shipment_id,
        old_status=transition.old_status.value,
        new_status=transition.new_status.value,
        changed=transition.changed,
        scoring_outcome=scoring_outcome,
        delta=scoring.delta if scoring is not None else None,
        new_score=scoring.new_score if scoring is not None else None,
        correlation_id=correlation_id,
    )
