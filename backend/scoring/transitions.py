"""
Shipment status persistence.

The status change is committed on its own; scoring runs afterwards through
the ScoringCoordinator. A scoring failure never rolls back or blocks the
status change; it degrades to "score not updated this time" and surfaces
through logs and the integrity check.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Shipment, ShipmentStatusHistory
from scoring.coordinator import ScoringCoordinator, ScoringResult
from scoring.status import ShipmentStatus, StatusTransition, parse_status

logger = structlog.get_logger()


class ShipmentNotFound(LookupError):
    def __init__(self, shipment_id: uuid.UUID):
        self.shipment_id = shipment_id
        super().__init__(f"Shipment {shipment_id} not found")


async def record_status_change(
    db: AsyncSession,
    *,
    shipment_id: uuid.UUID,
    tenant_id: uuid.UUID,
    new_status: ShipmentStatus | str,
    description: str | None = None,
    location: str | None = None,
    correlation_id: str = "",
    happened_at: datetime | None = None,
) -> StatusTransition:
    """Validate and commit a status change plus its history row."""
    status = parse_status(new_status)

    result = await db.execute(
        select(Shipment)
        .where(Shipment.id == shipment_id, Shipment.tenant_id == tenant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    shipment = result.scalar_one_or_none()
    if shipment is None:
        await db.rollback()
        raise ShipmentNotFound(shipment_id)

    old_status = parse_status(shipment.status)
    if old_status == status:
        await db.rollback()
        logger.debug(
            "shipment.duplicate_status_skipped",
            shipment_id=str(shipment_id),
            tenant_id=str(tenant_id),
            status=status.value,
            correlation_id=correlation_id,
        )
        return StatusTransition(shipment_id, tenant_id, old_status, status, changed=False)

    now = datetime.utcnow()
    shipment.status = status.value
    shipment.updated_at = now
    db.add(
        ShipmentStatusHistory(
            shipment_id=shipment.id,
            tenant_id=tenant_id,
            status=status.value,
            description=description,
            location=location,
            correlation_id=correlation_id or None,
            happened_at=happened_at or now,
        )
    )
    await db.commit()

    logger.info(
        "shipment.status_updated",
        shipment_id=str(shipment_id),
        tenant_id=str(tenant_id),
        old_status=old_status.value,
        new_status=status.value,
        correlation_id=correlation_id,
    )
    return StatusTransition(shipment_id, tenant_id, old_status, status)


async def change_status_and_score(
    db: AsyncSession,
    coordinator: ScoringCoordinator,
    *,
    shipment_id: uuid.UUID,
    tenant_id: uuid.UUID,
    new_status: ShipmentStatus | str,
    description: str | None = None,
    location: str | None = None,
    correlation_id: str = "",
    happened_at: datetime | None = None,
) -> tuple[StatusTransition, ScoringResult | None]:
    """
    Commit the status change, then hand the transition to the coordinator.

    Returns the transition and the scoring result (None when scoring failed;
    the failure is already logged by the coordinator).
    """
    transition = await record_status_change(
        db,
        shipment_id=shipment_id,
        tenant_id=tenant_id,
        new_status=new_status,
        description=description,
        location=location,
        correlation_id=correlation_id,
        happened_at=happened_at,
    )
    if not transition.changed:
        return transition, None

    try:
        scoring = await coordinator.on_status_changed(
            shipment_id,
            transition.old_status,
            transition.new_status,
            correlation_id,
            tenant_id=tenant_id,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "shipment.scoring_deferred",
            shipment_id=str(shipment_id),
            tenant_id=str(tenant_id),
            correlation_id=correlation_id,
            error=str(exc),
        )
        return transition, None
    return transition, scoring
