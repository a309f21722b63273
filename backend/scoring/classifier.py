"""
Score Classifier — read-side presentation of delivery scores.

Pure functions only (plus one lock-free count query). The classification
table and the threshold-based is_risky() predicate use different
cutoffs: the table flags -1/-2 as risky "warning", while
is_risky() defaults to strictly below -3.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Shipment
from scoring.status import TERMINAL_STATUSES, ShipmentStatus

DEFAULT_RISK_THRESHOLD = -3
MIN_COMPLETED_SHIPMENTS = 3
NOT_ENOUGH_DATA = "Not enough data yet"


@dataclass(frozen=True)
class ScoreStatus:
    status: str
    label: str
    color: str
    is_risky: bool

    def as_dict(self) -> dict:
        return {"status": self.status, "label": self.label, "color": self.color, "is_risky": self.is_risky}


EXCELLENT = ScoreStatus("excellent", "Reliable", "green", False)
GOOD = ScoreStatus("good", "Good", "blue", False)
NEUTRAL = ScoreStatus("neutral", "Neutral", "gray", False)
WARNING = ScoreStatus("warning", "Caution", "yellow", True)
DANGER = ScoreStatus("danger", "High risk", "red", True)


def classify(score: int | None) -> ScoreStatus:
    score = score or 0
    if score >= 5:
        return EXCELLENT
    elif score >= 2:
        return GOOD
    elif score >= 0:
        return NEUTRAL
    elif score >= -2:
        return WARNING
    return DANGER


def is_risky(score: int | None, threshold: int = DEFAULT_RISK_THRESHOLD) -> bool:
    return (score or 0) < threshold


def _round_half_away_from_zero(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def range_offset(completed: int) -> int:
    """Wider display range for small samples (more shipments, tighter range)."""
    if completed < 5:
        return 5
    elif completed < 20:
        return 3
    return 2


@dataclass(frozen=True)
class SuccessRate:
    completed: int
    delivered: int
    has_enough_data: bool
    percentage: float | None
    range: tuple[int, int] | None

    @property
    def display(self) -> str:
        if not self.has_enough_data or self.range is None:
            return NOT_ENOUGH_DATA
        return f"{self.range[0]}% - {self.range[1]}%"


def success_rate(completed: int, delivered: int, min_completed: int = MIN_COMPLETED_SHIPMENTS) -> SuccessRate:
    """
    Delivery success estimate shown as a fuzzed range instead of an exact
    percentage, to communicate sample-size uncertainty.
    """
    percentage = (delivered / completed) * 100 if completed > 0 else None
    has_enough_data = completed >= min_completed

    display_range = None
    if has_enough_data and percentage is not None:
        offset = range_offset(completed)
        low = max(0, _round_half_away_from_zero(percentage - offset))
        high = min(100, _round_half_away_from_zero(percentage + offset))
        display_range = (low, high)

    return SuccessRate(
        completed=completed,
        delivered=delivered,
        has_enough_data=has_enough_data,
        percentage=percentage,
        range=display_range,
    )


async def customer_success_rate(db: AsyncSession, customer_id: uuid.UUID, tenant_id: uuid.UUID) -> SuccessRate:
    """Count a customer's completed/delivered shipments (lock-free, may be stale)."""
    result = await db.execute(
        select(Shipment.status, func.count(Shipment.id))
        .where(
            Shipment.customer_id == customer_id,
            Shipment.tenant_id == tenant_id,
            Shipment.status.in_([s.value for s in TERMINAL_STATUSES]),
        )
        .group_by(Shipment.status)
    )
    counts = {status: int(count) for status, count in result.all()}
    completed = sum(counts.values())
    delivered = counts.get(ShipmentStatus.DELIVERED.value, 0)
    return success_rate(completed, delivered)
