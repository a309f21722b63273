"""
Shipment status state machine.

Closed status enumeration plus the terminal-status delta table that decides
whether a status change is a scoring event.

Qualifying transition: old status non-terminal AND new status terminal.
Terminal -> terminal corrections (e.g. delivered -> cancelled) are never
re-scored; the journal stays write-once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UnknownShipmentStatus(ValueError):
    """Raised for any status outside the closed enumeration."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unknown shipment status: {value!r}")


class ShipmentStatus(str, Enum):
    PENDING = "pending"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"  # non-terminal; may be followed by returned/cancelled
    RETURNED = "returned"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[ShipmentStatus] = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED, ShipmentStatus.CANCELLED}
)

SCORE_DELTAS: dict[ShipmentStatus, int] = {
    ShipmentStatus.DELIVERED: 1,
    ShipmentStatus.RETURNED: -1,
    ShipmentStatus.CANCELLED: -1,
}


def parse_status(value: ShipmentStatus | str) -> ShipmentStatus:
    """Coerce a raw status string into the closed enum, rejecting unknown values."""
    if isinstance(value, ShipmentStatus):
        return value
    try:
        return ShipmentStatus(str(value).strip().lower())
    except ValueError:
        raise UnknownShipmentStatus(value) from None


def is_terminal(status: ShipmentStatus | str) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def qualifies_for_scoring(old_status: ShipmentStatus | str, new_status: ShipmentStatus | str) -> bool:
    return not is_terminal(old_status) and is_terminal(new_status)


def resolve_delta(status: ShipmentStatus | str) -> int | None:
    """Signed delta for a terminal status, None when unmapped."""
    return SCORE_DELTAS.get(parse_status(status))


@dataclass(frozen=True)
class StatusTransition:
    """A status change as seen by the state machine."""

    shipment_id: object
    tenant_id: object
    old_status: ShipmentStatus
    new_status: ShipmentStatus
    changed: bool = True

    @property
    def qualifies(self) -> bool:
        return self.changed and qualifies_for_scoring(self.old_status, self.new_status)

    @property
    def delta(self) -> int | None:
        return resolve_delta(self.new_status) if self.qualifies else None
