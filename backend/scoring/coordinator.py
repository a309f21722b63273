"""
Scoring Coordinator — applies one delivery-score delta per qualifying
shipment transition, exactly once, under concurrent writers.

Transaction (retried on transient contention):
  1. lock shipment row          (always first)
  2. bail out if gone / already scored
  2a. journal row already present -> stamp scored_at from it, no increment
  3. lock customer row          (always second)
  4. increment customer score
  5. stamp shipment scored_at / scored_delta
  6. upsert journal row (unique by shipment)
  7. commit
After commit: publish one DeliveryScoreUpdated event.

The shipment -> customer lock order is the only deadlock-avoidance
mechanism; never lock a customer before its shipment here.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from db.models import Customer, Shipment
from scoring import accumulator, ledger
from scoring.events import DeliveryScoreUpdated, ScoreEventBus, build_event_bus
from scoring.status import ShipmentStatus, parse_status, qualifies_for_scoring, resolve_delta

logger = structlog.get_logger()

# Deadlock / serialization failure (PostgreSQL + ANSI)
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})
# Lock wait timeout / deadlock found (MySQL)
MYSQL_TRANSIENT_CODES = frozenset({1205, 1213})


def is_transient_contention(exc: BaseException) -> bool:
    """True for deadlock / serialization / lock-busy errors worth retrying."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code in TRANSIENT_SQLSTATES:
            return True
        args = getattr(candidate, "args", ())
        if args and args[0] in MYSQL_TRANSIENT_CODES:
            return True
    return "database is locked" in str(orig).lower()


class ScoringOutcome(str, Enum):
    SCORED = "scored"
    NOT_QUALIFYING = "not_qualifying"
    UNMAPPED_STATUS = "unmapped_status"
    SHIPMENT_MISSING = "shipment_missing"
    ALREADY_SCORED = "already_scored"
    CUSTOMER_MISSING = "customer_missing"


@dataclass(frozen=True)
class ScoringResult:
    outcome: ScoringOutcome
    shipment_id: uuid.UUID
    customer_id: uuid.UUID | None = None
    tenant_id: uuid.UUID | None = None
    delta: int | None = None
    reason: str | None = None
    new_score: int | None = None
    attempts: int = 0
    stamped_from_journal: bool = False

    @property
    def scored(self) -> bool:
        return self.outcome is ScoringOutcome.SCORED


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class ScoringCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        event_bus: ScoreEventBus | None = None,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.session_factory = session_factory
        self.event_bus = event_bus or ScoreEventBus()
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession], settings) -> "ScoringCoordinator":
        return cls(
            session_factory,
            event_bus=build_event_bus(settings),
            max_attempts=settings.scoring_max_attempts,
            retry_backoff_seconds=settings.scoring_retry_backoff_seconds,
        )

    async def on_status_changed(
        self,
        shipment_id: uuid.UUID | str,
        old_status: ShipmentStatus | str,
        new_status: ShipmentStatus | str,
        correlation_id: str = "",
        *,
        tenant_id: uuid.UUID | str | None = None,
    ) -> ScoringResult:
        """
        Score the shipment if this transition crosses into a terminal status.

        Must be called after the status change itself has been committed.
        Safe to call any number of times for the same transition.
        """
        shipment_id = _as_uuid(shipment_id)
        tenant_uuid = _as_uuid(tenant_id) if tenant_id is not None else None
        old = parse_status(old_status)
        new = parse_status(new_status)

        if not qualifies_for_scoring(old, new):
            return ScoringResult(ScoringOutcome.NOT_QUALIFYING, shipment_id, tenant_id=tenant_uuid)

        log = logger.bind(
            shipment_id=str(shipment_id),
            tenant_id=str(tenant_uuid) if tenant_uuid else None,
            correlation_id=correlation_id,
            old_status=old.value,
            new_status=new.value,
        )

        delta = resolve_delta(new)
        if delta is None:
            log.warning("delivery_score.unmapped_terminal_status")
            return ScoringResult(ScoringOutcome.UNMAPPED_STATUS, shipment_id, tenant_id=tenant_uuid)

        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_backoff_seconds, max=2),
                retry=retry_if_exception(is_transient_contention),
                before_sleep=self._log_retry(log),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await self._score_once(shipment_id, tenant_uuid, new, delta, log)
        except Exception as exc:
            log.error("delivery_score.scoring_failed", attempts=attempts, error=str(exc), exc_info=True)
            raise

        result = replace(result, attempts=attempts)
        if result.scored:
            log.info(
                "delivery_score.scored",
                customer_id=str(result.customer_id),
                delta=result.delta,
                new_score=result.new_score,
                attempts=attempts,
            )
            await self.event_bus.publish(
                DeliveryScoreUpdated(
                    shipment_id=result.shipment_id,
                    customer_id=result.customer_id,
                    tenant_id=result.tenant_id,
                    delta=result.delta,
                    reason=result.reason,
                    new_score=result.new_score,
                    correlation_id=correlation_id or "",
                )
            )
        return result

    @staticmethod
    def _log_retry(log):
        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "delivery_score.retrying",
                attempt=retry_state.attempt_number,
                error=str(exc),
            )

        return _before_sleep

    async def _score_once(
        self,
        shipment_id: uuid.UUID,
        tenant_id: uuid.UUID | None,
        new_status: ShipmentStatus,
        delta: int,
        log,
    ) -> ScoringResult:
        async with self.session_factory() as db:
            try:
                result = await self._apply_locked(db, shipment_id, tenant_id, new_status, delta, log)
            except Exception:
                await db.rollback()
                raise
            if result.scored or result.stamped_from_journal:
                await db.commit()
            else:
                await db.rollback()
            return result

    async def _apply_locked(
        self,
        db: AsyncSession,
        shipment_id: uuid.UUID,
        tenant_id: uuid.UUID | None,
        new_status: ShipmentStatus,
        delta: int,
        log,
    ) -> ScoringResult:
        shipment_query = (
            select(Shipment)
            .where(Shipment.id == shipment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if tenant_id is not None:
            shipment_query = shipment_query.where(Shipment.tenant_id == tenant_id)
        shipment = (await db.execute(shipment_query)).scalar_one_or_none()
        if shipment is None:
            log.warning("delivery_score.shipment_missing")
            return ScoringResult(ScoringOutcome.SHIPMENT_MISSING, shipment_id, tenant_id=tenant_id)

        if shipment.scored_at is not None:
            log.debug(
                "delivery_score.already_scored",
                scored_at=shipment.scored_at.isoformat(),
                scored_delta=shipment.scored_delta,
            )
            return ScoringResult(
                ScoringOutcome.ALREADY_SCORED,
                shipment_id,
                customer_id=shipment.customer_id,
                tenant_id=shipment.tenant_id,
            )

        # The journal row is the scoring record; scored_at is only a cache of it.
        existing = await ledger.journal_entry_for_shipment(db, shipment.id)
        if existing is not None:
            log.warning(
                "delivery_score.journal_without_scored_at",
                journal_delta=existing.delta,
                journal_customer_id=str(existing.customer_id),
            )
            await db.execute(
                update(Shipment)
                .where(Shipment.id == shipment.id)
                .values(scored_at=existing.created_at, scored_delta=existing.delta)
                .execution_options(synchronize_session=False)
            )
            return ScoringResult(
                ScoringOutcome.ALREADY_SCORED,
                shipment.id,
                customer_id=existing.customer_id,
                tenant_id=shipment.tenant_id,
                stamped_from_journal=True,
            )

        customer = None
        if shipment.customer_id is not None:
            customer = (
                await db.execute(
                    select(Customer)
                    .where(Customer.id == shipment.customer_id, Customer.tenant_id == shipment.tenant_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
        if customer is None:
            log.warning(
                "delivery_score.customer_missing",
                customer_id=str(shipment.customer_id) if shipment.customer_id else None,
                shipment_tenant_id=str(shipment.tenant_id),
            )
            return ScoringResult(ScoringOutcome.CUSTOMER_MISSING, shipment_id, tenant_id=shipment.tenant_id)

        new_score = await accumulator.increment(db, customer.id, shipment.tenant_id, delta)

        now = datetime.utcnow()
        await db.execute(
            update(Shipment)
            .where(Shipment.id == shipment.id)
            .values(scored_at=now, scored_delta=delta)
            .execution_options(synchronize_session=False)
        )
        await ledger.upsert_scored(
            db,
            shipment_id=shipment.id,
            customer_id=customer.id,
            tenant_id=shipment.tenant_id,
            delta=delta,
            reason=new_status.value,
            now=now,
        )

        return ScoringResult(
            ScoringOutcome.SCORED,
            shipment.id,
            customer_id=customer.id,
            tenant_id=shipment.tenant_id,
            delta=delta,
            reason=new_status.value,
            new_score=new_score,
        )
