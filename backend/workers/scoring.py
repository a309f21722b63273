"""
Delivery Scoring Workers

Workers:
  1. apply_delivery_score: Re-run the scoring coordinator for a committed status change
  2. check_delivery_score_integrity: Reconcile journal sums against customer scores for one tenant
  3. dispatch_integrity_checks: Beat entry point, fans the integrity check out per tenant
"""

import asyncio
import uuid

import structlog
from sqlalchemy import select

from workers.celery_app import celery_app

logger = structlog.get_logger()

INTEGRITY_TENANT_STATUSES = ("active", "trial")


@celery_app.task(
    name="workers.scoring.apply_delivery_score",
    bind=True,
    max_retries=5,
    default_retry_delay=30,
    acks_late=True,
)
def apply_delivery_score(
    self,
    shipment_id: str,
    old_status: str,
    new_status: str,
    correlation_id: str = "",
    tenant_id: str | None = None,
):
    """
    Score a shipment transition out of band (webhooks, bulk imports, or a
    request whose in-line scoring was deferred). Idempotent: re-delivery of
    the same message is a no-op once the shipment carries scored_at.
    """
    from core.config import get_settings
    from db.session import build_engine, build_session_factory
    from scoring.coordinator import ScoringCoordinator
    from scoring.status import UnknownShipmentStatus

    async def _apply():
        settings = get_settings()
        engine = build_engine(settings.database_url)
        try:
            coordinator = ScoringCoordinator.from_settings(build_session_factory(engine), settings)
            result = await coordinator.on_status_changed(
                shipment_id,
                old_status,
                new_status,
                correlation_id,
                tenant_id=tenant_id,
            )
            return {
                "status": "success",
                "outcome": result.outcome.value,
                "shipment_id": str(result.shipment_id),
                "customer_id": str(result.customer_id) if result.customer_id else None,
                "delta": result.delta,
                "new_score": result.new_score,
                "attempts": result.attempts,
                "correlation_id": correlation_id,
            }
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_apply())
    except UnknownShipmentStatus as exc:
        logger.error("scoring.task_rejected", shipment_id=shipment_id, error=str(exc))
        return {"status": "failed", "reason": "unknown_status", "shipment_id": shipment_id}
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "scoring.task_failed",
            shipment_id=shipment_id,
            correlation_id=correlation_id,
            error=str(exc),
            exc_info=True,
        )
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.scoring.check_delivery_score_integrity",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def check_delivery_score_integrity(self, tenant_id: str, fix: bool = False):
    """Reconcile one tenant's journal against its customers' scores."""
    from core.config import get_settings
    from db.session import build_engine, build_session_factory
    from scoring.integrity import check_tenant_integrity

    async def _check():
        settings = get_settings()
        engine = build_engine(settings.database_url)
        try:
            async with build_session_factory(engine)() as db:
                report = await check_tenant_integrity(db, uuid.UUID(tenant_id), fix=fix)
            return report.as_dict()
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_check())
    except Exception as exc:  # noqa: BLE001
        logger.error("scoring.integrity_check_failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.scoring.dispatch_integrity_checks",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_integrity_checks(self, fix: bool = False, statuses: list[str] | None = None):
    """Queue one check_delivery_score_integrity task per active or trial tenant."""
    from core.config import get_settings
    from db.models import Tenant
    from db.session import build_engine, build_session_factory

    tenant_statuses = tuple(statuses or INTEGRITY_TENANT_STATUSES)

    async def _tenant_ids() -> list[str]:
        engine = build_engine(get_settings().database_url)
        try:
            async with build_session_factory(engine)() as db:
                rows = await db.execute(
                    select(Tenant.id).where(Tenant.status.in_(tenant_statuses)).order_by(Tenant.created_at)
                )
                return [str(tenant_id) for tenant_id in rows.scalars().all()]
        finally:
            await engine.dispose()

    try:
        tenant_ids = asyncio.run(_tenant_ids())
    except Exception as exc:  # noqa: BLE001
        logger.error("scoring.integrity_dispatch_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    for tenant_id in tenant_ids:
        celery_app.send_task(
            check_delivery_score_integrity.name,
            kwargs={"tenant_id": tenant_id, "fix": fix},
            queue="maintenance",
        )

    logger.info("scoring.integrity_dispatched", tenant_count=len(tenant_ids), fix=fix)
    return {
        "status": "success",
        "run_id": self.request.id or "manual",
        "tenant_count": len(tenant_ids),
        "tenant_ids": tenant_ids,
        "fix": fix,
    }
