"""
Delivery score integrity check.

Reconciles customers.delivery_score against the journal delta sum per
customer. The only automatic repair is resetting a score to 0 when the
customer's journal nets to 0; any other drift is reported, never rewritten.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Customer, DeliveryScoreJournal, Tenant

logger = structlog.get_logger()


@dataclass(frozen=True)
class CustomerMismatch:
    customer_id: uuid.UUID
    journal: int
    score: int

    @property
    def diff(self) -> int:
        return self.score - self.journal

    @property
    def safely_fixable(self) -> bool:
        return self.journal == 0 and self.score != 0

    def as_dict(self) -> dict:
        return {
            "customer_id": str(self.customer_id),
            "journal": self.journal,
            "score": self.score,
            "diff": self.diff,
        }


@dataclass
class IntegrityReport:
    tenant_id: uuid.UUID
    tenant_name: str | None = None
    journal_sum: int = 0
    customers_checked: int = 0
    mismatches: list[CustomerMismatch] = field(default_factory=list)
    fixed: int = 0

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def as_dict(self) -> dict:
        return {
            "tenant_id": str(self.tenant_id),
            "tenant_name": self.tenant_name,
            "status": "ok" if self.ok else "mismatch",
            "journal_sum": self.journal_sum,
            "customers_checked": self.customers_checked,
            "mismatch_count": len(self.mismatches),
            "mismatches": [m.as_dict() for m in self.mismatches],
            "fixed": self.fixed,
        }


async def reset_unjournaled_scores(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    mismatches: list[CustomerMismatch],
) -> int:
    """
    Reset safely fixable scores to 0 and return how many rows changed.

    Each reset is conditional on the score still holding the value the check
    observed and the customer still having no journal rows, so a shipment
    scored after the check keeps its delta. The caller commits.
    """
    fixed = 0
    for mismatch in mismatches:
        if not mismatch.safely_fixable:
            continue
        has_journal = (
            select(DeliveryScoreJournal.id).where(DeliveryScoreJournal.customer_id == mismatch.customer_id).exists()
        )
        result = await db.execute(
            update(Customer)
            .where(
                Customer.id == mismatch.customer_id,
                Customer.tenant_id == tenant_id,
                Customer.delivery_score == mismatch.score,
                ~has_journal,
            )
            .values(delivery_score=0)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            fixed += result.rowcount
        else:
            logger.info(
                "delivery_score.integrity_fix_skipped",
                tenant_id=str(tenant_id),
                customer_id=str(mismatch.customer_id),
                observed_score=mismatch.score,
            )
    return fixed


async def check_tenant_integrity(db: AsyncSession, tenant_id: uuid.UUID, *, fix: bool = False) -> IntegrityReport:
    tenant = await db.get(Tenant, tenant_id)
    report = IntegrityReport(tenant_id=tenant_id, tenant_name=tenant.name if tenant else None)

    journal_sums = (
        select(
            DeliveryScoreJournal.customer_id.label("customer_id"),
            func.sum(DeliveryScoreJournal.delta).label("journal_delta"),
        )
        .where(DeliveryScoreJournal.tenant_id == tenant_id)
        .group_by(DeliveryScoreJournal.customer_id)
        .subquery()
    )
    rows = (
        await db.execute(
            select(Customer.id, Customer.delivery_score, func.coalesce(journal_sums.c.journal_delta, 0))
            .outerjoin(journal_sums, journal_sums.c.customer_id == Customer.id)
            .where(Customer.tenant_id == tenant_id)
        )
    ).all()

    for customer_id, score, journal in rows:
        report.customers_checked += 1
        report.journal_sum += int(journal)
        if int(score or 0) != int(journal):
            report.mismatches.append(CustomerMismatch(customer_id, int(journal), int(score or 0)))

    if fix and report.mismatches:
        report.fixed = await reset_unjournaled_scores(db, tenant_id, report.mismatches)
        await db.commit()

    if report.ok:
        logger.info("delivery_score.integrity_ok", tenant_id=str(tenant_id), journal_sum=report.journal_sum)
    else:
        logger.warning(
            "delivery_score.integrity_mismatch",
            tenant_id=str(tenant_id),
            mismatch_count=len(report.mismatches),
            fixed=report.fixed,
        )
    return report


async def check_all_tenants(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID | None = None,
    fix: bool = False,
) -> list[IntegrityReport]:
    if tenant_id is not None:
        tenant_ids = [tenant_id]
    else:
        tenant_ids = list((await db.execute(select(Tenant.id).order_by(Tenant.created_at.asc()))).scalars().all())

    reports = []
    for tid in tenant_ids:
        reports.append(await check_tenant_integrity(db, tid, fix=fix))
    return reports
