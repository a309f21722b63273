import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from db.models import Customer, DeliveryScoreJournal, Shipment, Tenant
from db.session import Base, build_engine, build_session_factory
from workers.scoring import apply_delivery_score, check_delivery_score_integrity


@pytest.fixture
def worker_db(tmp_path, monkeypatch):
    """Seed a SQLite file and point the workers' settings at it."""
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}"

    async def _seed():
        engine = build_engine(db_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with build_session_factory(engine)() as db:
            tenant = Tenant(name="Worker Tenant", status="active")
            db.add(tenant)
            await db.flush()
            customer = Customer(tenant_id=tenant.id, name="Worker Customer", email="w@example.com")
            db.add(customer)
            await db.flush()
            shipment = Shipment(tenant_id=tenant.id, customer_id=customer.id, status="returned")
            db.add(shipment)
            await db.commit()
        await engine.dispose()
        return tenant, customer, shipment

    tenant, customer, shipment = asyncio.run(_seed())

    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(
            database_url=db_url,
            redis_url="redis://localhost:6379/0",
            scoring_max_attempts=3,
            scoring_retry_backoff_seconds=0,
            score_events_redis_enabled=False,
        ),
    )
    return SimpleNamespace(url=db_url, tenant=tenant, customer=customer, shipment=shipment)


def _read(db_url, query):
    async def _run():
        engine = build_engine(db_url)
        try:
            async with build_session_factory(engine)() as db:
                return (await db.execute(query)).scalars().all()
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def test_apply_delivery_score_is_idempotent(worker_db):
    kwargs = {
        "shipment_id": str(worker_db.shipment.id),
        "old_status": "in_transit",
        "new_status": "returned",
        "correlation_id": "corr-worker",
        "tenant_id": str(worker_db.tenant.id),
    }

    first = apply_delivery_score.run(**kwargs)
    second = apply_delivery_score.run(**kwargs)

    assert first["status"] == "success"
    assert first["outcome"] == "scored"
    assert first["delta"] == -1
    assert first["new_score"] == -1
    assert second["outcome"] == "already_scored"

    scores = _read(worker_db.url, select(Customer.delivery_score).where(Customer.id == worker_db.customer.id))
    assert scores == [-1]
    entries = _read(worker_db.url, select(DeliveryScoreJournal))
    assert len(entries) == 1


def test_apply_delivery_score_rejects_unknown_status(worker_db):
    result = apply_delivery_score.run(
        shipment_id=str(worker_db.shipment.id),
        old_status="in_transit",
        new_status="vaporized",
    )
    assert result["status"] == "failed"
    assert result["reason"] == "unknown_status"


def test_integrity_task_reports_tenant(worker_db):
    apply_delivery_score.run(
        shipment_id=str(worker_db.shipment.id),
        old_status="in_transit",
        new_status="returned",
    )

    report = check_delivery_score_integrity.run(tenant_id=str(worker_db.tenant.id))

    assert report["status"] == "ok"
    assert report["journal_sum"] == -1
    assert report["customers_checked"] == 1
