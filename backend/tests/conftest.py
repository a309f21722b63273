"""
Test Configuration — Fixtures for a file-backed async DB, the scoring
coordinator, seeded tenants/customers/shipments, and the API client.

Every test gets its own SQLite file under tmp_path. The coordinator opens its
own sessions, so test code reads and writes through short-lived sessions
(``session_factory``) that release the SQLite write lock on exit.
"""

import uuid
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from api.deps import get_current_user, get_db, get_scoring_coordinator
from api.main import app
from db.models import Customer, DeliveryScoreJournal, Shipment, Tenant
from db.session import Base, build_engine, build_session_factory
from scoring.coordinator import ScoringCoordinator
from scoring.events import ScoreEventBus


@pytest.fixture
async def engine(tmp_path):
    """Create a per-test database file and build all tables."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'deliveryscore.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def published_events():
    return []


@pytest.fixture
def coordinator(session_factory, published_events):
    async def capture(event):
        published_events.append(event)

    return ScoringCoordinator(
        session_factory,
        event_bus=ScoreEventBus([capture]),
        max_attempts=3,
        retry_backoff_seconds=0,
    )


@pytest.fixture
async def tenant(session_factory):
    async with session_factory() as db:
        tenant = Tenant(name="Acme Couriers", status="active", can_view_global_scores=False)
        db.add(tenant)
        await db.commit()
    return tenant


@pytest.fixture
async def customer(session_factory, tenant):
    async with session_factory() as db:
        customer = Customer(
            tenant_id=tenant.id,
            name="Jane Receiver",
            email="jane@example.com",
            phone="+1 (555) 010-2000",
            delivery_score=0,
        )
        db.add(customer)
        await db.commit()
    return customer


@pytest.fixture
def make_shipment(session_factory):
    """Factory: persist a shipment in the given status and return it."""

    async def _make(tenant_id, customer_id, status="pending", **fields):
        async with session_factory() as db:
            shipment = Shipment(
                tenant_id=tenant_id,
                customer_id=customer_id,
                status=status,
                tracking_number=fields.pop("tracking_number", f"TRK-{uuid.uuid4().hex[:10]}"),
                **fields,
            )
            db.add(shipment)
            await db.commit()
        return shipment

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read helpers that never hold a transaction open past the call."""

    async def score(customer_id) -> int:
        async with session_factory() as db:
            return (await db.execute(select(Customer.delivery_score).where(Customer.id == customer_id))).scalar_one()

    async def shipment(shipment_id) -> Shipment:
        async with session_factory() as db:
            return await db.get(Shipment, shipment_id)

    async def journal(shipment_id=None, customer_id=None) -> list[DeliveryScoreJournal]:
        async with session_factory() as db:
            query = select(DeliveryScoreJournal)
            if shipment_id is not None:
                query = query.where(DeliveryScoreJournal.shipment_id == shipment_id)
            if customer_id is not None:
                query = query.where(DeliveryScoreJournal.customer_id == customer_id)
            return list((await db.execute(query)).scalars().all())

    return SimpleNamespace(score=score, shipment=shipment, journal=journal)


@pytest.fixture
def mock_user(tenant):
    """Mock authenticated user scoped to the seeded tenant."""
    return {
        "sub": "test-user",
        "email": "ops@acme.example",
        "tenant_id": str(tenant.id),
    }


@pytest.fixture
async def client(session_factory, coordinator, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_scoring_coordinator] = lambda: coordinator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
