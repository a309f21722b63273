"""
Tests for PATCH /api/v1/shipments/{shipment_id}/status.
"""

import uuid

import pytest


@pytest.mark.asyncio
async def test_status_update_scores_terminal_transition(client, tenant, customer, make_shipment, fetch):
    shipment = await make_shipment(tenant.id, customer.id, "pending")

    response = await client.patch(
        f"/api/v1/shipments/{shipment.id}/status",
        json={"status": "delivered", "location": "Front door"},
        headers={"X-Correlation-ID": "corr-api-1"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["old_status"] == "pending"
    assert data["new_status"] == "delivered"
    assert data["changed"] is True
    assert data["scoring_outcome"] == "scored"
    assert data["delta"] == 1
    assert data["new_score"] == 1
    assert data["correlation_id"] == "corr-api-1"
    assert await fetch.score(customer.id) == 1


@pytest.mark.asyncio
async def test_correlation_id_is_generated_when_missing(client, tenant, customer, make_shipment):
    shipment = await make_shipment(tenant.id, customer.id, "pending")

    response = await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "picked_up"})

    assert response.status_code == 200
    data = response.json()
    assert uuid.UUID(data["correlation_id"])
    assert data["scoring_outcome"] == "not_qualifying"


@pytest.mark.asyncio
async def test_terminal_correction_keeps_score(client, tenant, customer, make_shipment, fetch):
    shipment = await make_shipment(tenant.id, customer.id, "pending")
    await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "delivered"})

    response = await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "cancelled"})

    assert response.status_code == 200
    assert response.json()["scoring_outcome"] == "not_qualifying"
    assert await fetch.score(customer.id) == 1
    assert len(await fetch.journal(shipment_id=shipment.id)) == 1


@pytest.mark.asyncio
async def test_repeated_status_is_unchanged(client, tenant, customer, make_shipment):
    shipment = await make_shipment(tenant.id, customer.id, "in_transit")

    response = await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "in_transit"})

    assert response.status_code == 200
    data = response.json()
    assert data["changed"] is False
    assert data["scoring_outcome"] is None


@pytest.mark.asyncio
async def test_unknown_status_is_422(client, tenant, customer, make_shipment, fetch):
    shipment = await make_shipment(tenant.id, customer.id, "pending")

    response = await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "teleported"})

    assert response.status_code == 422
    assert (await fetch.shipment(shipment.id)).status == "pending"


@pytest.mark.asyncio
async def test_unknown_shipment_is_404(client):
    response = await client.patch(f"/api/v1/shipments/{uuid.uuid4()}/status", json={"status": "delivered"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_scoring_failure_is_deferred(client, coordinator, tenant, customer, make_shipment, fetch):
    shipment = await make_shipment(tenant.id, customer.id, "out_for_delivery")

    async def unavailable(*args, **kwargs):
        raise RuntimeError("lock timeout")

    coordinator.on_status_changed = unavailable

    response = await client.patch(f"/api/v1/shipments/{shipment.id}/status", json={"status": "returned"})

    assert response.status_code == 200
    assert response.json()["scoring_outcome"] == "deferred"
    assert (await fetch.shipment(shipment.id)).status == "returned"
    assert await fetch.score(customer.id) == 0


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
