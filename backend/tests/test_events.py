"""
Tests for the delivery score event bus and the Redis publisher.
"""

import json
import uuid
from types import SimpleNamespace

from scoring.events import (
    DeliveryScoreUpdated,
    RedisScorePublisher,
    ScoreEventBus,
    build_event_bus,
    log_score_event,
)


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


def _event(**overrides):
    fields = {
        "shipment_id": uuid.uuid4(),
        "customer_id": uuid.uuid4(),
        "tenant_id": uuid.uuid4(),
        "delta": 1,
        "reason": "delivered",
        "new_score": 4,
        "correlation_id": "corr-evt",
    }
    fields.update(overrides)
    return DeliveryScoreUpdated(**fields)


def test_payload_is_json_ready():
    event = _event()
    payload = event.to_payload()
    assert payload["shipment_id"] == str(event.shipment_id)
    assert payload["delta"] == 1
    assert payload["new_score"] == 4
    json.dumps(payload)


async def test_bus_counts_successful_deliveries():
    received = []

    async def good(event):
        received.append(event)

    async def bad(event):
        raise ConnectionError("down")

    bus = ScoreEventBus([good, bad])
    bus.subscribe(good)

    delivered = await bus.publish(_event())

    assert delivered == 2
    assert len(received) == 2


async def test_log_subscriber_does_not_raise():
    await log_score_event(_event())


async def test_redis_publisher_uses_tenant_channel():
    client = FakeRedis()
    publisher = RedisScorePublisher("redis://unused", client=client)
    event = _event()

    await publisher(event)

    channel, message = client.published[0]
    assert channel == f"delivery_score:{event.tenant_id}"
    body = json.loads(message)
    assert body["type"] == "delivery_score_updated"
    assert body["payload"]["customer_id"] == str(event.customer_id)


def test_build_event_bus_respects_redis_flag():
    disabled = build_event_bus(SimpleNamespace(score_events_redis_enabled=False, redis_url="redis://x"))
    enabled = build_event_bus(SimpleNamespace(score_events_redis_enabled=True, redis_url="redis://x"))

    assert len(disabled._subscribers) == 1
    assert len(enabled._subscribers) == 2
    assert isinstance(enabled._subscribers[-1], RedisScorePublisher)
