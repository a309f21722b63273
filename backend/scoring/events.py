"""
Delivery score domain events.

Exactly one DeliveryScoreUpdated is published per successful scoring, after
the scoring transaction has committed. Subscribers are observability hooks:
a failing subscriber is logged and never affects the committed score.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class DeliveryScoreUpdated:
    shipment_id: uuid.UUID
    customer_id: uuid.UUID
    tenant_id: uuid.UUID | None
    delta: int
    reason: str
    new_score: int
    correlation_id: str = ""
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_payload(self) -> dict[str, Any]:
        return {
            "shipment_id": str(self.shipment_id),
            "customer_id": str(self.customer_id),
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
            "delta": self.delta,
            "reason": self.reason,
            "new_score": self.new_score,
            "correlation_id": self.correlation_id,
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[DeliveryScoreUpdated], Awaitable[None]]


class ScoreEventBus:
    """In-process fan-out of score events to async subscribers."""

    def __init__(self, subscribers: list[Subscriber] | None = None):
        self._subscribers: list[Subscriber] = list(subscribers or [])

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, event: DeliveryScoreUpdated) -> int:
        """Deliver to every subscriber; returns how many succeeded."""
        delivered = 0
        for subscriber in self._subscribers:
            try:
                await subscriber(event)
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "delivery_score.event_delivery_failed",
                    subscriber=getattr(subscriber, "__name__", type(subscriber).__name__),
                    shipment_id=str(event.shipment_id),
                    correlation_id=event.correlation_id,
                    error=str(exc),
                    exc_info=True,
                )
        return delivered


async def log_score_event(event: DeliveryScoreUpdated) -> None:
    logger.info("delivery_score.updated", **event.to_payload())


class RedisScorePublisher:
    """
    Publish score events to Redis pub/sub for dashboards and websocket relays.

    Channel: delivery_score:<tenant_id>
    """

    def __init__(self, redis_url: str, client: Any | None = None):
        self.redis_url = redis_url
        self._client = client

    @staticmethod
    def channel_for(event: DeliveryScoreUpdated) -> str:
        return f"delivery_score:{event.tenant_id}"

    async def __call__(self, event: DeliveryScoreUpdated) -> None:
        payload = json.dumps({"type": "delivery_score_updated", "payload": event.to_payload()})
        if self._client is not None:
            await self._client.publish(self.channel_for(event), payload)
            return

        redis = aioredis.from_url(self.redis_url)
        try:
            await redis.publish(self.channel_for(event), payload)
        finally:
            await redis.aclose()


def build_event_bus(settings) -> ScoreEventBus:
    bus = ScoreEventBus([log_score_event])
    if settings.score_events_redis_enabled:
        bus.subscribe(RedisScorePublisher(settings.redis_url))
    return bus
