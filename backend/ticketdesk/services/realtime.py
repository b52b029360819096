"""Real-time event fan-out over Redis pub/sub."""
from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from uuid import UUID

import redis

logger = logging.getLogger(__name__)


def user_channel(user_id: UUID | str) -> str:
    return f"user:{user_id}"


def ticket_channel(ticket_id: UUID | str) -> str:
    return f"ticket:{ticket_id}"


class RedisEventPublisher:
    """Publishes JSON events; socket gateways subscribe to the channels."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisEventPublisher":
        return cls(redis.Redis.from_url(url))

    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        self._client.publish(channel, message)

    def publish_many(self, channels: Iterable[str], event: str, payload: dict[str, Any]) -> int:
        """Publish to every channel; returns how many publishes failed."""
        failures = 0
        for channel in channels:
            try:
                self.publish(channel, event, payload)
            except redis.RedisError:
                failures += 1
                logger.warning("Real-time publish to %s failed (%s)", channel, event, exc_info=True)
        return failures
