from __future__ import annotations

"""Domain events over Redis pub/sub.

Every event goes out as a JSON envelope ``{"type", "at", "data"}`` on the
channel ``projectbot.events.<type>``. Without ``REDIS_URL`` nothing is
published. An unreachable server drops the event; the next event reconnects.
"""

from datetime import UTC, datetime
from threading import Lock
from typing import Any, Dict, Optional
import json
import logging
import os

import redis


logger = logging.getLogger("projectbot.events")

CHANNEL_PREFIX = "projectbot.events"
MESSAGE_CREATED = "message.created"
SUMMARY_CREATED = "summary.created"


def channel_for(event_type: str) -> str:
    return f"{CHANNEL_PREFIX}.{event_type}"


class EventPublisher:
    def __init__(self, url: str, *, socket_timeout: float = 0.5) -> None:
        self.url = url
        self.socket_timeout = socket_timeout
        self._redis: Optional[redis.Redis] = None

    def _connection(self) -> Optional[redis.Redis]:
        if self._redis is not None:
            return self._redis
        try:
            client = redis.Redis.from_url(self.url, socket_timeout=self.socket_timeout)
            client.ping()
        except redis.RedisError as exc:
            logger.debug("event_bus_unreachable url=%s err=%s", self.url, exc)
            return None
        self._redis = client
        return client

    def emit(self, event_type: str, data: Dict[str, Any]) -> bool:
        client = self._connection()
        if client is None:
            return False
        envelope = {"type": event_type, "at": datetime.now(UTC).isoformat(), "data": data}
        try:
            client.publish(channel_for(event_type), json.dumps(envelope, default=str))
        except redis.RedisError as exc:
            logger.warning("event_dropped type=%s err=%s", event_type, exc)
            self._redis = None
            return False
        return True


_publisher: Optional[EventPublisher] = None
_publisher_lock = Lock()


def get_publisher() -> Optional[EventPublisher]:
    global _publisher
    url = os.getenv("REDIS_URL")
    if not url:
        return None
    with _publisher_lock:
        if _publisher is None or _publisher.url != url:
            _publisher = EventPublisher(url)
        return _publisher


def publish_event(event_type: str, data: Dict[str, Any]) -> bool:
    """Best-effort publish; returns whether the event reached Redis."""
    publisher = get_publisher()
    if publisher is None:
        return False
    return publisher.emit(event_type, data)


def reset_publisher() -> None:
    global _publisher
    with _publisher_lock:
        _publisher = None
