"""
Outbound event notifications.

The engine announces upload completions and deletions through a
fire-and-forget hook. Delivery problems are logged and never affect the
operation that emitted the event.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis

from ephemera.core.config import Settings

logger = logging.getLogger(__name__)

UPLOAD_COMPLETED = "upload.completed"
OBJECT_DELETED = "object.deleted"


class Notifier:
    """Base notifier; drops every event."""

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        return None


class NullNotifier(Notifier):
    pass


class RedisNotifier(Notifier):
    """
    Publishes JSON events on a Redis pub/sub channel.

    Message format:
        {"event": "object.deleted", "timestamp": "...", "data": {...}}
    """

    def __init__(self, redis_client: redis.Redis, channel: str):
        """
        Initialize Redis notifier.

        Args:
            redis_client: Redis client instance
            channel: Pub/sub channel name
        """
        self.redis = redis_client
        self.channel = channel

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        message = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        try:
            self.redis.publish(self.channel, json.dumps(message, default=str))
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.warning(f"Failed to publish '{event}' notification: {e}")


def build_notifier(settings: Settings, redis_client: Optional[redis.Redis] = None) -> Notifier:
    """Return a Redis notifier when notifications are enabled, otherwise a no-op one."""
    if not settings.NOTIFICATIONS_ENABLED:
        return NullNotifier()

    client = redis_client or redis.Redis.from_url(
        settings.REDIS_URL,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    return RedisNotifier(client, settings.NOTIFICATION_CHANNEL)
