"""
services/sos/broadcaster.py
Fan-out of SOS events to the admin console over Redis pub/sub.
Built once in the app lifespan and handed to routes through a dependency.
"""

import logging
from typing import Optional

from fastapi import Request

from config.redis_client import RedisCache
from config.settings import settings

logger = logging.getLogger(__name__)

SOS_ALERT = "sos:alert"
SOS_ACTIVE = "sos:active"
SOS_ACKNOWLEDGED = "sos:acknowledged"
SOS_RESOLVED = "sos:resolved"
SOS_CANCELLED = "sos:cancelled"


class SOSBroadcaster:
    def __init__(self, cache: Optional[RedisCache], channel: str = settings.SOS_BROADCAST_CHANNEL):
        self.cache = cache
        self.channel = channel

    async def publish(self, event: str, payload: dict) -> bool:
        """Best effort. Returns False (and logs) instead of raising."""
        if self.cache is None:
            logger.warning(f"SOS broadcaster has no Redis connection, dropping {event}")
            return False
        try:
            await self.cache.publish_event(self.channel, event, payload)
            return True
        except Exception:
            logger.exception(f"Failed to broadcast {event} on {self.channel}")
            return False


def alert_payload(alert) -> dict:
    return {
        "id": str(alert.id),
        "alert_id": alert.alert_id,
        "user_id": str(alert.user_id),
        "booking_id": str(alert.booking_id) if alert.booking_id else None,
        "status": alert.status.value if hasattr(alert.status, "value") else alert.status,
        "location": alert.location,
        "updated_at": alert.updated_at.isoformat() if alert.updated_at else None,
    }


def get_broadcaster(request: Request) -> SOSBroadcaster:
    """FastAPI dependency; overridden in tests."""
    broadcaster = getattr(request.app.state, "sos_broadcaster", None)
    if broadcaster is None:
        broadcaster = SOSBroadcaster(None)
    return broadcaster
