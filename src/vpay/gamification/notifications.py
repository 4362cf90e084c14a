"""Real-time push of gamification events over Redis pub/sub.

The WebSocket gateway subscribes to ``pubsub:<event>`` channels. Publishing
is best effort: a Redis failure never fails the operation that emitted it.
"""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "pubsub:"


async def publish_event(redis: object, event: str, payload: dict[str, Any]) -> bool:
    """Publish ``payload`` on ``pubsub:<event>``. Returns True if sent."""
    if redis is None:
        return False
    try:
        await redis.publish(  # type: ignore[attr-defined]
            f"{CHANNEL_PREFIX}{event}",
            json.dumps(payload, default=str),
        )
    except Exception:
        logger.warning("Failed to publish %s notification", event, exc_info=True)
        return False
    return True
