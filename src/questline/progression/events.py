"""Best-effort progression events over Redis pub/sub.

Published after the XP-bearing transaction commits. A Redis failure is
logged and swallowed; the award itself already stands.
"""

from __future__ import annotations

import json
import logging

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

LEVEL_UP_CHANNEL = "pubsub:level_up"
ACHIEVEMENT_CHANNEL = "pubsub:achievement_unlocked"
CHALLENGE_CHANNEL = "pubsub:challenge_completed"


async def _publish(redis: object, channel: str, payload: dict) -> None:
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[union-attr]
    except (RedisError, OSError):
        logger.warning("Failed to publish %s event", channel, exc_info=True)


async def publish_award_events(redis: object, user_id: str, result: dict) -> int:
    """Fan out level-up, achievement and challenge events for an award result.

    ``result`` is ``AwardResult.to_dict()``. Returns the number of messages
    attempted; 0 when Redis is disabled.
    """
    if redis is None:
        return 0

    sent = 0
    if result.get("leveled_up"):
        await _publish(redis, LEVEL_UP_CHANNEL, {
            "user_id": user_id,
            "new_level": result["new_level"],
            "xp_total": result["new_xp_total"],
        })
        sent += 1

    for achievement in result.get("achievements_unlocked", []):
        await _publish(redis, ACHIEVEMENT_CHANNEL, {"user_id": user_id, **achievement})
        sent += 1

    completed = result.get("challenges_completed", {})
    for periodicity in ("daily", "weekly"):
        for template_id in completed.get(periodicity, []):
            await _publish(redis, CHALLENGE_CHANNEL, {
                "user_id": user_id,
                "periodicity": periodicity,
                "template_id": template_id,
            })
            sent += 1

    return sent
