import json
import logging
from typing import Any, Dict, Iterable

from jobchat.core.config import get_settings


logger = logging.getLogger(__name__)


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def close(self) -> None:
        return


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        import redis.asyncio as redis

        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    _bus = RedisBus(url) if url else NoopBus()
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


async def publish_to_users(user_ids: Iterable[str], event: Dict[str, Any]) -> None:
    """Best-effort notification of each user's channel; failures are only logged."""
    bus = await get_bus()
    if not getattr(bus, "enabled", False):
        return
    payload = json.dumps(event, default=str)
    for user_id in user_ids:
        try:
            await bus.publish(user_channel(user_id), payload)
        except Exception:
            logger.warning("Realtime publish failed", extra={"user_id": user_id}, exc_info=True)
