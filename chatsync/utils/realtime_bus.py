import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from chatsync.errors import TransientNetworkError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]

# Consecutive read failures a Redis subscription tolerates before giving up.
MAX_READ_FAILURES = 5


class LocalBus:
    """In-process fan-out used when no Redis URL is configured."""

    def __init__(self) -> None:
        self._channels: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._channels.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        queue: asyncio.Queue = asyncio.Queue()
        self._channels.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    data = await queue.get()
                    if data is None:
                        break
                    await on_message(data)

            async def cancel(self_inner):
                if not self_inner._running:
                    return
                self_inner._running = False
                group = bus._channels.get(channel)
                if group is not None:
                    group.discard(queue)
                    if not group:
                        bus._channels.pop(channel, None)
                queue.put_nowait(None)

        return _Sub()

    async def close(self) -> None:
        for group in self._channels.values():
            for queue in group:
                queue.put_nowait(None)
        self._channels.clear()


class RedisBus:
    """Change signals over Redis pub/sub, for several server processes."""

    def __init__(self, url: str, retry_delay: float = 0.5) -> None:
        self._redis = redis.from_url(url)
        self._retry_delay = retry_delay

    async def publish(self, channel: str, message: str) -> None:
        try:
            await self._redis.publish(channel, message)
        except (RedisError, OSError) as exc:
            raise TransientNetworkError(f"Redis publish on {channel} failed: {exc}") from exc

    async def subscribe(self, channel: str, on_message: MessageHandler):
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except (RedisError, OSError) as exc:
            raise TransientNetworkError(f"Redis subscribe on {channel} failed: {exc}") from exc
        retry_delay = self._retry_delay

        class _Sub:
            _running = True

            async def run(self_inner):
                failures = 0
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except (RedisError, OSError) as exc:
                        failures += 1
                        logger.warning("Redis subscription on %s interrupted (%d): %s", channel, failures, exc)
                        if failures >= MAX_READ_FAILURES:
                            await self_inner.cancel()
                            raise TransientNetworkError(f"Redis subscription on {channel} lost: {exc}") from exc
                        await asyncio.sleep(retry_delay)
                        continue
                    failures = 0
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await on_message(data)

            async def cancel(self_inner):
                if not self_inner._running:
                    return
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except (RedisError, OSError) as exc:
                    logger.warning("Closing Redis subscription on %s failed: %s", channel, exc)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


def build_bus(url: Optional[str]):
    if not url:
        return LocalBus()
    logger.info("Using Redis bus for change signals")
    return RedisBus(url)
