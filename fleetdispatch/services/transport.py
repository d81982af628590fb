"""Pub/sub transports the live relay publishes through."""

import asyncio
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from fleetdispatch.config import Settings, get_settings
from fleetdispatch.exceptions import TransportError
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[None]]


class PubSubTransport(Protocol):
    """Minimal emit/on contract of a push channel."""

    async def emit(self, channel: str, payload: dict[str, Any]) -> None: ...

    def on(self, channel: str, handler: Handler) -> None: ...


class InMemoryTransport:
    """Process-local transport; handlers run inline on emit."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, channel: str, handler: Handler) -> None:
        """Register a handler for a channel."""
        self._handlers[channel].append(handler)

    async def emit(self, channel: str, payload: dict[str, Any]) -> None:
        """Deliver a payload to every handler on the channel."""
        for handler in list(self._handlers.get(channel, [])):
            try:
                await handler(payload)
            except Exception as e:
                raise TransportError(f"Handler failed on {channel}: {e}", channel=channel) from e


class RedisTransport:
    """Redis PUBLISH/SUBSCRIBE transport."""

    def __init__(
        self,
        redis_url: str | None = None,
        channel_prefix: str | None = None,
        client: redis.Redis | None = None,
    ) -> None:
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.channel_prefix = channel_prefix or settings.redis_channel_prefix
        self.redis_client: redis.Redis | None = client
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._listener: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisTransport":
        return cls(redis_url=settings.redis_url, channel_prefix=settings.redis_channel_prefix)

    def _channel(self, channel: str) -> str:
        return f"{self.channel_prefix}:{channel}"

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Stop listening and close the Redis connection."""
        await self.stop()
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    def on(self, channel: str, handler: Handler) -> None:
        """Register a handler; takes effect the next time the listener starts."""
        self._handlers[channel].append(handler)

    async def emit(self, channel: str, payload: dict[str, Any]) -> None:
        """Publish a JSON payload on the prefixed channel."""
        if not self.redis_client:
            await self.connect()

        try:
            await self.redis_client.publish(self._channel(channel), json.dumps(payload, default=str))
        except RedisError as e:
            raise TransportError(f"Publish to {channel} failed: {e}", channel=channel) from e

        logger.debug("message_published", channel=channel)

    async def start(self) -> None:
        """Start the background subscription loop for registered channels."""
        if self._listener is not None or not self._handlers:
            return
        if not self.redis_client:
            await self.connect()
        self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        """Cancel the subscription loop."""
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None

    async def _listen(self) -> None:
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(*(self._channel(c) for c in self._handlers))
        prefix = f"{self.channel_prefix}:"

        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                channel = str(message["channel"]).removeprefix(prefix)
                try:
                    payload = json.loads(message["data"])
                except (json.JSONDecodeError, TypeError):
                    logger.warning("redis_message_undecodable", channel=channel)
                    continue
                try:
                    await self.dispatch(channel, payload)
                except Exception as e:
                    logger.error("redis_handler_error", channel=channel, error=str(e))
        finally:
            await pubsub.aclose()

    async def dispatch(self, channel: str, payload: dict[str, Any]) -> None:
        """Hand a received payload to the channel's handlers."""
        for handler in list(self._handlers.get(channel, [])):
            await handler(payload)
