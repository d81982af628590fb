"""Live position relay.

Fans position and status events out to subscribers whose filter matches.
There is no history: a subscriber only sees events published while it is
subscribed, and a subscriber whose queue is full misses the event.

Location events are last-write-wins per driver (or per delivery): an event
older than the last applied one is dropped before fan-out.
"""

from __future__ import annotations

import asyncio

from fleetdispatch.config import get_settings
from fleetdispatch.exceptions import StaleUpdateError, TransportError
from fleetdispatch.models.events import (
    LOCATION_EVENTS,
    PositionFix,
    RelayEvent,
    SubscriptionFilter,
)
from fleetdispatch.services.transport import PubSubTransport
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)


class Subscription:
    """A subscriber's mailbox; iterate it to receive events until closed."""

    def __init__(self, relay: LiveRelay, event_filter: SubscriptionFilter, maxsize: int) -> None:
        self.filter = event_filter
        self.dropped = 0
        self.closed = False
        self._relay = relay
        self._queue: asyncio.Queue[RelayEvent | None] = asyncio.Queue(maxsize)

    def offer(self, event: RelayEvent) -> bool:
        """Enqueue a matching event without blocking the publisher."""
        if self.closed or not self.filter.matches(event):
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "subscriber_queue_full",
                event_type=event.type.value,
                delivery_id=event.delivery_id,
                dropped=self.dropped,
            )
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> RelayEvent | None:
        """Next event, or None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Detach from the relay and wake any waiting consumer."""
        if self.closed:
            return
        self.closed = True
        self._relay._detach(self)
        while True:
            try:
                self._queue.put_nowait(None)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> RelayEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class LiveRelay:
    """Observer registry for position and status events."""

    def __init__(
        self,
        transport: PubSubTransport | None = None,
        queue_size: int | None = None,
    ) -> None:
        self.transport = transport
        self.queue_size = queue_size or get_settings().relay_queue_size
        self._subscribers: list[Subscription] = []
        self._positions: dict[str, PositionFix] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, event_filter: SubscriptionFilter | None = None) -> Subscription:
        """Register a subscriber; an empty filter receives everything."""
        subscription = Subscription(self, event_filter or SubscriptionFilter(), self.queue_size)
        self._subscribers.append(subscription)
        logger.info("relay_subscribed", subscribers=len(self._subscribers))
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            logger.info("relay_unsubscribed", subscribers=len(self._subscribers))

    def _apply_position(self, key: str, event: RelayEvent) -> None:
        current = self._positions.get(key)
        if current is not None and event.timestamp < current.timestamp:
            raise StaleUpdateError(key, event.timestamp, current.timestamp)

        self._positions[key] = event.position_fix()

    async def publish(self, event: RelayEvent) -> bool:
        """
        Fan an event out to matching subscribers and the transport.

        Args:
            event: Event to publish

        Returns:
            False if the event was a stale location update and was dropped
        """
        key = event.guard_key
        if event.type in LOCATION_EVENTS and key is not None:
            try:
                self._apply_position(key, event)
            except StaleUpdateError as e:
                logger.debug(
                    "location_stale_dropped",
                    key=e.key,
                    incoming=e.incoming.isoformat(),
                    current=e.current.isoformat(),
                )
                return False

        delivered = sum(1 for sub in list(self._subscribers) if sub.offer(event))

        if self.transport is not None:
            try:
                await self.transport.emit(event.channel, event.model_dump(mode="json"))
            except TransportError as e:
                logger.warning("relay_transport_failed", channel=e.channel, error=str(e))

        logger.debug(
            "relay_event_published",
            event_type=event.type.value,
            driver_id=event.driver_id,
            delivery_id=event.delivery_id,
            delivered=delivered,
        )
        return True

    def position(self, driver_id: str) -> PositionFix | None:
        """Last applied position for a driver."""
        fix = self._positions.get(f"driver:{driver_id}")
        return fix.model_copy() if fix else None

    def delivery_position(self, delivery_id: str) -> PositionFix | None:
        """Last applied live position for a delivery."""
        fix = self._positions.get(f"delivery:{delivery_id}")
        return fix.model_copy() if fix else None

    def forget_delivery(self, delivery_id: str) -> None:
        """Drop the live position of a delivery that is no longer carried."""
        self._positions.pop(f"delivery:{delivery_id}", None)
