"""Services: dispatch, live relay and pub/sub transports."""

from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.services.relay import LiveRelay, Subscription
from fleetdispatch.services.transport import (
    InMemoryTransport,
    PubSubTransport,
    RedisTransport,
)

__all__ = [
    "DispatchService",
    "InMemoryTransport",
    "LiveRelay",
    "PubSubTransport",
    "RedisTransport",
    "Subscription",
]
