"""Tests for the live position relay."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from fleetdispatch.exceptions import IllegalTransitionError, TransportError
from fleetdispatch.models import (
    Driver,
    RelayEvent,
    RelayEventType,
    SubscriptionFilter,
    Vehicle,
)
from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.services.relay import LiveRelay
from fleetdispatch.services.transport import InMemoryTransport


def _location(driver_id: str, lat: float, lng: float, timestamp) -> RelayEvent:
    return RelayEvent(
        type=RelayEventType.DRIVER_LOCATION,
        driver_id=driver_id,
        timestamp=timestamp,
        payload={"lat": lat, "lng": lng},
    )


def _status(delivery_id: str, email: str, timestamp) -> RelayEvent:
    return RelayEvent(
        type=RelayEventType.DELIVERY_STATUS_CHANGED,
        delivery_id=delivery_id,
        customer_emails=(email,),
        timestamp=timestamp,
        payload={"status": "assigned"},
    )


@pytest.mark.asyncio
async def test_late_location_does_not_overwrite(relay: LiveRelay, clock) -> None:
    """Test that an older fix arriving late is dropped before fan-out."""
    subscription = relay.subscribe()
    t = clock.now

    assert await relay.publish(_location("d1", 1, 1, t)) is True
    assert await relay.publish(_location("d1", 0, 0, t - timedelta(seconds=5))) is False

    fix = relay.position("d1")
    assert (fix.lat, fix.lng) == (1, 1)
    assert fix.timestamp == t
    assert subscription.pending == 1


@pytest.mark.asyncio
async def test_equal_timestamp_is_applied(relay: LiveRelay, clock) -> None:
    await relay.publish(_location("d1", 1, 1, clock.now))
    assert await relay.publish(_location("d1", 2, 2, clock.now)) is True

    assert relay.position("d1").lat == 2


@pytest.mark.asyncio
async def test_drivers_are_guarded_independently(relay: LiveRelay, clock) -> None:
    await relay.publish(_location("d1", 1, 1, clock.now))
    assert await relay.publish(_location("d2", 5, 5, clock.now - timedelta(minutes=1)))

    assert relay.position("d2").lat == 5
    assert relay.position("d3") is None


@pytest.mark.asyncio
async def test_customer_filter(relay: LiveRelay, clock) -> None:
    alice = relay.subscribe(SubscriptionFilter(customer_email="alice@example.com"))
    admin = relay.subscribe()

    await relay.publish(_status("del-1", "alice@example.com", clock.now))
    await relay.publish(_status("del-2", "bob@example.com", clock.now))

    assert alice.pending == 1
    assert admin.pending == 2
    assert (await alice.get()).delivery_id == "del-1"


@pytest.mark.asyncio
async def test_driver_and_delivery_filters(relay: LiveRelay, clock) -> None:
    dispatcher = relay.subscribe(SubscriptionFilter(driver_ids=frozenset({"d1"})))
    tracker = relay.subscribe(SubscriptionFilter(delivery_ids=frozenset({"del-2"})))

    await relay.publish(_location("d1", 1, 1, clock.now))
    await relay.publish(_location("d2", 1, 1, clock.now))
    await relay.publish(_status("del-2", "bob@example.com", clock.now))

    assert dispatcher.pending == 1
    assert tracker.pending == 1


@pytest.mark.asyncio
async def test_no_replay_for_late_subscribers(relay: LiveRelay, clock) -> None:
    await relay.publish(_status("del-1", "alice@example.com", clock.now))

    late = relay.subscribe()

    assert late.pending == 0


@pytest.mark.asyncio
async def test_full_queue_drops_for_that_subscriber_only(clock) -> None:
    relay = LiveRelay(queue_size=1)
    slow = relay.subscribe()

    await relay.publish(_status("del-1", "alice@example.com", clock.now))
    await relay.publish(_status("del-2", "alice@example.com", clock.now))

    assert slow.dropped == 1
    assert (await slow.get()).delivery_id == "del-1"


@pytest.mark.asyncio
async def test_closing_ends_iteration_and_detaches(relay: LiveRelay, clock) -> None:
    async with relay.subscribe() as subscription:
        assert relay.subscriber_count == 1
        await relay.publish(_status("del-1", "alice@example.com", clock.now))

    assert relay.subscriber_count == 0
    assert [e.delivery_id async for e in subscription] == ["del-1"]
    assert await subscription.get() is None


@pytest.mark.asyncio
async def test_events_reach_the_transport(
    relay: LiveRelay, transport: InMemoryTransport, clock
) -> None:
    received: list[dict] = []

    async def handler(payload: dict) -> None:
        received.append(payload)

    transport.on("delivery-status-changed", handler)
    await relay.publish(_status("del-1", "alice@example.com", clock.now))
    await relay.publish(_location("d1", 1, 1, clock.now))

    assert len(received) == 1
    assert received[0]["delivery_id"] == "del-1"
    assert received[0]["type"] == "deliveryStatusChanged"


@pytest.mark.asyncio
async def test_transport_failure_does_not_block_local_subscribers(clock) -> None:
    class BrokenTransport:
        def on(self, channel, handler) -> None:
            pass

        async def emit(self, channel, payload) -> None:
            raise TransportError("connection refused", channel=channel)

    relay = LiveRelay(transport=BrokenTransport(), queue_size=10)
    subscription = relay.subscribe()

    assert await relay.publish(_status("del-1", "alice@example.com", clock.now)) is True
    assert subscription.pending == 1


@pytest.mark.asyncio
async def test_customer_sees_assigned_driver_position(
    service: DispatchService, driver: Driver, vehicle: Vehicle, make_delivery, at, clock
) -> None:
    """Test that driver positions reach only customers with a delivery in progress."""
    pending = await service.create_delivery(make_delivery(at(10)))
    alice = service.relay.subscribe(
        SubscriptionFilter(
            customer_email="alice@example.com",
            event_types=frozenset({RelayEventType.DRIVER_LOCATION}),
        )
    )

    await service.record_driver_location(driver.id, 40.71, -74.0)
    assert alice.pending == 0

    await service.accept_delivery_request(pending.id, driver.id, vehicle.id)
    clock.advance(seconds=10)
    assert await service.record_driver_location(driver.id, 40.72, -74.0, speed=30)
    assert alice.pending == 1

    stale = await service.record_driver_location(
        driver.id, 0, 0, timestamp=clock.now - timedelta(seconds=5)
    )
    assert stale is False
    fix = await service.driver_location(driver.id)
    assert (fix.lat, fix.lng, fix.speed) == (40.72, -74.0, 30)


@pytest.mark.asyncio
async def test_delivery_location_is_audited(
    service: DispatchService,
    driver: Driver,
    other_driver: Driver,
    vehicle: Vehicle,
    make_delivery,
    at,
    clock,
) -> None:
    pending = await service.create_delivery(make_delivery(at(10)))
    await service.accept_delivery_request(pending.id, driver.id, vehicle.id)

    assert await service.record_delivery_location(pending.id, driver.id, 40.72, -74.0)
    assert not await service.record_delivery_location(
        pending.id, driver.id, 40.0, -74.0, timestamp=clock.now - timedelta(minutes=1)
    )

    history = await service.delivery_history(pending.id)
    updates = [e for e in history if e.action == "location-update"]
    assert len(updates) == 1
    assert updates[0].location == {"lat": 40.72, "lng": -74.0}
    assert (await service.delivery_location(pending.id)).lat == 40.72

    with pytest.raises(IllegalTransitionError):
        await service.record_delivery_location(pending.id, other_driver.id, 1, 1)


@pytest.mark.parametrize(
    "payload",
    [{}, {"lat": 40.7}, {"lat": "north", "lng": -74.0}, {"lat": 95, "lng": 0}],
)
def test_location_event_requires_position(payload: dict) -> None:
    with pytest.raises(ValidationError):
        RelayEvent(type=RelayEventType.DRIVER_LOCATION, driver_id="d1", payload=payload)


def test_status_event_needs_no_position() -> None:
    event = RelayEvent(type=RelayEventType.DELIVERY_STATUS_CHANGED, delivery_id="del-1")

    assert event.payload == {}


@pytest.mark.asyncio
async def test_finished_delivery_position_is_forgotten(
    service: DispatchService, driver: Driver, vehicle: Vehicle, make_delivery, at
) -> None:
    pending = await service.create_delivery(make_delivery(at(10)))
    await service.accept_delivery_request(pending.id, driver.id, vehicle.id)
    await service.record_delivery_location(pending.id, driver.id, 40.72, -74.0)
    assert await service.delivery_location(pending.id) is not None

    await service.cancel_delivery(pending.id, reason="customer not home")

    assert await service.delivery_location(pending.id) is None
    with pytest.raises(IllegalTransitionError):
        await service.record_delivery_location(pending.id, driver.id, 40.73, -74.0)
    assert await service.delivery_location(pending.id) is None


@pytest.mark.asyncio
async def test_deleted_delivery_position_is_forgotten(
    service: DispatchService, make_delivery, at, clock
) -> None:
    pending = await service.create_delivery(make_delivery(at(10)))
    await service.relay.publish(
        RelayEvent(
            type=RelayEventType.DELIVERY_LOCATION,
            delivery_id=pending.id,
            timestamp=clock.now,
            payload={"lat": 40.72, "lng": -74.0},
        )
    )
    assert service.relay.delivery_position(pending.id) is not None

    await service.delete_delivery(pending.id)

    assert service.relay.delivery_position(pending.id) is None
