"""Tests for delivery lifecycle transitions and their side effects."""

import pytest
import pytest_asyncio

from fleetdispatch.exceptions import IllegalTransitionError
from fleetdispatch.models import (
    Delivery,
    DeliveryStatus,
    Driver,
    DriverStatus,
    RelayEventType,
    SubscriptionFilter,
    Vehicle,
    VehicleStatus,
)
from fleetdispatch.services.dispatch import DispatchService


@pytest_asyncio.fixture
async def assigned(
    service: DispatchService, driver: Driver, vehicle: Vehicle, make_delivery, at
) -> Delivery:
    """A delivery at 10:00 assigned to the default driver and vehicle."""
    created = await service.create_delivery(make_delivery(at(10)))
    return await service.accept_delivery_request(created.id, driver.id, vehicle.id)


async def _drive_to_arrival(service: DispatchService, delivery_id: str, driver_id: str) -> None:
    await service.driver_accept(delivery_id, driver_id)
    await service.start_delivery(delivery_id, driver_id)
    await service.mark_in_transit(delivery_id, driver_id)
    await service.mark_arrived(delivery_id, driver_id)


@pytest.mark.asyncio
async def test_assignment_side_effects(
    service: DispatchService, assigned: Delivery, driver: Driver, vehicle: Vehicle, clock
) -> None:
    """Test that assignment links the driver, vehicle and contact snapshot."""
    assert assigned.status == DeliveryStatus.ASSIGNED
    assert assigned.assigned_at == clock.now
    assert assigned.driver.name == "Alice Driver"
    assert assigned.driver.phone == "+1555010001"
    assert assigned.driver.vehicle == "VAN-101"

    busy_driver = await service.get_driver(driver.id)
    in_use_vehicle = await service.get_vehicle(vehicle.id)
    assert busy_driver.status == DriverStatus.BUSY
    assert busy_driver.vehicle_id == vehicle.id
    assert in_use_vehicle.status == VehicleStatus.IN_USE
    assert in_use_vehicle.driver_id == driver.id


@pytest.mark.asyncio
async def test_full_lifecycle(
    service: DispatchService, assigned: Delivery, driver: Driver, clock
) -> None:
    """Test the observed status sequence and completion bookkeeping."""
    await service.driver_accept(assigned.id, driver.id)
    started = await service.start_delivery(assigned.id, driver.id)
    await service.mark_in_transit(assigned.id, driver.id)
    clock.advance(minutes=40)
    arrived = await service.mark_arrived(assigned.id, driver.id)
    clock.advance(minutes=5)
    delivered = await service.complete_delivery(assigned.id, driver.id, notes="Left at reception")

    assert service.audit.statuses(assigned.id) == [
        "pending",
        "assigned",
        "accepted",
        "started",
        "in-transit",
        "arrived",
        "delivered",
    ]
    assert delivered.status == DeliveryStatus.DELIVERED
    assert delivered.accepted_at is not None
    assert delivered.started_at == started.started_at
    assert delivered.arrived_at == arrived.arrived_at
    assert delivered.completed_at == clock.now
    assert delivered.actual_duration_minutes == 45
    assert delivered.completion_notes == "Left at reception"

    updated_driver = await service.get_driver(driver.id)
    assert updated_driver.total_trips == 1


@pytest.mark.asyncio
async def test_second_mark_in_transit_fails(
    service: DispatchService, assigned: Delivery, driver: Driver
) -> None:
    await service.driver_accept(assigned.id, driver.id)
    await service.start_delivery(assigned.id, driver.id)
    await service.mark_in_transit(assigned.id, driver.id)

    with pytest.raises(IllegalTransitionError):
        await service.mark_in_transit(assigned.id, driver.id)

    current = await service.get_delivery(assigned.id)
    assert current.status == DeliveryStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_retried_completion_counts_one_trip(
    service: DispatchService, assigned: Delivery, driver: Driver
) -> None:
    """Test that completing twice fails and never re-increments the trip counter."""
    await _drive_to_arrival(service, assigned.id, driver.id)
    await service.complete_delivery(assigned.id, driver.id)

    for _ in range(3):
        with pytest.raises(IllegalTransitionError):
            await service.complete_delivery(assigned.id, driver.id)

    updated_driver = await service.get_driver(driver.id)
    assert updated_driver.total_trips == 1


@pytest.mark.asyncio
async def test_reject_records_reason_and_keeps_driver_busy(
    service: DispatchService, assigned: Delivery, driver: Driver
) -> None:
    rejected = await service.driver_reject(assigned.id, driver.id, reason="Van too small")

    assert rejected.status == DeliveryStatus.REJECTED
    assert rejected.rejection_reason == "Van too small"
    assert rejected.rejected_at is not None
    assert (await service.get_driver(driver.id)).status == DriverStatus.BUSY


@pytest.mark.asyncio
async def test_only_assigned_driver_may_act(
    service: DispatchService, assigned: Delivery, other_driver: Driver
) -> None:
    with pytest.raises(IllegalTransitionError) as exc_info:
        await service.driver_accept(assigned.id, other_driver.id)

    assert other_driver.id in str(exc_info.value)
    assert (await service.get_delivery(assigned.id)).status == DeliveryStatus.ASSIGNED


@pytest.mark.asyncio
async def test_cancel(
    service: DispatchService, assigned: Delivery, driver: Driver, make_delivery, at
) -> None:
    pending = await service.create_delivery(make_delivery(at(15)))

    cancelled = await service.cancel_delivery(pending.id, reason="Customer changed plans")
    assert cancelled.status == DeliveryStatus.CANCELLED
    assert cancelled.cancellation_reason == "Customer changed plans"
    assert cancelled.cancelled_at is not None

    await _drive_to_arrival(service, assigned.id, driver.id)
    await service.complete_delivery(assigned.id, driver.id)
    with pytest.raises(IllegalTransitionError):
        await service.cancel_delivery(assigned.id)


@pytest.mark.asyncio
async def test_driver_actions_on_pending_delivery_fail(
    service: DispatchService, driver: Driver, make_delivery, at
) -> None:
    pending = await service.create_delivery(make_delivery(at(10)))

    with pytest.raises(IllegalTransitionError):
        await service.start_delivery(pending.id, driver.id)


@pytest.mark.asyncio
async def test_transitions_publish_events(
    service: DispatchService, driver: Driver, vehicle: Vehicle, make_delivery, at
) -> None:
    """Test the events a customer sees for one delivery."""
    created = await service.create_delivery(make_delivery(at(10)))
    subscription = service.relay.subscribe(
        SubscriptionFilter(customer_email="ALICE@example.com")
    )

    await service.accept_delivery_request(created.id, driver.id, vehicle.id)
    await _drive_to_arrival(service, created.id, driver.id)
    await service.complete_delivery(created.id, driver.id)
    subscription.close()

    events = [event async for event in subscription]
    assert [e.type for e in events] == [
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DRIVER_ASSIGNED,
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DELIVERY_STATUS_CHANGED,
        RelayEventType.DELIVERY_COMPLETED,
    ]
    statuses = [e.payload["status"] for e in events if "status" in e.payload]
    assert statuses == ["assigned", "accepted", "started", "in-transit", "arrived", "delivered"]
    assert events[1].payload["driver"]["name"] == "Alice Driver"
