"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from fleetdispatch.config import Settings
from fleetdispatch.models import (
    ContactInfo,
    Delivery,
    Driver,
    Location,
    PackageInfo,
    Stop,
    Vehicle,
)
from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.services.relay import LiveRelay
from fleetdispatch.services.transport import InMemoryTransport
from fleetdispatch.state.store import EntityStore

# Monday morning, before the working day starts.
START = datetime(2025, 6, 2, 7, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock shared by the store and the audit log."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings() -> Settings:
    """Settings with defaults only, isolated from the environment file."""
    return Settings(_env_file=None, log_format="text")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def store(clock: FakeClock) -> EntityStore:
    """Fresh store per test."""
    return EntityStore(clock=clock)


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def relay(transport: InMemoryTransport, settings: Settings) -> LiveRelay:
    return LiveRelay(transport=transport, queue_size=settings.relay_queue_size)


@pytest.fixture
def service(store: EntityStore, relay: LiveRelay, settings: Settings) -> DispatchService:
    return DispatchService(store=store, relay=relay, settings=settings)


@pytest.fixture
def make_delivery() -> Callable[..., Delivery]:
    """Build an unsaved delivery request."""

    def _make(
        scheduled_time: datetime | None = None,
        customer_name: str = "Alice Customer",
        customer_email: str = "alice@example.com",
        duration: int | None = None,
    ) -> Delivery:
        return Delivery(
            pickup=Stop(
                address="10 Warehouse Rd",
                coordinates=Location(lat=40.7128, lng=-74.0060),
                scheduled_time=scheduled_time,
            ),
            dropoff=Stop(
                address="123 Main St",
                coordinates=Location(lat=40.7306, lng=-73.9866),
            ),
            customer=ContactInfo(name=customer_name, email=customer_email, phone="+1234567890"),
            package=PackageInfo(description="Office chairs", weight=12.5),
            estimated_duration_minutes=duration,
        )

    return _make


@pytest.fixture
def at() -> Callable[[int, int], datetime]:
    """Instant on the test day."""

    def _at(hour: int, minute: int = 0) -> datetime:
        return START.replace(hour=hour, minute=minute)

    return _at


@pytest_asyncio.fixture
async def driver(service: DispatchService) -> Driver:
    """Registered, available driver."""
    return await service.add_driver(
        Driver(name="Alice Driver", email="alice.driver@example.com", phone="+1555010001")
    )


@pytest_asyncio.fixture
async def other_driver(service: DispatchService) -> Driver:
    return await service.add_driver(
        Driver(name="Bob Driver", email="bob.driver@example.com", phone="+1555010002")
    )


@pytest_asyncio.fixture
async def vehicle(service: DispatchService) -> Vehicle:
    """Registered, available vehicle."""
    return await service.add_vehicle(Vehicle(vehicle_number="VAN-101", capacity=800))


@pytest_asyncio.fixture
async def other_vehicle(service: DispatchService) -> Vehicle:
    return await service.add_vehicle(Vehicle(vehicle_number="VAN-102", capacity=800))
