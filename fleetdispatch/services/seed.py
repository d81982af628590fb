"""Sample fleet for local development and demos."""

from datetime import datetime, timedelta, timezone
from typing import Any

from fleetdispatch.models.common import ContactInfo, Location
from fleetdispatch.models.delivery import Delivery, PackageInfo, Priority, Stop
from fleetdispatch.models.driver import Driver
from fleetdispatch.models.vehicle import Vehicle, VehicleType
from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)


async def seed_sample_fleet(service: DispatchService) -> dict[str, list[Any]]:
    """Load a handful of vehicles, drivers and pending deliveries."""
    vehicles = [
        Vehicle(vehicle_number="VAN-101", type=VehicleType.VAN, capacity=800),
        Vehicle(vehicle_number="VAN-102", type=VehicleType.VAN, capacity=800),
        Vehicle(vehicle_number="TRK-201", type=VehicleType.TRUCK, capacity=3500),
        Vehicle(vehicle_number="MC-301", type=VehicleType.MOTORCYCLE, capacity=20),
    ]
    drivers = [
        Driver(name="John Smith", email="john.smith@example.com", phone="+1555010001"),
        Driver(name="Maria Garcia", email="maria.garcia@example.com", phone="+1555010002"),
        Driver(name="Ahmed Khan", email="ahmed.khan@example.com", phone="+1555010003"),
    ]

    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
        hour=9, minute=0, second=0, microsecond=0
    )
    deliveries = [
        Delivery(
            pickup=Stop(
                address="10 Warehouse Rd",
                coordinates=Location(lat=40.7128, lng=-74.0060),
                scheduled_time=tomorrow,
            ),
            dropoff=Stop(
                address="123 Main St",
                coordinates=Location(lat=40.7306, lng=-73.9866),
            ),
            customer=ContactInfo(
                name="John Doe", email="john.doe@example.com", phone="+1234567890"
            ),
            package=PackageInfo(description="Office chairs", weight=42.5),
            priority=Priority.HIGH,
            estimated_duration_minutes=45,
        ),
        Delivery(
            pickup=Stop(
                address="10 Warehouse Rd",
                coordinates=Location(lat=40.7128, lng=-74.0060),
                scheduled_time=tomorrow + timedelta(hours=2),
            ),
            dropoff=Stop(
                address="456 Park Ave",
                coordinates=Location(lat=40.7614, lng=-73.9776),
            ),
            customer=ContactInfo(
                name="Jane Smith", email="jane.smith@example.com", phone="+1234567891"
            ),
            package=PackageInfo(description="Printer toner", weight=3.0),
        ),
    ]

    seeded: dict[str, list[Any]] = {"vehicles": [], "drivers": [], "deliveries": []}
    for vehicle in vehicles:
        seeded["vehicles"].append(await service.add_vehicle(vehicle))
    for driver in drivers:
        seeded["drivers"].append(await service.add_driver(driver))
    for delivery in deliveries:
        seeded["deliveries"].append(await service.create_delivery(delivery))

    logger.info(
        "sample_fleet_seeded",
        vehicles=len(seeded["vehicles"]),
        drivers=len(seeded["drivers"]),
        deliveries=len(seeded["deliveries"]),
    )
    return seeded
