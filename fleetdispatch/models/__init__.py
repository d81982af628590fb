"""Data models for the dispatch engine."""

from fleetdispatch.models.common import ContactInfo, Location
from fleetdispatch.models.delivery import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Delivery,
    DeliveryStatus,
    DriverContact,
    PackageInfo,
    Priority,
    Stop,
)
from fleetdispatch.models.driver import Driver, DriverStatus
from fleetdispatch.models.events import (
    PositionFix,
    RelayEvent,
    RelayEventType,
    SubscriptionFilter,
)
from fleetdispatch.models.vehicle import Vehicle, VehicleStatus, VehicleType

__all__ = [
    # Common
    "ContactInfo",
    "Location",
    # Delivery
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Delivery",
    "DeliveryStatus",
    "DriverContact",
    "PackageInfo",
    "Priority",
    "Stop",
    # Driver
    "Driver",
    "DriverStatus",
    # Events
    "PositionFix",
    "RelayEvent",
    "RelayEventType",
    "SubscriptionFilter",
    # Vehicle
    "Vehicle",
    "VehicleStatus",
    "VehicleType",
]
