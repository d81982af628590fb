"""Delivery job models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from fleetdispatch.models.common import ContactInfo, Location, as_utc, new_id, utcnow
from fleetdispatch.utils.geo import haversine_km


class DeliveryStatus(str, Enum):
    """Delivery status progression."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    STARTED = "started"
    IN_TRANSIT = "in-transit"
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Statuses during which a delivery occupies its driver and vehicle.
ACTIVE_STATUSES = frozenset(
    {
        DeliveryStatus.ASSIGNED,
        DeliveryStatus.ACCEPTED,
        DeliveryStatus.STARTED,
        DeliveryStatus.IN_TRANSIT,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        DeliveryStatus.DELIVERED,
        DeliveryStatus.REJECTED,
        DeliveryStatus.CANCELLED,
    }
)


class Priority(str, Enum):
    """Informational priority; scheduling ignores it."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Stop(BaseModel):
    """Pickup or drop-off point with already-resolved coordinates."""

    address: str
    coordinates: Location
    scheduled_time: datetime | None = None

    @field_validator("scheduled_time")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class PackageInfo(BaseModel):
    """What is being carried."""

    description: str
    weight: float = Field(ge=0)
    value: Decimal | None = Field(default=None, ge=0)
    special_instructions: str | None = None


class DriverContact(BaseModel):
    """Driver details copied onto a delivery at assignment time."""

    name: str
    phone: str
    vehicle: str


class Delivery(BaseModel):
    """Complete delivery job."""

    id: str = Field(default_factory=new_id)
    pickup: Stop
    dropoff: Stop
    customer: ContactInfo
    package: PackageInfo
    status: DeliveryStatus = DeliveryStatus.PENDING
    priority: Priority = Priority.MEDIUM
    estimated_duration_minutes: int | None = Field(default=None, ge=1)

    # Assignments
    driver_id: str | None = None
    vehicle_id: str | None = None
    driver: DriverContact | None = None

    # Timing
    created_at: datetime = Field(default_factory=utcnow)
    assigned_at: datetime | None = None
    accepted_at: datetime | None = None
    started_at: datetime | None = None
    arrived_at: datetime | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    actual_duration_minutes: int | None = None

    # Notes
    rejection_reason: str | None = None
    completion_notes: str | None = None
    cancellation_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def scheduled_time(self) -> datetime | None:
        """Scheduled pickup time, if one was given."""
        return self.pickup.scheduled_time

    @property
    def route_distance_km(self) -> float:
        """Straight-line pickup to drop-off distance."""
        return haversine_km(
            self.pickup.coordinates.lat,
            self.pickup.coordinates.lng,
            self.dropoff.coordinates.lat,
            self.dropoff.coordinates.lng,
        )

    def owned_by(self, email: str) -> bool:
        """Check whether ``email`` is this delivery's customer."""
        return self.customer.ownership_key == email.lower()
