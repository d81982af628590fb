"""Live relay events and subscription filters."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from fleetdispatch.models.common import as_utc, utcnow


class RelayEventType(str, Enum):
    """Kinds of event carried by the live relay."""

    DRIVER_LOCATION = "driverLocation"
    DELIVERY_LOCATION = "deliveryLocation"
    DELIVERY_STATUS_CHANGED = "deliveryStatusChanged"
    DRIVER_ASSIGNED = "driverAssigned"
    DELIVERY_COMPLETED = "deliveryCompleted"


# Transport channel per event type.
CHANNELS: dict[RelayEventType, str] = {
    RelayEventType.DRIVER_LOCATION: "driver-location-update",
    RelayEventType.DELIVERY_LOCATION: "delivery-live-location",
    RelayEventType.DELIVERY_STATUS_CHANGED: "delivery-status-changed",
    RelayEventType.DRIVER_ASSIGNED: "new-delivery-assigned",
    RelayEventType.DELIVERY_COMPLETED: "delivery-completed",
}

LOCATION_EVENTS = frozenset(
    {RelayEventType.DRIVER_LOCATION, RelayEventType.DELIVERY_LOCATION}
)


class PositionFix(BaseModel):
    """Last applied position for a driver or delivery."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    timestamp: datetime
    speed: float | None = None
    heading: float | None = None


class RelayEvent(BaseModel):
    """A position or status change pushed to subscribers."""

    model_config = ConfigDict(frozen=True)

    type: RelayEventType
    driver_id: str | None = None
    delivery_id: str | None = None
    customer_emails: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer_emails")
    @classmethod
    def _normalize_emails(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted({email.lower() for email in value}))

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _require_position(self) -> "RelayEvent":
        if self.type in LOCATION_EVENTS:
            try:
                self.position_fix()
            except ValidationError as e:
                raise ValueError(f"Invalid {self.type.value} payload: {e}") from e
        return self

    def position_fix(self) -> PositionFix:
        """Position carried by a location event."""
        return PositionFix(
            lat=self.payload.get("lat"),
            lng=self.payload.get("lng"),
            timestamp=self.timestamp,
            speed=self.payload.get("speed"),
            heading=self.payload.get("heading"),
        )

    @property
    def channel(self) -> str:
        return CHANNELS[self.type]

    @property
    def guard_key(self) -> str | None:
        """Key whose timestamp orders location events, if any."""
        if self.type == RelayEventType.DRIVER_LOCATION and self.driver_id:
            return f"driver:{self.driver_id}"
        if self.type == RelayEventType.DELIVERY_LOCATION and self.delivery_id:
            return f"delivery:{self.delivery_id}"
        return None


class SubscriptionFilter(BaseModel):
    """Narrows which events a subscriber receives.

    Unset fields do not filter; an empty filter receives every event.
    """

    customer_email: str | None = None
    driver_ids: frozenset[str] | None = None
    delivery_ids: frozenset[str] | None = None
    event_types: frozenset[RelayEventType] | None = None

    def matches(self, event: RelayEvent) -> bool:
        if self.event_types is not None and event.type not in self.event_types:
            return False
        if self.customer_email is not None and (
            self.customer_email.lower() not in event.customer_emails
        ):
            return False
        if self.driver_ids is not None and event.driver_id not in self.driver_ids:
            return False
        if self.delivery_ids is not None and event.delivery_id not in self.delivery_ids:
            return False
        return True
