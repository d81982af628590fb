"""Fleet vehicle models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from fleetdispatch.models.common import new_id, utcnow


class VehicleType(str, Enum):
    """Kinds of vehicle in the fleet."""

    VAN = "van"
    TRUCK = "truck"
    MOTORCYCLE = "motorcycle"
    CAR = "car"


class VehicleStatus(str, Enum):
    """Vehicle status states."""

    AVAILABLE = "available"
    IN_USE = "in-use"
    MAINTENANCE = "maintenance"


class Vehicle(BaseModel):
    """A vehicle that can be committed to deliveries."""

    id: str = Field(default_factory=new_id)
    vehicle_number: str
    type: VehicleType = VehicleType.VAN
    capacity: float = Field(default=0.0, ge=0)
    status: VehicleStatus = VehicleStatus.AVAILABLE
    driver_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_assignable(self) -> bool:
        """Vehicles in the workshop cannot take new work."""
        return self.status != VehicleStatus.MAINTENANCE
