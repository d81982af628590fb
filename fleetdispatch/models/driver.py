"""Driver models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, EmailStr, Field

from fleetdispatch.models.common import new_id, utcnow


class DriverStatus(str, Enum):
    """Driver status states."""

    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Driver(BaseModel):
    """Delivery driver profile."""

    id: str = Field(default_factory=new_id)
    name: str
    email: EmailStr | None = None
    phone: str = ""
    license_number: str = ""
    status: DriverStatus = DriverStatus.AVAILABLE
    vehicle_id: str | None = None
    rating: float = Field(default=5.0, ge=0, le=5)
    rating_count: int = Field(default=0, ge=0)
    total_trips: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_assignable(self) -> bool:
        """Offline drivers are excluded from assignment."""
        return self.status != DriverStatus.OFFLINE

    def rated(self, score: float) -> float:
        """Return the running average after adding ``score``, clamped to [0, 5]."""
        score = min(5.0, max(0.0, score))
        total = self.rating * self.rating_count + score
        return round(min(5.0, max(0.0, total / (self.rating_count + 1))), 2)
