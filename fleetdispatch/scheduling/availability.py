"""Availability checks for drivers and vehicles.

A delivery occupies its resources from its anchor time for its estimated
duration. A proposed start time is widened by a per-resource buffer before
overlap testing: drivers need more turnaround slack than vehicles.
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum

from pydantic import BaseModel

from fleetdispatch.config import Settings, get_settings
from fleetdispatch.models.common import as_utc
from fleetdispatch.models.delivery import Delivery
from fleetdispatch.state.store import EntityStore
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)


class ResourceKind(str, Enum):
    """Kinds of committable resource."""

    DRIVER = "driver"
    VEHICLE = "vehicle"


class TimeSlot(BaseModel):
    """Half-open interval of time."""

    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start < other.end and other.start < self.end


class ScheduleConflict(BaseModel):
    """A commitment that collides with a proposed slot."""

    delivery_id: str
    scheduled_time: datetime
    estimated_duration_minutes: int
    customer_name: str


class AvailabilityResult(BaseModel):
    """Outcome of an availability scan."""

    resource_id: str
    kind: ResourceKind
    proposed_start: datetime
    available: bool
    conflicts: list[ScheduleConflict]


class Workload(BaseModel):
    """Active deliveries a driver carries on one day."""

    driver_id: str
    day: date
    current: int
    maximum: int

    @property
    def within_limits(self) -> bool:
        return self.current < self.maximum


class AvailabilityChecker:
    """Scans existing commitments for a driver or vehicle."""

    SUGGESTION_OFFSETS_MINUTES = (0, 30, 60, 90, 120, 180, 240)

    def __init__(self, store: EntityStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def buffer_for(self, kind: ResourceKind) -> timedelta:
        """Padding applied around a proposed start for this resource kind."""
        if kind == ResourceKind.DRIVER:
            return timedelta(minutes=self.settings.driver_buffer_minutes)
        return timedelta(minutes=self.settings.vehicle_buffer_minutes)

    def anchor(self, delivery: Delivery) -> datetime | None:
        """Instant a delivery's occupied interval starts.

        Deliveries without a scheduled pickup fall back to their creation
        time under the ``created_at`` policy and are not anchored at all
        under ``skip``.
        """
        if delivery.scheduled_time is not None:
            return delivery.scheduled_time
        if self.settings.anchor_fallback == "created_at":
            return as_utc(delivery.created_at)
        return None

    def duration_minutes(self, delivery: Delivery) -> int:
        return delivery.estimated_duration_minutes or self.settings.default_duration_minutes

    def occupied_slot(self, delivery: Delivery) -> TimeSlot | None:
        start = self.anchor(delivery)
        if start is None:
            return None
        return TimeSlot(start=start, end=start + timedelta(minutes=self.duration_minutes(delivery)))

    def commitments(
        self,
        resource_id: str,
        kind: ResourceKind,
        exclude_delivery_id: str | None = None,
    ) -> list[Delivery]:
        """Active deliveries holding the resource."""

        def holds(delivery: Delivery) -> bool:
            if exclude_delivery_id is not None and delivery.id == exclude_delivery_id:
                return False
            if not delivery.is_active:
                return False
            if kind == ResourceKind.DRIVER:
                return delivery.driver_id == resource_id
            return delivery.vehicle_id == resource_id

        return self.store.deliveries.list(holds)

    def check_availability(
        self,
        resource_id: str,
        proposed_start: datetime,
        kind: ResourceKind,
        exclude_delivery_id: str | None = None,
    ) -> AvailabilityResult:
        """Report every active commitment overlapping the buffered proposal."""
        proposed_start = as_utc(proposed_start)
        buffer = self.buffer_for(kind)
        requested = TimeSlot(start=proposed_start - buffer, end=proposed_start + buffer)

        conflicts: list[ScheduleConflict] = []
        for delivery in self.commitments(resource_id, kind, exclude_delivery_id):
            occupied = self.occupied_slot(delivery)
            if occupied is None or not requested.overlaps(occupied):
                continue
            conflicts.append(
                ScheduleConflict(
                    delivery_id=delivery.id,
                    scheduled_time=occupied.start,
                    estimated_duration_minutes=self.duration_minutes(delivery),
                    customer_name=delivery.customer.name,
                )
            )

        conflicts.sort(key=lambda c: c.scheduled_time)

        if conflicts:
            logger.debug(
                "availability_conflicts",
                resource_id=resource_id,
                kind=kind.value,
                proposed_start=proposed_start.isoformat(),
                conflicts=[c.delivery_id for c in conflicts],
            )

        return AvailabilityResult(
            resource_id=resource_id,
            kind=kind,
            proposed_start=proposed_start,
            available=not conflicts,
            conflicts=conflicts,
        )

    def _day_bounds(self, day: date, start_hour: int = 0, end_hour: int = 24) -> TimeSlot:
        start = datetime.combine(day, time(start_hour), tzinfo=timezone.utc)
        end = datetime.combine(day, time(0), tzinfo=timezone.utc) + timedelta(hours=end_hour)
        return TimeSlot(start=start, end=end)

    def busy_slots(self, resource_id: str, kind: ResourceKind, day: date) -> list[TimeSlot]:
        """Merged occupied intervals touching a UTC day."""
        bounds = self._day_bounds(day)
        slots = [
            slot
            for slot in (self.occupied_slot(d) for d in self.commitments(resource_id, kind))
            if slot is not None and slot.overlaps(bounds)
        ]
        slots.sort(key=lambda s: s.start)

        merged: list[TimeSlot] = []
        for slot in slots:
            if merged and slot.start <= merged[-1].end:
                last = merged[-1]
                merged[-1] = TimeSlot(start=last.start, end=max(last.end, slot.end))
            else:
                merged.append(slot)
        return merged

    def free_slots(self, resource_id: str, kind: ResourceKind, day: date) -> list[TimeSlot]:
        """Gaps in the working day long enough to be worth offering."""
        workday = self._day_bounds(
            day, self.settings.workday_start_hour, self.settings.workday_end_hour
        )
        free: list[TimeSlot] = []
        cursor = workday.start

        for busy in self.busy_slots(resource_id, kind, day):
            if busy.end <= workday.start or busy.start >= workday.end:
                continue
            if cursor < busy.start:
                free.append(TimeSlot(start=cursor, end=min(busy.start, workday.end)))
            cursor = max(cursor, busy.end)

        if cursor < workday.end:
            free.append(TimeSlot(start=cursor, end=workday.end))

        return [slot for slot in free if slot.minutes >= self.settings.min_free_slot_minutes]

    def suggest_alternative_times(
        self,
        driver_id: str,
        vehicle_id: str,
        preferred: datetime,
        max_suggestions: int = 5,
        exclude_delivery_id: str | None = None,
    ) -> list[datetime]:
        """Start times at or after ``preferred`` where both resources are free."""
        preferred = as_utc(preferred)
        suggestions: list[datetime] = []

        for offset in self.SUGGESTION_OFFSETS_MINUTES:
            if len(suggestions) >= max_suggestions:
                break
            candidate = preferred + timedelta(minutes=offset)
            driver_check = self.check_availability(
                driver_id, candidate, ResourceKind.DRIVER, exclude_delivery_id
            )
            vehicle_check = self.check_availability(
                vehicle_id, candidate, ResourceKind.VEHICLE, exclude_delivery_id
            )
            if driver_check.available and vehicle_check.available:
                suggestions.append(candidate)

        return suggestions

    def workload(self, driver_id: str, day: date) -> Workload:
        """Count a driver's active deliveries anchored on ``day``."""
        bounds = self._day_bounds(day)
        current = 0
        for delivery in self.commitments(driver_id, ResourceKind.DRIVER):
            start = self.anchor(delivery)
            if start is not None and bounds.start <= start < bounds.end:
                current += 1

        return Workload(
            driver_id=driver_id,
            day=day,
            current=current,
            maximum=self.settings.max_deliveries_per_day,
        )
