"""Assignment validation combining resource status and availability."""

from datetime import datetime

from pydantic import BaseModel, Field

from fleetdispatch.config import Settings, get_settings
from fleetdispatch.models.driver import DriverStatus
from fleetdispatch.models.vehicle import VehicleStatus
from fleetdispatch.scheduling.availability import (
    AvailabilityChecker,
    ResourceKind,
    ScheduleConflict,
)
from fleetdispatch.state.store import EntityStore


class AssignmentProposal(BaseModel):
    """A driver and vehicle proposed for a delivery slot."""

    driver_id: str
    vehicle_id: str
    scheduled_time: datetime | None = None


class ValidationResult(BaseModel):
    """Outcome of validating a proposal; lists every violated rule."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    conflicts: list[ScheduleConflict] = Field(default_factory=list)


def _describe(conflicts: list[ScheduleConflict]) -> str:
    return ", ".join(
        f"{c.delivery_id} at {c.scheduled_time.isoformat()} for {c.customer_name}"
        for c in conflicts
    )


class SchedulingValidator:
    """Accepts or rejects a proposed assignment."""

    def __init__(
        self,
        store: EntityStore,
        checker: AvailabilityChecker | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.checker = checker or AvailabilityChecker(store, self.settings)

    def validate(
        self,
        proposal: AssignmentProposal,
        exclude_delivery_id: str | None = None,
    ) -> ValidationResult:
        """
        Run every assignment check and collect all failures.

        Args:
            proposal: Driver, vehicle and slot to check
            exclude_delivery_id: Delivery being re-validated, ignored in its own scan

        Returns:
            ValidationResult with all errors and conflicts found
        """
        errors: list[str] = []
        conflicts: list[ScheduleConflict] = []

        if proposal.scheduled_time is None:
            errors.append("Scheduled pickup time is required")

        driver = self.store.drivers.get(proposal.driver_id)
        if driver is None:
            errors.append(f"Driver {proposal.driver_id} not found")
        else:
            if driver.status == DriverStatus.OFFLINE:
                errors.append(f"Driver {driver.name} ({driver.id}) is offline")
            if proposal.scheduled_time is not None:
                check = self.checker.check_availability(
                    driver.id, proposal.scheduled_time, ResourceKind.DRIVER, exclude_delivery_id
                )
                if not check.available:
                    conflicts.extend(check.conflicts)
                    errors.append(
                        f"Driver {driver.name} ({driver.id}) is not available at "
                        f"{check.proposed_start.isoformat()}; "
                        f"conflicts: {_describe(check.conflicts)}"
                    )

        vehicle = self.store.vehicles.get(proposal.vehicle_id)
        if vehicle is None:
            errors.append(f"Vehicle {proposal.vehicle_id} not found")
            return ValidationResult(valid=False, errors=errors, conflicts=conflicts)

        if vehicle.status == VehicleStatus.MAINTENANCE:
            errors.append(f"Vehicle {vehicle.vehicle_number} ({vehicle.id}) is under maintenance")
        if proposal.scheduled_time is not None:
            check = self.checker.check_availability(
                vehicle.id, proposal.scheduled_time, ResourceKind.VEHICLE, exclude_delivery_id
            )
            if not check.available:
                conflicts.extend(check.conflicts)
                errors.append(
                    f"Vehicle {vehicle.vehicle_number} ({vehicle.id}) is not available at "
                    f"{check.proposed_start.isoformat()}; conflicts: {_describe(check.conflicts)}"
                )

        return ValidationResult(valid=not errors, errors=errors, conflicts=conflicts)
