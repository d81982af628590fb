"""Scheduling: availability scans and assignment validation."""

from fleetdispatch.scheduling.availability import (
    AvailabilityChecker,
    AvailabilityResult,
    ResourceKind,
    ScheduleConflict,
    TimeSlot,
    Workload,
)
from fleetdispatch.scheduling.validator import (
    AssignmentProposal,
    SchedulingValidator,
    ValidationResult,
)

__all__ = [
    "AssignmentProposal",
    "AvailabilityChecker",
    "AvailabilityResult",
    "ResourceKind",
    "ScheduleConflict",
    "SchedulingValidator",
    "TimeSlot",
    "ValidationResult",
    "Workload",
]
