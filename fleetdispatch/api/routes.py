"""API routes for the dispatch engine."""

from dataclasses import asdict
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from fleetdispatch.models import (
    ContactInfo,
    Delivery,
    DeliveryStatus,
    Driver,
    DriverStatus,
    PackageInfo,
    PositionFix,
    Priority,
    Stop,
    Vehicle,
    VehicleStatus,
    VehicleType,
)
from fleetdispatch.scheduling import (
    AssignmentProposal,
    AvailabilityResult,
    ResourceKind,
    TimeSlot,
    ValidationResult,
    Workload,
)
from fleetdispatch.api.websocket import manager
from fleetdispatch.services.dispatch import DispatchService
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class VehicleCreateRequest(BaseModel):
    """Request to register a vehicle."""

    vehicle_number: str
    type: VehicleType = VehicleType.VAN
    capacity: float = Field(default=0.0, ge=0)
    status: VehicleStatus = VehicleStatus.AVAILABLE


class VehicleUpdateRequest(BaseModel):
    """Partial vehicle edit; status is an admin override."""

    model_config = ConfigDict(extra="forbid")

    vehicle_number: str | None = None
    type: VehicleType | None = None
    capacity: float | None = Field(default=None, ge=0)
    status: VehicleStatus | None = None


class DriverCreateRequest(BaseModel):
    """Request to register a driver."""

    name: str
    email: EmailStr | None = None
    phone: str = ""
    license_number: str = ""


class DriverUpdateRequest(BaseModel):
    """Partial driver profile edit."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    license_number: str | None = None


class DriverStatusRequest(BaseModel):
    status: DriverStatus


class RatingRequest(BaseModel):
    score: float = Field(ge=0, le=5)


class DeliveryCreateRequest(BaseModel):
    """Customer delivery request."""

    pickup: Stop
    dropoff: Stop
    customer: ContactInfo
    package: PackageInfo
    priority: Priority = Priority.MEDIUM
    estimated_duration_minutes: int | None = Field(default=None, ge=1)


class DeliveryUpdateRequest(BaseModel):
    """Partial edit of a delivery's descriptive fields."""

    model_config = ConfigDict(extra="forbid")

    pickup: Stop | None = None
    dropoff: Stop | None = None
    customer: ContactInfo | None = None
    package: PackageInfo | None = None
    priority: Priority | None = None
    estimated_duration_minutes: int | None = Field(default=None, ge=1)


class AssignRequest(BaseModel):
    driver_id: str
    vehicle_id: str


class DriverActionRequest(BaseModel):
    """Driver action on an assigned delivery."""

    driver_id: str


class RejectRequest(DriverActionRequest):
    reason: str | None = None


class CompleteRequest(DriverActionRequest):
    notes: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class LocationRequest(BaseModel):
    """Position report from a driver's device."""

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    timestamp: datetime | None = None
    speed: float | None = None
    heading: float | None = None


class DeliveryLocationRequest(LocationRequest):
    driver_id: str


class LocationResponse(BaseModel):
    """Whether a position report was applied or dropped as out of date."""

    accepted: bool


class AvailabilityRequest(BaseModel):
    resource_id: str
    kind: ResourceKind
    proposed_start: datetime
    exclude_delivery_id: str | None = None


class ValidateAssignmentRequest(AssignmentProposal):
    exclude_delivery_id: str | None = None


class ScheduleResponse(BaseModel):
    """A driver's day as busy and free slots."""

    driver_id: str
    day: date
    busy: list[TimeSlot]
    free: list[TimeSlot]


class AlternativesResponse(BaseModel):
    delivery_id: str
    suggestions: list[datetime]


# Dependency to get the dispatch service


def get_dispatch_service(request: Request) -> DispatchService:
    """Get the dispatch service wired into the application."""
    return request.app.state.service


def _today(service: DispatchService) -> date:
    return service.store.clock().date()


# Vehicle endpoints


@router.post("/vehicles", response_model=Vehicle, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    request: VehicleCreateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Vehicle:
    """Register a vehicle."""
    return await service.add_vehicle(Vehicle(**request.model_dump()))


@router.get("/vehicles", response_model=list[Vehicle])
async def list_vehicles(
    status_filter: VehicleStatus | None = Query(default=None, alias="status"),
    service: DispatchService = Depends(get_dispatch_service),
) -> list[Vehicle]:
    """List vehicles, optionally by status."""
    return await service.list_vehicles(status_filter)


@router.get("/vehicles/{vehicle_id}", response_model=Vehicle)
async def get_vehicle(
    vehicle_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Vehicle:
    return await service.get_vehicle(vehicle_id)


@router.patch("/vehicles/{vehicle_id}", response_model=Vehicle)
async def update_vehicle(
    vehicle_id: str,
    request: VehicleUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Vehicle:
    """Edit a vehicle or override its status."""
    return await service.update_vehicle(vehicle_id, request.model_dump(exclude_unset=True))


@router.delete("/vehicles/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_vehicle(
    vehicle_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> None:
    """Remove a vehicle that no open delivery uses."""
    await service.delete_vehicle(vehicle_id)
    logger.info("vehicle_deleted_via_api", vehicle_id=vehicle_id)


# Driver endpoints


@router.post("/drivers", response_model=Driver, status_code=status.HTTP_201_CREATED)
async def create_driver(
    request: DriverCreateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Driver:
    """Register a driver."""
    return await service.add_driver(Driver(**request.model_dump()))


@router.get("/drivers", response_model=list[Driver])
async def list_drivers(
    status_filter: DriverStatus | None = Query(default=None, alias="status"),
    service: DispatchService = Depends(get_dispatch_service),
) -> list[Driver]:
    return await service.list_drivers(status_filter)


@router.get("/drivers/{driver_id}", response_model=Driver)
async def get_driver(
    driver_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Driver:
    return await service.get_driver(driver_id)


@router.patch("/drivers/{driver_id}", response_model=Driver)
async def update_driver(
    driver_id: str,
    request: DriverUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Driver:
    return await service.update_driver(driver_id, request.model_dump(exclude_unset=True))


@router.post("/drivers/{driver_id}/status", response_model=Driver)
async def set_driver_status(
    driver_id: str,
    request: DriverStatusRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Driver:
    """Put a driver on or off duty."""
    return await service.set_driver_status(driver_id, request.status)


@router.delete("/drivers/{driver_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_driver(
    driver_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> None:
    await service.delete_driver(driver_id)
    logger.info("driver_deleted_via_api", driver_id=driver_id)


@router.post("/drivers/{driver_id}/location", response_model=LocationResponse)
async def report_driver_location(
    driver_id: str,
    request: LocationRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> LocationResponse:
    """
    Report a driver's position.

    Reports older than the last applied one are dropped and answered with
    ``accepted: false``.
    """
    accepted = await service.record_driver_location(
        driver_id,
        request.lat,
        request.lng,
        timestamp=request.timestamp,
        speed=request.speed,
        heading=request.heading,
    )
    return LocationResponse(accepted=accepted)


@router.get("/drivers/{driver_id}/location", response_model=PositionFix | None)
async def get_driver_location(
    driver_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> PositionFix | None:
    """Last known position of a driver."""
    return await service.driver_location(driver_id)


@router.post("/drivers/{driver_id}/rating", response_model=Driver)
async def rate_driver(
    driver_id: str,
    request: RatingRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Driver:
    return await service.rate_driver(driver_id, request.score)


@router.get("/drivers/{driver_id}/workload", response_model=Workload)
async def get_driver_workload(
    driver_id: str,
    day: date | None = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> Workload:
    """Active deliveries a driver carries on a day (default today, UTC)."""
    return await service.driver_workload(driver_id, day or _today(service))


@router.get("/drivers/{driver_id}/schedule", response_model=ScheduleResponse)
async def get_driver_schedule(
    driver_id: str,
    day: date | None = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> ScheduleResponse:
    """Busy and free slots for a driver's working day."""
    day = day or _today(service)
    slots = await service.driver_schedule(driver_id, day)
    return ScheduleResponse(driver_id=driver_id, day=day, busy=slots["busy"], free=slots["free"])


@router.get("/drivers/{driver_id}/deliveries", response_model=list[Delivery])
async def get_driver_deliveries(
    driver_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> list[Delivery]:
    return await service.driver_deliveries(driver_id)


# Delivery endpoints


@router.post("/deliveries", response_model=Delivery, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    request: DeliveryCreateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    """Submit a delivery request; it starts out pending."""
    return await service.create_delivery(Delivery(**request.model_dump()))


@router.get("/deliveries", response_model=list[Delivery])
async def list_deliveries(
    status_filter: DeliveryStatus | None = Query(default=None, alias="status"),
    driver_id: str | None = None,
    customer_email: str | None = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> list[Delivery]:
    return await service.list_deliveries(status_filter, driver_id, customer_email)


@router.get("/deliveries/{delivery_id}", response_model=Delivery)
async def get_delivery(
    delivery_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.get_delivery(delivery_id)


@router.patch("/deliveries/{delivery_id}", response_model=Delivery)
async def update_delivery(
    delivery_id: str,
    request: DeliveryUpdateRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    """Edit a delivery; rescheduling an active one re-checks availability."""
    return await service.update_delivery(delivery_id, request.model_dump(exclude_unset=True))


@router.delete("/deliveries/{delivery_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_delivery(
    delivery_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> None:
    await service.delete_delivery(delivery_id)


@router.post("/deliveries/{delivery_id}/assign", response_model=Delivery)
async def assign_delivery(
    delivery_id: str,
    request: AssignRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    """
    Assign a driver and vehicle to a pending delivery.

    Fails with 422 and the full list of problems if the pair cannot take
    the job at its scheduled time.
    """
    return await service.accept_delivery_request(
        delivery_id, request.driver_id, request.vehicle_id
    )


@router.post("/deliveries/{delivery_id}/accept", response_model=Delivery)
async def accept_delivery(
    delivery_id: str,
    request: DriverActionRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.driver_accept(delivery_id, request.driver_id)


@router.post("/deliveries/{delivery_id}/reject", response_model=Delivery)
async def reject_delivery(
    delivery_id: str,
    request: RejectRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.driver_reject(delivery_id, request.driver_id, request.reason)


@router.post("/deliveries/{delivery_id}/start", response_model=Delivery)
async def start_delivery(
    delivery_id: str,
    request: DriverActionRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.start_delivery(delivery_id, request.driver_id)


@router.post("/deliveries/{delivery_id}/in-transit", response_model=Delivery)
async def mark_in_transit(
    delivery_id: str,
    request: DriverActionRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.mark_in_transit(delivery_id, request.driver_id)


@router.post("/deliveries/{delivery_id}/arrive", response_model=Delivery)
async def mark_arrived(
    delivery_id: str,
    request: DriverActionRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.mark_arrived(delivery_id, request.driver_id)


@router.post("/deliveries/{delivery_id}/complete", response_model=Delivery)
async def complete_delivery(
    delivery_id: str,
    request: CompleteRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.complete_delivery(delivery_id, request.driver_id, request.notes)


@router.post("/deliveries/{delivery_id}/cancel", response_model=Delivery)
async def cancel_delivery(
    delivery_id: str,
    request: CancelRequest = CancelRequest(),
    service: DispatchService = Depends(get_dispatch_service),
) -> Delivery:
    return await service.cancel_delivery(delivery_id, request.reason)


@router.post("/deliveries/{delivery_id}/location", response_model=LocationResponse)
async def report_delivery_location(
    delivery_id: str,
    request: DeliveryLocationRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> LocationResponse:
    """Report the live position of a delivery from its driver."""
    accepted = await service.record_delivery_location(
        delivery_id,
        request.driver_id,
        request.lat,
        request.lng,
        timestamp=request.timestamp,
        speed=request.speed,
        heading=request.heading,
    )
    return LocationResponse(accepted=accepted)


@router.get("/deliveries/{delivery_id}/history")
async def get_delivery_history(
    delivery_id: str,
    service: DispatchService = Depends(get_dispatch_service),
) -> list[dict[str, Any]]:
    """Audit trail of a delivery, oldest first."""
    return [asdict(entry) for entry in await service.delivery_history(delivery_id)]


@router.get("/deliveries/{delivery_id}/alternatives", response_model=AlternativesResponse)
async def get_alternative_times(
    delivery_id: str,
    driver_id: str,
    vehicle_id: str,
    max_suggestions: int = Query(default=5, ge=1, le=7),
    service: DispatchService = Depends(get_dispatch_service),
) -> AlternativesResponse:
    """Nearby start times at which the driver and vehicle are both free."""
    suggestions = await service.suggest_alternatives(
        delivery_id, driver_id, vehicle_id, max_suggestions
    )
    return AlternativesResponse(delivery_id=delivery_id, suggestions=suggestions)


# Scheduling endpoints


@router.post("/availability", response_model=AvailabilityResult)
async def check_availability(
    request: AvailabilityRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> AvailabilityResult:
    return await service.check_availability(
        request.resource_id,
        request.proposed_start,
        request.kind,
        request.exclude_delivery_id,
    )


@router.post("/assignments/validate", response_model=ValidationResult)
async def validate_assignment(
    request: ValidateAssignmentRequest,
    service: DispatchService = Depends(get_dispatch_service),
) -> ValidationResult:
    """Dry-run the assignment checks without changing anything."""
    proposal = AssignmentProposal(
        driver_id=request.driver_id,
        vehicle_id=request.vehicle_id,
        scheduled_time=request.scheduled_time,
    )
    return await service.validate_assignment(proposal, request.exclude_delivery_id)


# Admin endpoints


@router.get("/stats")
async def get_stats(
    driver_id: str | None = None,
    service: DispatchService = Depends(get_dispatch_service),
) -> dict[str, Any]:
    """Delivery counts, audit analytics and live connection load."""
    return {
        "deliveries": await service.delivery_stats(driver_id),
        "audit": service.audit.summary(),
        "subscribers": service.relay.subscriber_count,
        "websocket_connections": manager.connection_count,
    }
