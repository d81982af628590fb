"""Dispatch service - assignment, delivery lifecycle and live updates."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from fleetdispatch.config import Settings, get_settings
from fleetdispatch.exceptions import (
    IllegalTransitionError,
    ResourceInUseError,
    ValidationError,
)
from fleetdispatch.models.common import Location
from fleetdispatch.models.delivery import Delivery, DeliveryStatus, DriverContact
from fleetdispatch.models.driver import Driver, DriverStatus
from fleetdispatch.models.events import PositionFix, RelayEvent, RelayEventType
from fleetdispatch.models.vehicle import Vehicle, VehicleStatus
from fleetdispatch.scheduling.availability import (
    AvailabilityChecker,
    AvailabilityResult,
    ResourceKind,
    TimeSlot,
    Workload,
)
from fleetdispatch.scheduling.validator import (
    AssignmentProposal,
    SchedulingValidator,
    ValidationResult,
)
from fleetdispatch.services.relay import LiveRelay
from fleetdispatch.state.lifecycle import (
    DRIVER_ACTIONS,
    TIMESTAMP_FIELDS,
    DeliveryAction,
    DeliveryTransitions,
)
from fleetdispatch.state.store import EntityStore
from fleetdispatch.utils.audit import AuditEntry, DeliveryAuditLog
from fleetdispatch.utils.logging import LifecycleLogger

# Fields a dispatcher may edit on a delivery after creation.
EDITABLE_DELIVERY_FIELDS = frozenset(
    {"pickup", "dropoff", "customer", "package", "priority", "estimated_duration_minutes"}
)
ASSIGNMENT_FIELDS = frozenset({"driver_id", "vehicle_id", "driver"})
# Fields only the lifecycle or dedicated operations may change.
DRIVER_MANAGED_FIELDS = frozenset({"id", "created_at", "status", "rating", "rating_count", "total_trips"})
VEHICLE_MANAGED_FIELDS = frozenset({"id", "created_at"})

# Deliveries whose customer should see the driver's position.
_TRACKED_STATUSES = frozenset(
    {
        DeliveryStatus.ASSIGNED,
        DeliveryStatus.ACCEPTED,
        DeliveryStatus.STARTED,
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.ARRIVED,
    }
)


def _patch_errors(exc: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    ]


class DispatchService:
    """
    Coordinates deliveries across drivers and vehicles.

    Responsibilities:
    - Validate and apply assignments without double-booking
    - Advance deliveries through their lifecycle
    - Propagate status and position changes through the live relay
    """

    def __init__(
        self,
        store: EntityStore | None = None,
        relay: LiveRelay | None = None,
        settings: Settings | None = None,
        audit: DeliveryAuditLog | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or EntityStore()
        self.relay = relay or LiveRelay(queue_size=self.settings.relay_queue_size)
        self.checker = AvailabilityChecker(self.store, self.settings)
        self.validator = SchedulingValidator(self.store, self.checker, self.settings)
        self.audit = audit or DeliveryAuditLog(self.store.clock)
        self.logger = LifecycleLogger("dispatch_service")

    def _now(self) -> datetime:
        return self.store.clock()

    @staticmethod
    def _validated_patch(
        model_cls: type[BaseModel],
        current: BaseModel,
        patch: dict[str, Any],
    ) -> dict[str, Any]:
        """Validate a partial patch against the full model and return typed values."""
        merged = {**current.model_dump(), **patch}
        try:
            validated = model_cls.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(_patch_errors(e)) from e
        return {key: getattr(validated, key) for key in patch}

    # Vehicles

    async def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Register a vehicle with the fleet."""
        created = self.store.vehicles.create(vehicle)
        self.logger.logger.info("vehicle_added", vehicle_id=created.id, number=created.vehicle_number)
        return created

    async def update_vehicle(self, vehicle_id: str, patch: dict[str, Any]) -> Vehicle:
        """Admin edit of a vehicle, including status overrides."""
        forbidden = VEHICLE_MANAGED_FIELDS & set(patch)
        if forbidden:
            raise ValidationError([f"Field '{f}' cannot be changed" for f in sorted(forbidden)])

        async with self.store.locked(EntityStore.key("vehicle", vehicle_id)):
            current = self.store.vehicles.require(vehicle_id)
            values = self._validated_patch(Vehicle, current, patch)
            updated = self.store.vehicles.update(vehicle_id, values)

        self.logger.logger.info("vehicle_updated", vehicle_id=vehicle_id, fields=sorted(patch))
        return updated

    async def delete_vehicle(self, vehicle_id: str) -> Vehicle:
        """Remove a vehicle that no open delivery references."""
        async with self.store.locked(EntityStore.key("vehicle", vehicle_id)):
            self.store.vehicles.require(vehicle_id)
            holding = self.store.deliveries.list(
                lambda d: d.vehicle_id == vehicle_id and not d.is_terminal
            )
            if holding:
                raise ResourceInUseError(
                    f"Vehicle {vehicle_id} is committed to open deliveries",
                    delivery_ids=[d.id for d in holding],
                )
            return self.store.vehicles.delete(vehicle_id)

    async def get_vehicle(self, vehicle_id: str) -> Vehicle:
        return self.store.vehicles.require(vehicle_id)

    async def list_vehicles(self, status: VehicleStatus | None = None) -> list[Vehicle]:
        return self.store.vehicles.list(lambda v: status is None or v.status == status)

    async def available_vehicles(self) -> list[Vehicle]:
        return await self.list_vehicles(VehicleStatus.AVAILABLE)

    # Drivers

    async def add_driver(self, driver: Driver) -> Driver:
        """Register a driver; new drivers start with a perfect rating and no trips."""
        fresh = driver.model_copy(update={"rating": 5.0, "rating_count": 0, "total_trips": 0})
        created = self.store.drivers.create(fresh)
        self.logger.logger.info("driver_added", driver_id=created.id, name=created.name)
        return created

    async def update_driver(self, driver_id: str, patch: dict[str, Any]) -> Driver:
        """Edit a driver's profile fields."""
        forbidden = DRIVER_MANAGED_FIELDS & set(patch)
        if forbidden:
            raise ValidationError([f"Field '{f}' cannot be changed" for f in sorted(forbidden)])

        async with self.store.locked(EntityStore.key("driver", driver_id)):
            current = self.store.drivers.require(driver_id)
            values = self._validated_patch(Driver, current, patch)
            updated = self.store.drivers.update(driver_id, values)

        self.logger.logger.info("driver_updated", driver_id=driver_id, fields=sorted(patch))
        return updated

    async def set_driver_status(self, driver_id: str, status: DriverStatus) -> Driver:
        """
        Toggle a driver on or off duty.

        Busy is owned by the lifecycle and cannot be set directly.
        """
        status = DriverStatus(status)
        if status == DriverStatus.BUSY:
            raise ValidationError(["Drivers become busy only through assignment"])

        async with self.store.locked(EntityStore.key("driver", driver_id)):
            self.store.drivers.require(driver_id)
            updated = self.store.drivers.update(driver_id, {"status": status})

        self.logger.logger.info("driver_status_set", driver_id=driver_id, status=status.value)
        return updated

    async def delete_driver(self, driver_id: str) -> Driver:
        """Remove a driver that no open delivery references."""
        async with self.store.locked(EntityStore.key("driver", driver_id)):
            self.store.drivers.require(driver_id)
            holding = self.store.deliveries.list(
                lambda d: d.driver_id == driver_id and not d.is_terminal
            )
            if holding:
                raise ResourceInUseError(
                    f"Driver {driver_id} is committed to open deliveries",
                    delivery_ids=[d.id for d in holding],
                )
            return self.store.drivers.delete(driver_id)

    async def get_driver(self, driver_id: str) -> Driver:
        return self.store.drivers.require(driver_id)

    async def list_drivers(self, status: DriverStatus | None = None) -> list[Driver]:
        return self.store.drivers.list(lambda d: status is None or d.status == status)

    async def available_drivers(self) -> list[Driver]:
        return await self.list_drivers(DriverStatus.AVAILABLE)

    async def rate_driver(self, driver_id: str, score: float) -> Driver:
        """Fold a customer rating into the driver's running average."""
        if not 0 <= score <= 5:
            raise ValidationError([f"Rating must be between 0 and 5, got {score}"])

        async with self.store.locked(EntityStore.key("driver", driver_id)):
            driver = self.store.drivers.require(driver_id)
            updated = self.store.drivers.update(
                driver_id,
                {"rating": driver.rated(score), "rating_count": driver.rating_count + 1},
            )
        return updated

    # Deliveries

    async def create_delivery(self, delivery: Delivery) -> Delivery:
        """Record a customer request as a pending delivery."""
        request = Delivery(
            pickup=delivery.pickup,
            dropoff=delivery.dropoff,
            customer=delivery.customer,
            package=delivery.package,
            priority=delivery.priority,
            estimated_duration_minutes=delivery.estimated_duration_minutes,
        )
        created = self.store.deliveries.create(request)
        self.audit.record(
            "created",
            created.id,
            new_status=created.status.value,
            customer=created.customer.name,
        )
        self.logger.logger.info(
            "delivery_created",
            delivery_id=created.id,
            customer=created.customer.name,
            distance_km=round(created.route_distance_km, 2),
        )
        return created

    async def get_delivery(self, delivery_id: str) -> Delivery:
        return self.store.deliveries.require(delivery_id)

    async def list_deliveries(
        self,
        status: DeliveryStatus | None = None,
        driver_id: str | None = None,
        customer_email: str | None = None,
    ) -> list[Delivery]:
        def keep(d: Delivery) -> bool:
            if status is not None and d.status != status:
                return False
            if driver_id is not None and d.driver_id != driver_id:
                return False
            if customer_email is not None and not d.owned_by(customer_email):
                return False
            return True

        return self.store.deliveries.list(keep)

    async def pending_deliveries(self) -> list[Delivery]:
        return await self.list_deliveries(status=DeliveryStatus.PENDING)

    async def driver_deliveries(self, driver_id: str) -> list[Delivery]:
        self.store.drivers.require(driver_id)
        return await self.list_deliveries(driver_id=driver_id)

    async def update_delivery(self, delivery_id: str, patch: dict[str, Any]) -> Delivery:
        """
        Edit a delivery's descriptive fields.

        Assignment references are immutable; status only changes through the
        lifecycle. Rescheduling an active delivery re-validates its driver and
        vehicle, excluding the delivery itself from the conflict scan.

        Args:
            delivery_id: Delivery to edit
            patch: Partial field values

        Returns:
            The updated delivery
        """
        locked_assignment = ASSIGNMENT_FIELDS & set(patch)
        if locked_assignment:
            raise ResourceInUseError(
                "Assignment cannot be changed; cancel the delivery and create a new one",
                delivery_ids=[delivery_id],
            )
        not_editable = set(patch) - EDITABLE_DELIVERY_FIELDS
        if not_editable:
            raise ValidationError([f"Field '{f}' cannot be changed" for f in sorted(not_editable)])

        current = self.store.deliveries.require(delivery_id)
        async with self.store.locked(
            EntityStore.key("delivery", delivery_id),
            EntityStore.key("driver", current.driver_id) if current.driver_id else None,
            EntityStore.key("vehicle", current.vehicle_id) if current.vehicle_id else None,
        ):
            current = self.store.deliveries.require(delivery_id)
            if current.is_terminal:
                raise IllegalTransitionError(delivery_id, current.status.value, "update")

            values = self._validated_patch(Delivery, current, patch)
            candidate = current.model_copy(update=values)

            rescheduled = (
                self.checker.anchor(candidate) != self.checker.anchor(current)
                or self.checker.duration_minutes(candidate) != self.checker.duration_minutes(current)
            )
            if current.is_active and rescheduled:
                result = self.validator.validate(
                    AssignmentProposal(
                        driver_id=current.driver_id,
                        vehicle_id=current.vehicle_id,
                        scheduled_time=self.checker.anchor(candidate),
                    ),
                    exclude_delivery_id=delivery_id,
                )
                if not result.valid:
                    self.logger.log_rejected_request("update", delivery_id, result.errors)
                    raise ValidationError(result.errors, conflicts=result.conflicts)

            updated = self.store.deliveries.update(delivery_id, values)

        self.audit.record("updated", delivery_id, fields=sorted(patch))
        return updated

    async def delete_delivery(self, delivery_id: str) -> Delivery:
        """Remove a delivery that is not currently holding resources."""
        async with self.store.locked(EntityStore.key("delivery", delivery_id)):
            delivery = self.store.deliveries.require(delivery_id)
            if delivery.is_active or delivery.status == DeliveryStatus.ARRIVED:
                raise IllegalTransitionError(
                    delivery_id,
                    delivery.status.value,
                    "delete",
                    reason="cancel it first",
                )
            self.relay.forget_delivery(delivery_id)
            return self.store.deliveries.delete(delivery_id)

    # Scheduling

    async def check_availability(
        self,
        resource_id: str,
        proposed_start: datetime,
        kind: ResourceKind,
        exclude_delivery_id: str | None = None,
    ) -> AvailabilityResult:
        return self.checker.check_availability(resource_id, proposed_start, kind, exclude_delivery_id)

    async def validate_assignment(
        self,
        proposal: AssignmentProposal,
        exclude_delivery_id: str | None = None,
    ) -> ValidationResult:
        return self.validator.validate(proposal, exclude_delivery_id)

    async def suggest_alternatives(
        self,
        delivery_id: str,
        driver_id: str,
        vehicle_id: str,
        max_suggestions: int = 5,
    ) -> list[datetime]:
        """Nearby start times where the driver and vehicle are both free."""
        delivery = self.store.deliveries.require(delivery_id)
        preferred = self.checker.anchor(delivery) or self._now()
        return self.checker.suggest_alternative_times(
            driver_id, vehicle_id, preferred, max_suggestions, exclude_delivery_id=delivery_id
        )

    async def driver_schedule(self, driver_id: str, day: date) -> dict[str, list[TimeSlot]]:
        """Busy and free slots for a driver on a UTC day."""
        self.store.drivers.require(driver_id)
        return {
            "busy": self.checker.busy_slots(driver_id, ResourceKind.DRIVER, day),
            "free": self.checker.free_slots(driver_id, ResourceKind.DRIVER, day),
        }

    async def driver_workload(self, driver_id: str, day: date) -> Workload:
        self.store.drivers.require(driver_id)
        return self.checker.workload(driver_id, day)

    async def accept_delivery_request(
        self,
        delivery_id: str,
        driver_id: str,
        vehicle_id: str,
    ) -> Delivery:
        """
        Validate and assign a driver and vehicle to a pending delivery.

        The check and the mutation happen under the delivery, driver and
        vehicle locks, so concurrent requests for the same resource cannot
        both pass validation.

        Args:
            delivery_id: Pending delivery to assign
            driver_id: Proposed driver
            vehicle_id: Proposed vehicle

        Returns:
            The assigned delivery

        Raises:
            NotFoundError: The delivery does not exist
            IllegalTransitionError: The delivery is not pending
            ValidationError: The proposal failed one or more checks
        """
        async with self.store.locked(
            EntityStore.key("delivery", delivery_id),
            EntityStore.key("driver", driver_id),
            EntityStore.key("vehicle", vehicle_id),
        ):
            delivery = self.store.deliveries.require(delivery_id)
            previous = delivery.status
            if not DeliveryTransitions.can_transition(previous, DeliveryAction.ASSIGN):
                self.logger.log_rejected_request(
                    DeliveryAction.ASSIGN.value, delivery_id, [f"status is {previous.value}"]
                )
                raise IllegalTransitionError(delivery_id, previous.value, DeliveryAction.ASSIGN.value)

            result = self.validator.validate(
                AssignmentProposal(
                    driver_id=driver_id,
                    vehicle_id=vehicle_id,
                    scheduled_time=self.checker.anchor(delivery),
                ),
                exclude_delivery_id=delivery_id,
            )
            if not result.valid:
                self.logger.log_rejected_request(
                    DeliveryAction.ASSIGN.value,
                    delivery_id,
                    result.errors,
                    driver_id=driver_id,
                    vehicle_id=vehicle_id,
                )
                raise ValidationError(result.errors, conflicts=result.conflicts)

            driver = self.store.drivers.require(driver_id)
            vehicle = self.store.vehicles.require(vehicle_id)
            now = self._now()

            assigned = self.store.deliveries.update(
                delivery_id,
                {
                    "status": DeliveryStatus.ASSIGNED,
                    "driver_id": driver_id,
                    "vehicle_id": vehicle_id,
                    "driver": DriverContact(
                        name=driver.name,
                        phone=driver.phone,
                        vehicle=vehicle.vehicle_number,
                    ),
                    "assigned_at": now,
                },
            )
            self.store.drivers.update(
                driver_id, {"status": DriverStatus.BUSY, "vehicle_id": vehicle_id}
            )
            self.store.vehicles.update(
                vehicle_id, {"status": VehicleStatus.IN_USE, "driver_id": driver_id}
            )

            self.audit.record(
                DeliveryStatus.ASSIGNED.value,
                delivery_id,
                driver_id=driver_id,
                previous_status=previous.value,
                new_status=DeliveryStatus.ASSIGNED.value,
                vehicle_id=vehicle_id,
            )
            self.logger.log_assignment(
                delivery_id,
                driver_id,
                vehicle_id,
                scheduled_time=(
                    assigned.scheduled_time.isoformat() if assigned.scheduled_time else None
                ),
            )

            await self._publish_status(assigned, previous)
            await self.relay.publish(
                RelayEvent(
                    type=RelayEventType.DRIVER_ASSIGNED,
                    driver_id=driver_id,
                    delivery_id=delivery_id,
                    customer_emails=(assigned.customer.email,),
                    timestamp=now,
                    payload={
                        "driver": assigned.driver.model_dump(),
                        "vehicle_id": vehicle_id,
                        "scheduled_time": (
                            assigned.scheduled_time.isoformat() if assigned.scheduled_time else None
                        ),
                    },
                )
            )

        return assigned

    async def driver_accept(self, delivery_id: str, driver_id: str) -> Delivery:
        """Assigned driver takes the job."""
        return await self._transition(delivery_id, DeliveryAction.ACCEPT, driver_id)

    async def driver_reject(
        self, delivery_id: str, driver_id: str, reason: str | None = None
    ) -> Delivery:
        """Assigned driver turns the job down."""
        return await self._transition(
            delivery_id, DeliveryAction.REJECT, driver_id, rejection_reason=reason
        )

    async def start_delivery(self, delivery_id: str, driver_id: str) -> Delivery:
        """Driver starts the ride."""
        return await self._transition(delivery_id, DeliveryAction.START, driver_id)

    async def mark_in_transit(self, delivery_id: str, driver_id: str) -> Delivery:
        """Driver has the package and is on the way."""
        return await self._transition(delivery_id, DeliveryAction.MARK_IN_TRANSIT, driver_id)

    async def mark_arrived(self, delivery_id: str, driver_id: str) -> Delivery:
        """Driver reached the drop-off."""
        return await self._transition(delivery_id, DeliveryAction.MARK_ARRIVED, driver_id)

    async def complete_delivery(
        self, delivery_id: str, driver_id: str, notes: str | None = None
    ) -> Delivery:
        """Driver hands the package over; counts one trip for the driver."""
        return await self._transition(
            delivery_id, DeliveryAction.COMPLETE, driver_id, completion_notes=notes
        )

    async def cancel_delivery(self, delivery_id: str, reason: str | None = None) -> Delivery:
        """Admin or customer cancels a delivery that has not finished."""
        return await self._transition(
            delivery_id, DeliveryAction.CANCEL, cancellation_reason=reason
        )

    async def _transition(
        self,
        delivery_id: str,
        action: DeliveryAction,
        driver_id: str | None = None,
        **fields: Any,
    ) -> Delivery:
        """Apply one lifecycle action with its side effects."""
        async with self.store.locked(
            EntityStore.key("delivery", delivery_id),
            EntityStore.key("driver", driver_id) if driver_id else None,
        ):
            delivery = self.store.deliveries.require(delivery_id)
            previous = delivery.status

            if action in DRIVER_ACTIONS and delivery.driver_id != driver_id:
                self.logger.log_rejected_request(
                    action.value, delivery_id, ["not the assigned driver"], driver_id=driver_id
                )
                raise IllegalTransitionError(
                    delivery_id,
                    previous.value,
                    action.value,
                    reason=f"delivery is not assigned to driver {driver_id}",
                )

            try:
                target = DeliveryTransitions.apply(delivery_id, previous, action)
            except IllegalTransitionError:
                self.logger.log_rejected_request(
                    action.value, delivery_id, [f"status is {previous.value}"], driver_id=driver_id
                )
                raise

            now = self._now()
            patch: dict[str, Any] = {"status": target}
            if target in TIMESTAMP_FIELDS:
                patch[TIMESTAMP_FIELDS[target]] = now
            patch.update({k: v for k, v in fields.items() if v is not None})

            if target == DeliveryStatus.DELIVERED:
                if delivery.started_at is not None:
                    elapsed = (now - delivery.started_at).total_seconds() / 60
                    patch["actual_duration_minutes"] = round(elapsed)
                driver = self.store.drivers.require(delivery.driver_id)
                self.store.drivers.update(driver.id, {"total_trips": driver.total_trips + 1})

            updated = self.store.deliveries.update(delivery_id, patch)

            self.audit.record(
                target.value,
                delivery_id,
                driver_id=updated.driver_id,
                previous_status=previous.value,
                new_status=target.value,
                reason=fields.get("rejection_reason") or fields.get("cancellation_reason"),
                notes=fields.get("completion_notes"),
            )
            self.logger.log_transition(delivery_id, previous.value, target.value, updated.driver_id)

            await self._publish_status(updated, previous)
            if target == DeliveryStatus.DELIVERED:
                await self.relay.publish(
                    RelayEvent(
                        type=RelayEventType.DELIVERY_COMPLETED,
                        driver_id=updated.driver_id,
                        delivery_id=delivery_id,
                        customer_emails=(updated.customer.email,),
                        timestamp=now,
                        payload={
                            "completed_at": now.isoformat(),
                            "completion_notes": updated.completion_notes,
                            "actual_duration_minutes": updated.actual_duration_minutes,
                        },
                    )
                )
            if updated.is_terminal:
                self.relay.forget_delivery(delivery_id)

        return updated

    async def _publish_status(self, delivery: Delivery, previous: DeliveryStatus) -> None:
        await self.relay.publish(
            RelayEvent(
                type=RelayEventType.DELIVERY_STATUS_CHANGED,
                driver_id=delivery.driver_id,
                delivery_id=delivery.id,
                customer_emails=(delivery.customer.email,),
                timestamp=self._now(),
                payload={
                    "previous_status": previous.value,
                    "status": delivery.status.value,
                },
            )
        )

    # Live positions

    def _tracking_customers(self, driver_id: str) -> tuple[str, ...]:
        deliveries = self.store.deliveries.list(
            lambda d: d.driver_id == driver_id and d.status in _TRACKED_STATUSES
        )
        return tuple(d.customer.email for d in deliveries)

    async def record_driver_location(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        timestamp: datetime | None = None,
        speed: float | None = None,
        heading: float | None = None,
    ) -> bool:
        """
        Publish a driver's position to interested customers and dispatchers.

        Returns:
            False if the update was older than the last one and was dropped
        """
        self.store.drivers.require(driver_id)
        location = Location(lat=lat, lng=lng)

        return await self.relay.publish(
            RelayEvent(
                type=RelayEventType.DRIVER_LOCATION,
                driver_id=driver_id,
                customer_emails=self._tracking_customers(driver_id),
                timestamp=timestamp or self._now(),
                payload={
                    "lat": location.lat,
                    "lng": location.lng,
                    "speed": speed,
                    "heading": heading,
                },
            )
        )

    async def record_delivery_location(
        self,
        delivery_id: str,
        driver_id: str,
        lat: float,
        lng: float,
        timestamp: datetime | None = None,
        speed: float | None = None,
        heading: float | None = None,
    ) -> bool:
        """Publish the live position of a delivery being carried by its driver."""
        delivery = self.store.deliveries.require(delivery_id)
        if delivery.driver_id != driver_id:
            raise IllegalTransitionError(
                delivery_id,
                delivery.status.value,
                "report location",
                reason=f"delivery is not assigned to driver {driver_id}",
            )
        if delivery.is_terminal:
            raise IllegalTransitionError(
                delivery_id,
                delivery.status.value,
                "report location",
                reason="delivery is finished",
            )
        location = Location(lat=lat, lng=lng)

        applied = await self.relay.publish(
            RelayEvent(
                type=RelayEventType.DELIVERY_LOCATION,
                driver_id=driver_id,
                delivery_id=delivery_id,
                customer_emails=(delivery.customer.email,),
                timestamp=timestamp or self._now(),
                payload={
                    "lat": location.lat,
                    "lng": location.lng,
                    "status": delivery.status.value,
                    "speed": speed,
                    "heading": heading,
                },
            )
        )
        if applied:
            self.audit.record(
                "location-update",
                delivery_id,
                driver_id=driver_id,
                location=location.model_dump(),
                speed=speed,
                heading=heading,
            )
        return applied

    async def driver_location(self, driver_id: str) -> PositionFix | None:
        self.store.drivers.require(driver_id)
        return self.relay.position(driver_id)

    async def delivery_location(self, delivery_id: str) -> PositionFix | None:
        self.store.deliveries.require(delivery_id)
        return self.relay.delivery_position(delivery_id)

    # Reporting

    async def delivery_history(self, delivery_id: str) -> list[AuditEntry]:
        self.store.deliveries.require(delivery_id)
        return self.audit.history(delivery_id)

    async def delivery_stats(self, driver_id: str | None = None) -> dict[str, int]:
        """Delivery counts per status, for one driver or the whole fleet."""
        deliveries = await self.list_deliveries(driver_id=driver_id)
        stats = {status.value: 0 for status in DeliveryStatus}
        for delivery in deliveries:
            stats[delivery.status.value] += 1
        stats["total"] = len(deliveries)
        return stats
