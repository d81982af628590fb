"""Delivery lifecycle state machine."""

from enum import Enum

from fleetdispatch.exceptions import IllegalTransitionError
from fleetdispatch.models.delivery import TERMINAL_STATUSES, DeliveryStatus


class DeliveryAction(str, Enum):
    """Actions that move a delivery between statuses."""

    ASSIGN = "assign"
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    MARK_IN_TRANSIT = "mark_in_transit"
    MARK_ARRIVED = "mark_arrived"
    COMPLETE = "complete"
    CANCEL = "cancel"


# Actions only the assigned driver may perform.
DRIVER_ACTIONS = frozenset(
    {
        DeliveryAction.ACCEPT,
        DeliveryAction.REJECT,
        DeliveryAction.START,
        DeliveryAction.MARK_IN_TRANSIT,
        DeliveryAction.MARK_ARRIVED,
        DeliveryAction.COMPLETE,
    }
)

# Timestamp field stamped on entering a status.
TIMESTAMP_FIELDS: dict[DeliveryStatus, str] = {
    DeliveryStatus.ASSIGNED: "assigned_at",
    DeliveryStatus.ACCEPTED: "accepted_at",
    DeliveryStatus.STARTED: "started_at",
    DeliveryStatus.ARRIVED: "arrived_at",
    DeliveryStatus.DELIVERED: "completed_at",
    DeliveryStatus.REJECTED: "rejected_at",
    DeliveryStatus.CANCELLED: "cancelled_at",
}


class DeliveryTransitions:
    """Valid delivery status transitions."""

    TRANSITIONS: dict[DeliveryStatus, dict[DeliveryAction, DeliveryStatus]] = {
        DeliveryStatus.PENDING: {
            DeliveryAction.ASSIGN: DeliveryStatus.ASSIGNED,
        },
        DeliveryStatus.ASSIGNED: {
            DeliveryAction.ACCEPT: DeliveryStatus.ACCEPTED,
            DeliveryAction.REJECT: DeliveryStatus.REJECTED,
        },
        DeliveryStatus.ACCEPTED: {
            DeliveryAction.REJECT: DeliveryStatus.REJECTED,
            DeliveryAction.START: DeliveryStatus.STARTED,
        },
        DeliveryStatus.STARTED: {
            DeliveryAction.MARK_IN_TRANSIT: DeliveryStatus.IN_TRANSIT,
        },
        DeliveryStatus.IN_TRANSIT: {
            DeliveryAction.MARK_ARRIVED: DeliveryStatus.ARRIVED,
        },
        DeliveryStatus.ARRIVED: {
            DeliveryAction.COMPLETE: DeliveryStatus.DELIVERED,
        },
    }

    @classmethod
    def target(
        cls, from_state: DeliveryStatus, action: DeliveryAction
    ) -> DeliveryStatus | None:
        """Status reached by applying ``action``, or None if not permitted."""
        if action == DeliveryAction.CANCEL:
            if from_state in TERMINAL_STATUSES:
                return None
            return DeliveryStatus.CANCELLED
        return cls.TRANSITIONS.get(from_state, {}).get(action)

    @classmethod
    def can_transition(cls, from_state: DeliveryStatus, action: DeliveryAction) -> bool:
        """Check if an action is valid in the given state."""
        return cls.target(from_state, action) is not None

    @classmethod
    def allowed_actions(cls, from_state: DeliveryStatus) -> list[DeliveryAction]:
        """Actions available from a state, in declaration order."""
        return [action for action in DeliveryAction if cls.can_transition(from_state, action)]

    @classmethod
    def apply(
        cls, delivery_id: str, from_state: DeliveryStatus, action: DeliveryAction
    ) -> DeliveryStatus:
        """Resolve a transition or raise IllegalTransitionError."""
        target = cls.target(from_state, action)
        if target is None:
            raise IllegalTransitionError(delivery_id, from_state.value, action.value)
        return target
