"""State management modules."""

from fleetdispatch.state.lifecycle import DeliveryAction, DeliveryTransitions
from fleetdispatch.state.store import Collection, EntityStore

__all__ = ["Collection", "DeliveryAction", "DeliveryTransitions", "EntityStore"]
