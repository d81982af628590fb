"""Exception hierarchy for the dispatch engine."""

from __future__ import annotations

from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatch engine errors."""


class NotFoundError(DispatchError):
    """A referenced driver, vehicle or delivery does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} {entity_id} not found")


class ValidationError(DispatchError):
    """A proposed assignment failed one or more scheduling checks.

    ``errors`` lists every violated rule, not just the first one, so callers
    can present the complete picture. ``conflicts`` carries the conflicting
    commitments found by the availability scan.
    """

    def __init__(
        self,
        errors: list[str],
        *,
        conflicts: list[Any] | None = None,
    ) -> None:
        self.errors = list(errors)
        self.conflicts = list(conflicts or [])
        super().__init__("; ".join(self.errors))


class IllegalTransitionError(DispatchError):
    """An action is not permitted for the delivery's current status."""

    def __init__(
        self,
        delivery_id: str,
        status: str,
        action: str,
        *,
        reason: str | None = None,
    ) -> None:
        self.delivery_id = delivery_id
        self.status = status
        self.action = action
        self.reason = reason
        message = f"Cannot {action} delivery {delivery_id} while it is {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ResourceInUseError(DispatchError):
    """A driver or vehicle is still committed to an active delivery."""

    def __init__(self, message: str, *, delivery_ids: list[str] | None = None) -> None:
        self.delivery_ids = list(delivery_ids or [])
        super().__init__(message)


class StaleUpdateError(DispatchError):
    """A location event is older than the last one applied for its key.

    Raised and caught inside the relay; out-of-order network delivery is
    expected, so callers never see it.
    """

    def __init__(self, key: str, incoming: Any, current: Any) -> None:
        self.key = key
        self.incoming = incoming
        self.current = current
        super().__init__(f"Stale update for {key}: {incoming} is older than {current}")


class TransportError(DispatchError):
    """The pub/sub collaborator failed to emit or subscribe."""

    def __init__(self, message: str, *, channel: str = "") -> None:
        self.channel = channel
        super().__init__(message)
