"""Delivery audit trail and analytics."""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleetdispatch.models.common import utcnow
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AuditEntry:
    """Individual event in a delivery's history."""

    timestamp: datetime
    action: str
    delivery_id: str
    driver_id: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    location: dict[str, float] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class DeliveryAuditLog:
    """Records what happened to each delivery, in order."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._entries: dict[str, list[AuditEntry]] = defaultdict(list)

    def record(
        self,
        action: str,
        delivery_id: str,
        driver_id: str | None = None,
        previous_status: str | None = None,
        new_status: str | None = None,
        location: dict[str, float] | None = None,
        **metadata: Any,
    ) -> AuditEntry:
        """Append an entry to a delivery's trail."""
        entry = AuditEntry(
            timestamp=self._clock(),
            action=action,
            delivery_id=delivery_id,
            driver_id=driver_id,
            previous_status=previous_status,
            new_status=new_status,
            location=location,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        self._entries[delivery_id].append(entry)

        logger.debug(
            "audit_event",
            action=action,
            delivery_id=delivery_id,
            driver_id=driver_id,
            new_status=new_status,
        )
        return entry

    def history(self, delivery_id: str) -> list[AuditEntry]:
        """Entries for one delivery, oldest first."""
        return list(self._entries.get(delivery_id, []))

    def statuses(self, delivery_id: str) -> list[str]:
        """Statuses the delivery has passed through, in order."""
        return [e.new_status for e in self.history(delivery_id) if e.new_status is not None]

    def summary(self) -> dict[str, Any]:
        """Aggregate analytics across all recorded deliveries."""
        events_by_action: dict[str, int] = defaultdict(int)
        total_events = 0
        finished = 0
        delivered = 0
        durations: list[float] = []

        for entries in self._entries.values():
            started_at: datetime | None = None
            final_status: str | None = None
            for entry in entries:
                total_events += 1
                events_by_action[entry.action] += 1
                if entry.new_status == "started":
                    started_at = entry.timestamp
                if entry.new_status in ("delivered", "rejected", "cancelled"):
                    final_status = entry.new_status
                    if entry.new_status == "delivered" and started_at is not None:
                        durations.append((entry.timestamp - started_at).total_seconds() / 60)

            if final_status is not None:
                finished += 1
                if final_status == "delivered":
                    delivered += 1

        return {
            "total_events": total_events,
            "events_by_action": dict(events_by_action),
            "location_updates": events_by_action.get("location-update", 0),
            "completion_rate": round(delivered / finished, 4) if finished else 0.0,
            "average_delivery_minutes": (
                round(sum(durations) / len(durations), 2) if durations else 0.0
            ),
        }
