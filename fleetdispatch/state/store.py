"""In-memory entity store for vehicles, drivers and deliveries.

Collections are flat keyed maps with plain CRUD and no field validation;
validation belongs to the scheduling layer. Every mutating service operation
wraps its read-decide-write sequence in ``EntityStore.locked`` so writes to
the same record serialize.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from fleetdispatch.exceptions import NotFoundError
from fleetdispatch.models.common import new_id, utcnow
from fleetdispatch.models.delivery import Delivery
from fleetdispatch.models.driver import Driver
from fleetdispatch.models.vehicle import Vehicle
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class Collection(Generic[ModelT]):
    """Keyed collection of one entity kind."""

    def __init__(self, kind: str, clock: Callable[[], datetime]) -> None:
        self.kind = kind
        self._clock = clock
        self._records: dict[str, ModelT] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._records

    def create(self, record: ModelT) -> ModelT:
        """Store a new record under a fresh identity and creation time."""
        entity_id = new_id()
        while entity_id in self._records:
            entity_id = new_id()

        stored = record.model_copy(
            update={"id": entity_id, "created_at": self._clock()},
            deep=True,
        )
        self._records[entity_id] = stored
        logger.debug("entity_created", kind=self.kind, entity_id=entity_id)
        return stored.model_copy(deep=True)

    def get(self, entity_id: str) -> ModelT | None:
        """Get a copy of a record, or None."""
        record = self._records.get(entity_id)
        if record is None:
            return None
        return record.model_copy(deep=True)

    def require(self, entity_id: str) -> ModelT:
        """Get a copy of a record or raise NotFoundError."""
        record = self.get(entity_id)
        if record is None:
            raise NotFoundError(self.kind, entity_id)
        return record

    def list(self, predicate: Callable[[ModelT], bool] | None = None) -> list[ModelT]:
        """List copies of all records, optionally filtered."""
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if predicate is None or predicate(record)
        ]

    def update(self, entity_id: str, patch: dict[str, Any]) -> ModelT:
        """Apply a partial patch, preserving unspecified fields."""
        current = self._records.get(entity_id)
        if current is None:
            raise NotFoundError(self.kind, entity_id)

        unknown = set(patch) - set(type(current).model_fields)
        if unknown:
            raise ValueError(f"Unknown {self.kind} field(s): {', '.join(sorted(unknown))}")

        patch = {key: value for key, value in patch.items() if key != "id"}
        updated = current.model_copy(update=patch, deep=True)
        self._records[entity_id] = updated
        logger.debug("entity_updated", kind=self.kind, entity_id=entity_id, fields=sorted(patch))
        return updated.model_copy(deep=True)

    def delete(self, entity_id: str) -> ModelT:
        """Remove a record and return it."""
        record = self._records.pop(entity_id, None)
        if record is None:
            raise NotFoundError(self.kind, entity_id)
        logger.debug("entity_deleted", kind=self.kind, entity_id=entity_id)
        return record


class EntityStore:
    """Holds the current state of the fleet.

    One instance per hosting service; tests build a fresh store each.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock
        self.vehicles: Collection[Vehicle] = Collection("vehicle", clock)
        self.drivers: Collection[Driver] = Collection("driver", clock)
        self.deliveries: Collection[Delivery] = Collection("delivery", clock)
        self._locks: dict[str, asyncio.Lock] = {}

    @staticmethod
    def key(kind: str, entity_id: str) -> str:
        """Lock key for an entity."""
        return f"{kind}:{entity_id}"

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def locked(self, *keys: str | None) -> AsyncIterator[None]:
        """Hold the per-entity locks for ``keys`` for the duration of the block.

        Locks are taken in sorted order so overlapping key sets cannot deadlock.
        """
        ordered = sorted({key for key in keys if key})
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self._lock(key))
            yield

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Pull-based view of every collection for dashboards."""
        return {
            "vehicles": [v.model_dump(mode="json") for v in self.vehicles.list()],
            "drivers": [d.model_dump(mode="json") for d in self.drivers.list()],
            "deliveries": [d.model_dump(mode="json") for d in self.deliveries.list()],
        }
