"""Declarative object store contract and an in-memory implementation.

The reconcilers only talk to the ObjectStore interface:

- get/list/create/update/delete by (kind, namespace, name)
- optimistic concurrency: a write carrying a stale resourceVersion is
  rejected with ConflictError
- a status-only write path (update_status) that never touches spec or metadata
- deletion of an object holding finalizers only sets deletionTimestamp; the
  object disappears once its last finalizer is removed, and objects that list
  it in ownerReferences are deleted with it
- change events are published to subscribers after every effective write

InMemoryStore backs the tests and the local ``run`` command. Writes that do
not change anything are dropped without bumping resourceVersion or emitting an
event, so a reconciler that republishes an identical status does not trigger
itself again.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .models import KubeObject

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)

# Top-level fields that are not part of the desired state
_NON_SPEC_FIELDS = {"metadata", "status"}


class StoreError(Exception):
    """Base class for object store failures."""

    pass


class NotFoundError(StoreError):
    """Raised when the requested object does not exist."""

    pass


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose identity is taken."""

    pass


class ConflictError(StoreError):
    """Raised when a write carries a stale resourceVersion."""

    pass


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identity of a stored object."""

    kind: str
    namespace: str
    name: str

    @classmethod
    def of(cls, obj: KubeObject) -> ObjectKey:
        return cls(kind=obj.kind, namespace=obj.namespace, name=obj.name)

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    """A change delivered to store subscribers."""

    type: EventType
    key: ObjectKey
    obj: KubeObject


WatchCallback = Callable[[WatchEvent], None]


class ObjectStore(ABC):
    """Persisted object store consumed by the reconcilers."""

    @abstractmethod
    async def get(self, model: type[T], namespace: str, name: str) -> T:
        """Fetch an object.

        Raises:
            NotFoundError: If it does not exist.
        """

    @abstractmethod
    async def list(self, model: type[T], namespace: str | None = None) -> list[T]:
        """List objects of a kind, optionally limited to one namespace."""

    @abstractmethod
    async def create(self, obj: T) -> T:
        """Create an object.

        Raises:
            AlreadyExistsError: If the identity is taken.
        """

    @abstractmethod
    async def update(self, obj: T) -> T:
        """Write metadata and spec; the stored status is kept.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If obj carries a stale resourceVersion.
        """

    @abstractmethod
    async def update_status(self, obj: T) -> T:
        """Write the status block only.

        Raises:
            NotFoundError: If the object is gone.
            ConflictError: If obj carries a stale resourceVersion.
        """

    @abstractmethod
    async def delete(self, model: type[KubeObject], namespace: str, name: str) -> None:
        """Request deletion.

        Raises:
            NotFoundError: If the object does not exist.
        """

    @abstractmethod
    def subscribe(self, callback: WatchCallback) -> None:
        """Register a callback for change events."""


class InMemoryStore(ObjectStore):
    """Dictionary-backed ObjectStore.

    Objects are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self._objects: dict[ObjectKey, KubeObject] = {}
        self._resource_version = 0
        self._subscribers: list[WatchCallback] = []

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, model: type[T], namespace: str, name: str) -> T:
        key = ObjectKey(model.kind, namespace, name)
        stored = self._objects.get(key)
        if stored is None:
            raise NotFoundError(f"{model.kind} {namespace}/{name} not found")
        return stored.model_copy(deep=True)  # type: ignore[return-value]

    async def list(self, model: type[T], namespace: str | None = None) -> list[T]:
        return [
            obj.model_copy(deep=True)  # type: ignore[misc]
            for key, obj in sorted(self._objects.items())
            if key.kind == model.kind and (namespace is None or key.namespace == namespace)
        ]

    def __len__(self) -> int:
        return len(self._objects)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create(self, obj: T) -> T:
        key = ObjectKey.of(obj)
        if key in self._objects:
            raise AlreadyExistsError(f"{key} already exists")

        stored = obj.model_copy(deep=True)
        stored.metadata.resource_version = self._next_version()
        stored.metadata.generation = 1
        stored.metadata.deletion_timestamp = None
        self._objects[key] = stored

        logger.debug("Object created", extra={"object": str(key)})
        self._emit(EventType.ADDED, key, stored)
        return stored.model_copy(deep=True)

    async def update(self, obj: T) -> T:
        key = ObjectKey.of(obj)
        current = self._check_write(key, obj)

        updated = obj.model_copy(deep=True)
        # Store-managed metadata is never taken from the caller
        updated.metadata.uid = current.metadata.uid
        updated.metadata.deletion_timestamp = current.metadata.deletion_timestamp
        updated.metadata.generation = current.metadata.generation
        if hasattr(current, "status"):
            updated.status = current.status.model_copy(deep=True)  # type: ignore[attr-defined]

        if _spec_of(updated) != _spec_of(current):
            updated.metadata.generation += 1

        if updated.is_deleting and not updated.metadata.finalizers:
            self._remove(key)
            return updated

        return self._commit(key, current, updated)

    async def update_status(self, obj: T) -> T:
        key = ObjectKey.of(obj)
        current = self._check_write(key, obj)

        updated = current.model_copy(deep=True)
        if hasattr(obj, "status"):
            updated.status = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]
        return self._commit(key, current, updated)

    async def delete(self, model: type[KubeObject], namespace: str, name: str) -> None:
        key = ObjectKey(model.kind, namespace, name)
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(f"{key} not found")

        if not current.metadata.finalizers:
            self._remove(key)
            return

        if current.is_deleting:
            return

        marked = current.model_copy(deep=True)
        marked.metadata.deletion_timestamp = datetime.now(UTC)
        marked.metadata.resource_version = self._next_version()
        self._objects[key] = marked
        logger.debug("Object marked for deletion", extra={"object": str(key)})
        self._emit(EventType.MODIFIED, key, marked)

    def subscribe(self, callback: WatchCallback) -> None:
        self._subscribers.append(callback)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _next_version(self) -> int:
        self._resource_version += 1
        return self._resource_version

    def _check_write(self, key: ObjectKey, obj: KubeObject) -> KubeObject:
        current = self._objects.get(key)
        if current is None:
            raise NotFoundError(f"{key} not found")
        if obj.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(
                f"{key} has been modified: resourceVersion "
                f"{obj.metadata.resource_version} != {current.metadata.resource_version}"
            )
        return current

    def _commit(self, key: ObjectKey, current: KubeObject, updated: KubeObject) -> KubeObject:
        updated.metadata.resource_version = current.metadata.resource_version
        if updated.model_dump() == current.model_dump():
            return updated.model_copy(deep=True)

        updated.metadata.resource_version = self._next_version()
        self._objects[key] = updated
        self._emit(EventType.MODIFIED, key, updated)
        return updated.model_copy(deep=True)

    def _remove(self, key: ObjectKey) -> None:
        removed = self._objects.pop(key, None)
        if removed is None:
            return
        logger.debug("Object removed", extra={"object": str(key)})
        self._emit(EventType.DELETED, key, removed)

        # Cascade to owned objects
        owned = [
            child_key
            for child_key, child in self._objects.items()
            if child_key.namespace == key.namespace and child.is_owned_by(removed)
        ]
        for child_key in owned:
            child = self._objects[child_key]
            if child.metadata.finalizers:
                if not child.is_deleting:
                    marked = child.model_copy(deep=True)
                    marked.metadata.deletion_timestamp = datetime.now(UTC)
                    marked.metadata.resource_version = self._next_version()
                    self._objects[child_key] = marked
                    self._emit(EventType.MODIFIED, child_key, marked)
            else:
                self._remove(child_key)

    def _emit(self, event_type: EventType, key: ObjectKey, obj: KubeObject) -> None:
        event = WatchEvent(type=event_type, key=key, obj=obj.model_copy(deep=True))
        for callback in self._subscribers:
            callback(event)


def _spec_of(obj: KubeObject) -> dict[str, Any]:
    return {
        name: value
        for name, value in obj.model_dump().items()
        if name not in _NON_SPEC_FIELDS
    }
