"""Manager: wires store change events to the work queue and the queue to the reconcilers.

The manager:
1. Enqueues every existing object of a reconciled kind on start
2. Enqueues an object on each of its own change events
3. Enqueues dependents when an object they reference changes, using an index
   built from each reconciler's ``dependencies()``
4. Enqueues owners when an owned object changes
5. Runs a fixed pool of workers; each identity is handled by one worker at a time
6. Requeues Error and Waiting outcomes after the configured interval
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from .config import Config
from .reconciler import ReconcileResult
from .registry import KindRegistry
from .store import EventType, ObjectKey, ObjectStore, WatchEvent
from .workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Manager:
    """Runs the reconcilers against an object store until shutdown."""

    def __init__(self, store: ObjectStore, registry: KindRegistry, config: Config) -> None:
        self._store = store
        self._registry = registry
        self._config = config
        self._queue: WorkQueue[ObjectKey] = WorkQueue()
        self._shutdown_event = asyncio.Event()
        self._subscribed = False

        # upstream identity -> identities that depend on it
        self._dependents: dict[ObjectKey, set[ObjectKey]] = defaultdict(set)
        # identity -> upstream identities it currently depends on
        self._dependencies: dict[ObjectKey, list[ObjectKey]] = {}

    @property
    def queue(self) -> WorkQueue[ObjectKey]:
        return self._queue

    def dependents_of(self, key: ObjectKey) -> set[ObjectKey]:
        return set(self._dependents.get(key, ()))

    async def start(self) -> None:
        """Subscribe to the store and enqueue every existing reconciled object."""
        if not self._subscribed:
            self._store.subscribe(self._on_event)
            self._subscribed = True

        namespace = self._config.watch_namespace or None
        for registration in self._registry:
            for obj in await self._store.list(registration.model, namespace):
                key = ObjectKey.of(obj)
                self._index(key, obj)
                self._queue.add(key)

        logger.info(
            "Manager started",
            extra={
                "kinds": self._registry.kinds,
                "queued": len(self._queue),
                "namespace": self._config.watch_namespace or "*",
            },
        )

    async def run(self) -> None:
        """Run workers until shutdown() is called."""
        await self.start()

        workers = [
            asyncio.create_task(self._worker(i), name=f"reconcile-worker-{i}")
            for i in range(self._config.max_concurrent_reconciles)
        ]

        await self._shutdown_event.wait()
        self._queue.shutdown()
        await asyncio.gather(*workers)
        logger.info("Manager stopped")

    def shutdown(self) -> None:
        """Signal the manager to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def reconcile_key(self, key: ObjectKey) -> ReconcileResult | None:
        """Run one cycle for an identity and schedule its requeue, if any."""
        registration = self._registry.get(key.kind)
        if registration is None:
            return None

        try:
            result = await registration.reconciler.reconcile(key.namespace, key.name)
        except Exception as e:
            logger.exception(
                "Unhandled exception during reconcile", extra={"object": str(key), "error": str(e)}
            )
            self._queue.add_after(key, self._config.requeue_after)
            return None

        self._log_result(result)
        if result.requeue_after is not None:
            self._queue.add_after(key, result.requeue_after)
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        while True:
            key = await self._queue.get()
            if key is None:
                logger.debug("Worker exiting", extra={"worker": worker_id})
                return
            try:
                await self.reconcile_key(key)
            except Exception as e:
                # The worker must outlive any single identity
                logger.exception(
                    "Worker cycle failed",
                    extra={"worker": worker_id, "object": str(key), "error": str(e)},
                )
                self._queue.add_after(key, self._config.requeue_after)
            finally:
                self._queue.done(key)

    def _watches(self, namespace: str) -> bool:
        return not self._config.watch_namespace or namespace == self._config.watch_namespace

    def _on_event(self, event: WatchEvent) -> None:
        key = event.key
        if not self._watches(key.namespace):
            return

        if key.kind in self._registry:
            if event.type == EventType.DELETED:
                self._unindex(key)
            else:
                self._index(key, event.obj)
            self._queue.add(key)

        for dependent in self._dependents.get(key, ()):
            self._queue.add(dependent)

        for ref in event.obj.metadata.owner_references:
            if ref.kind in self._registry:
                self._queue.add(ObjectKey(ref.kind, key.namespace, ref.name))

    def _index(self, key: ObjectKey, obj: Any) -> None:
        registration = self._registry.get(key.kind)
        if registration is None:
            return
        self._unindex(key)
        upstream = registration.reconciler.dependencies(obj)
        self._dependencies[key] = upstream
        for dependency in upstream:
            self._dependents[dependency].add(key)

    def _unindex(self, key: ObjectKey) -> None:
        for dependency in self._dependencies.pop(key, []):
            dependents = self._dependents.get(dependency)
            if dependents is None:
                continue
            dependents.discard(key)
            if not dependents:
                del self._dependents[dependency]

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "object": str(result.key),
            "duration_seconds": result.duration_seconds,
        }
        if result.outcome is not None:
            extra["outcome"] = result.outcome.value
            extra["detail"] = result.message
        if result.requeue_after is not None:
            extra["requeue_after"] = result.requeue_after

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        elif result.outcome is not None and result.requeue_after is not None:
            logger.info("Reconciliation: waiting for dependencies", extra=extra)
        else:
            logger.debug("Reconciliation result", extra=extra)
