"""Per-kind reconciliation protocol shared by every reconciler.

Each delivery of an object identity runs one cycle of this state machine:

1. Fetch the object. Not found means it is already gone: nothing to do.
2. Deleting: run kind-specific cleanup once, remove the finalizer, persist.
3. Finalizer missing: add it, persist, stop. The write triggers the next cycle.
4. Dependency gate: an unreadable reference is an Error, a referenced object
   whose Ready condition is not True means Waiting.
5. Converge against the control plane (kind-specific).
6. Publish status and the Ready condition.

Every step that persists ends the cycle. Error and Waiting ask to be
re-checked after a fixed interval; Ready relies on future change events.
Exceptions never escape a cycle: they are mapped to the Error outcome.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, TypeVar

from .client import ClientFactory, PangolinAPIError, PangolinClient
from .conditions import ReconcileOutcome, is_ready, set_ready
from .config import Config
from .credentials import CredentialError, open_client
from .domains import DomainResolutionError
from .models import KubeObject, PangolinOrganization
from .store import ConflictError, NotFoundError, ObjectKey, ObjectStore, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=KubeObject)
D = TypeVar("D", bound=KubeObject)


class ReconcileError(Exception):
    """A convergence step failed; reported as the Error outcome."""

    pass


class DependencyNotReadyError(Exception):
    """A referenced object is not Ready yet; reported as the Waiting outcome."""

    pass


# Failures that map to the Error outcome
CONVERGE_ERRORS: tuple[type[Exception], ...] = (
    ReconcileError,
    PangolinAPIError,
    CredentialError,
    DomainResolutionError,
    StoreError,
)


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    key: ObjectKey
    outcome: ReconcileOutcome | None = None
    message: str = ""
    requeue_after: float | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if the cycle finished without a store or converge error."""
        return self.error is None


class BaseReconciler(ABC, Generic[T]):
    """Runs the shared protocol; subclasses provide converge and cleanup."""

    model: ClassVar[type[KubeObject]]
    finalizer: ClassVar[str]

    def __init__(self, store: ObjectStore, client_factory: ClientFactory, config: Config) -> None:
        self._store = store
        self._client_factory = client_factory
        self._config = config

    @property
    def kind(self) -> str:
        return self.model.kind

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconciliation cycle for an object identity."""
        key = ObjectKey(self.kind, namespace, name)
        result = ReconcileResult(key=key)

        try:
            obj: T = await self._store.get(self.model, namespace, name)  # type: ignore[assignment]
        except NotFoundError:
            logger.info(
                "Object not found, ignoring since it must have been deleted",
                extra={"object": str(key)},
            )
            return self._finish(result)
        except StoreError as e:
            logger.error("Failed to get object", extra={"object": str(key), "error": str(e)})
            result.error = e
            result.requeue_after = self._config.requeue_after
            return self._finish(result)

        if obj.is_deleting:
            return await self._handle_deletion(obj, result)

        if not obj.has_finalizer(self.finalizer):
            obj.add_finalizer(self.finalizer)
            try:
                await self._store.update(obj)
            except StoreError as e:
                logger.warning(
                    "Failed to add finalizer", extra={"object": str(key), "error": str(e)}
                )
                result.error = e
                result.requeue_after = self._config.requeue_after
            return self._finish(result)

        try:
            message = await self.converge(obj)
            outcome = ReconcileOutcome.READY
        except DependencyNotReadyError as e:
            logger.info("Dependency not ready, waiting", extra={"object": str(key), "reason": str(e)})
            outcome, message = ReconcileOutcome.WAITING, str(e)
        except CONVERGE_ERRORS as e:
            logger.error("Failed to reconcile", extra={"object": str(key), "error": str(e)})
            outcome, message = ReconcileOutcome.ERROR, str(e)
            result.error = e

        return await self._publish(obj, outcome, message, result)

    @abstractmethod
    async def converge(self, obj: T) -> str:
        """Drive the control plane towards the object's spec.

        Mutates ``obj.status`` with whatever was learned, even on failure, so
        identifiers of entities already created are persisted.

        Returns:
            The Ready condition message.

        Raises:
            DependencyNotReadyError: To report Waiting.
            ReconcileError: Or any of CONVERGE_ERRORS, to report Error.
        """

    async def cleanup(self, obj: T) -> None:
        """Release control-plane state before the finalizer is removed.

        Best effort: implementations log failures instead of raising.
        """
        return None

    def dependencies(self, obj: T) -> list[ObjectKey]:
        """Objects whose changes should trigger a reconcile of ``obj``."""
        return []

    # -------------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------------

    async def get_dependency(self, model: type[D], namespace: str, name: str, what: str) -> D:
        """Fetch a referenced object.

        Raises:
            ReconcileError: If it cannot be fetched.
        """
        try:
            return await self._store.get(model, namespace, name)
        except StoreError as e:
            raise ReconcileError(f"failed to get {what} {name}: {e}") from e

    async def get_ready_dependency(
        self, model: type[D], namespace: str, name: str, what: str
    ) -> D:
        """Fetch a referenced object and require its Ready condition.

        Raises:
            ReconcileError: If it cannot be fetched.
            DependencyNotReadyError: If it is not Ready.
        """
        dependency = await self.get_dependency(model, namespace, name, what)
        if not is_ready(dependency):
            raise DependencyNotReadyError(f"Waiting for {what} {name} to be ready")
        return dependency

    async def client_for(self, organization: PangolinOrganization) -> PangolinClient:
        return await open_client(self._store, organization, self._client_factory)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _handle_deletion(self, obj: T, result: ReconcileResult) -> ReconcileResult:
        key = result.key
        if not obj.has_finalizer(self.finalizer):
            return self._finish(result)

        logger.info("Running cleanup before deletion", extra={"object": str(key)})
        await self.cleanup(obj)

        obj.remove_finalizer(self.finalizer)
        try:
            await self._store.update(obj)
        except NotFoundError:
            pass
        except StoreError as e:
            logger.warning("Failed to remove finalizer", extra={"object": str(key), "error": str(e)})
            result.error = e
            result.requeue_after = self._config.requeue_after
        return self._finish(result)

    async def _publish(
        self,
        obj: T,
        outcome: ReconcileOutcome,
        message: str,
        result: ReconcileResult,
    ) -> ReconcileResult:
        set_ready(obj, outcome, message)
        computed_status: Any = obj.status.model_copy(deep=True)  # type: ignore[attr-defined]

        result.outcome = outcome
        result.message = message
        if outcome != ReconcileOutcome.READY:
            result.requeue_after = self._config.requeue_after

        attempts = self._config.status_update_retries
        for attempt in range(1, attempts + 1):
            try:
                await self._store.update_status(obj)
                break
            except NotFoundError:
                logger.info("Object deleted before status update", extra={"object": str(result.key)})
                break
            except ConflictError as e:
                if attempt == attempts:
                    logger.error(
                        "Failed to update status",
                        extra={"object": str(result.key), "attempts": attempts, "error": str(e)},
                    )
                    result.error = e
                    result.requeue_after = self._config.requeue_after
                    break
                # Keep the computed status, including any new external ids
                try:
                    latest = await self._store.get(self.model, obj.namespace, obj.name)
                except NotFoundError:
                    break
                except StoreError as get_error:
                    result.error = get_error
                    result.requeue_after = self._config.requeue_after
                    break
                latest.status = computed_status.model_copy(deep=True)  # type: ignore[attr-defined]
                obj = latest  # type: ignore[assignment]
            except StoreError as e:
                logger.error(
                    "Failed to update status", extra={"object": str(result.key), "error": str(e)}
                )
                result.error = e
                result.requeue_after = self._config.requeue_after
                break

        return self._finish(result)

    def _finish(self, result: ReconcileResult) -> ReconcileResult:
        result.end_time = datetime.now(UTC)
        return result
