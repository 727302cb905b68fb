"""Tests for the shared reconciliation protocol."""

from typing import ClassVar

import pytest
from pangolin_mock import objects

from pangolin_operator.client import ClientFactory
from pangolin_operator.conditions import ReconcileOutcome, get_condition
from pangolin_operator.config import Config
from pangolin_operator.models import PangolinTunnel
from pangolin_operator.reconciler import (
    BaseReconciler,
    DependencyNotReadyError,
    ReconcileError,
)
from pangolin_operator.store import ConflictError, InMemoryStore

FINALIZER = "test.pangolin.io/finalizer"


def _unused_factory(endpoint: str, api_key: str):  # type: ignore[no-untyped-def]
    raise AssertionError("client factory should not be called")


class RecordingReconciler(BaseReconciler[PangolinTunnel]):
    """Reconciler whose converge behaviour is scripted by the test."""

    model = PangolinTunnel
    finalizer: ClassVar[str] = FINALIZER

    def __init__(self, store: InMemoryStore, config: Config, factory: ClientFactory = _unused_factory) -> None:
        super().__init__(store, factory, config)
        self.converge_calls = 0
        self.cleanup_calls = 0
        self.raise_error: Exception | None = None
        self.on_converge = None

    async def converge(self, obj: PangolinTunnel) -> str:
        self.converge_calls += 1
        obj.status.site_id = 42
        if self.on_converge is not None:
            await self.on_converge(obj)
        if self.raise_error is not None:
            raise self.raise_error
        return "Tunnel is ready"

    async def cleanup(self, obj: PangolinTunnel) -> None:
        self.cleanup_calls += 1


@pytest.fixture
def reconciler(store: InMemoryStore, config: Config) -> RecordingReconciler:
    return RecordingReconciler(store, config)


class TestProtocol:
    """Tests for the fetch/finalizer/converge/publish sequence."""

    @pytest.mark.asyncio
    async def test_not_found_is_noop(self, reconciler: RecordingReconciler) -> None:
        result = await reconciler.reconcile("default", "missing")

        assert result.outcome is None
        assert result.requeue_after is None
        assert result.success
        assert reconciler.converge_calls == 0

    @pytest.mark.asyncio
    async def test_first_cycle_only_adds_finalizer(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        """Test that a missing finalizer is added and the cycle ends."""
        await store.create(objects.tunnel())

        result = await reconciler.reconcile("default", "tunnel")

        stored = await store.get(PangolinTunnel, "default", "tunnel")
        assert stored.has_finalizer(FINALIZER)
        assert reconciler.converge_calls == 0
        assert result.outcome is None
        assert stored.status.conditions == []

    @pytest.mark.asyncio
    async def test_ready_publishes_status(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        await store.create(objects.tunnel())

        result = await objects.run_cycles(reconciler, "tunnel")

        stored = await store.get(PangolinTunnel, "default", "tunnel")
        condition = get_condition(stored.status, "Ready")
        assert result.outcome == ReconcileOutcome.READY
        assert result.requeue_after is None
        assert stored.status.status == "Ready"
        assert stored.status.site_id == 42
        assert condition is not None
        assert condition.reason == "ReconcileSuccess"
        assert condition.message == "Tunnel is ready"

    @pytest.mark.asyncio
    async def test_waiting_requeues(
        self, store: InMemoryStore, reconciler: RecordingReconciler, config: Config
    ) -> None:
        await store.create(objects.tunnel())
        reconciler.raise_error = DependencyNotReadyError("Waiting for organization org to be ready")

        result = await objects.run_cycles(reconciler, "tunnel")

        stored = await store.get(PangolinTunnel, "default", "tunnel")
        assert result.outcome == ReconcileOutcome.WAITING
        assert result.requeue_after == config.requeue_after
        assert result.success
        assert stored.status.status == "Waiting"
        assert stored.status.conditions[0].reason == "DependencyNotReady"

    @pytest.mark.asyncio
    async def test_error_keeps_partial_status(
        self, store: InMemoryStore, reconciler: RecordingReconciler, config: Config
    ) -> None:
        """Test that ids learned before a failure are still persisted."""
        await store.create(objects.tunnel())
        reconciler.raise_error = ReconcileError("failed to create target")

        result = await objects.run_cycles(reconciler, "tunnel")

        stored = await store.get(PangolinTunnel, "default", "tunnel")
        assert result.outcome == ReconcileOutcome.ERROR
        assert result.requeue_after == config.requeue_after
        assert not result.success
        assert stored.status.site_id == 42
        assert stored.status.conditions[0].message == "failed to create target"

    @pytest.mark.asyncio
    async def test_repeated_ready_keeps_transition_time(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        await store.create(objects.tunnel())
        await objects.run_cycles(reconciler, "tunnel")
        first = await store.get(PangolinTunnel, "default", "tunnel")

        await reconciler.reconcile("default", "tunnel")

        second = await store.get(PangolinTunnel, "default", "tunnel")
        assert (
            second.status.conditions[0].last_transition_time
            == first.status.conditions[0].last_transition_time
        )
        # Identical status is not rewritten
        assert second.metadata.resource_version == first.metadata.resource_version

    @pytest.mark.asyncio
    async def test_conflict_retried_with_computed_status(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        """Test that a concurrent write does not lose the computed status."""
        await store.create(objects.tunnel())
        await reconciler.reconcile("default", "tunnel")

        async def touch(obj: PangolinTunnel) -> None:
            other = await store.get(PangolinTunnel, "default", "tunnel")
            other.metadata.labels["touched"] = "yes"
            await store.update(other)

        reconciler.on_converge = touch

        result = await reconciler.reconcile("default", "tunnel")

        stored = await store.get(PangolinTunnel, "default", "tunnel")
        assert result.outcome == ReconcileOutcome.READY
        assert result.success
        assert stored.status.site_id == 42
        assert stored.metadata.labels == {"touched": "yes"}

    @pytest.mark.asyncio
    async def test_conflict_retries_exhausted(
        self, store: InMemoryStore, config: Config, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        reconciler = RecordingReconciler(store, config)
        await store.create(objects.tunnel())
        await reconciler.reconcile("default", "tunnel")

        async def always_conflict(obj: PangolinTunnel) -> PangolinTunnel:
            raise ConflictError("stale")

        monkeypatch.setattr(store, "update_status", always_conflict)

        result = await reconciler.reconcile("default", "tunnel")

        assert isinstance(result.error, ConflictError)
        assert result.requeue_after == config.requeue_after


class TestDeletion:
    """Tests for finalizer-gated cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_runs_once_then_finalizer_removed(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        await store.create(objects.tunnel())
        await objects.run_cycles(reconciler, "tunnel")
        await store.delete(PangolinTunnel, "default", "tunnel")

        await reconciler.reconcile("default", "tunnel")
        await reconciler.reconcile("default", "tunnel")

        assert reconciler.cleanup_calls == 1
        assert await store.list(PangolinTunnel) == []

    @pytest.mark.asyncio
    async def test_marked_without_our_finalizer_untouched(
        self, store: InMemoryStore, reconciler: RecordingReconciler
    ) -> None:
        """Test that an object held only by someone else's finalizer is left alone."""
        tunnel = objects.tunnel()
        tunnel.add_finalizer("other.io/finalizer")
        await store.create(tunnel)
        await store.delete(PangolinTunnel, "default", "tunnel")
        before = await store.get(PangolinTunnel, "default", "tunnel")

        result = await reconciler.reconcile("default", "tunnel")

        after = await store.get(PangolinTunnel, "default", "tunnel")
        assert reconciler.cleanup_calls == 0
        assert reconciler.converge_calls == 0
        assert result.outcome is None
        assert after.metadata.resource_version == before.metadata.resource_version
