"""Kind registry: which reconciler handles which kind.

Built once at startup. The manager uses it to route queued identities and to
decide which store events belong to reconciled kinds.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from .binding import BindingReconciler
from .client import ClientFactory
from .config import Config
from .models import KubeObject
from .organization import OrganizationReconciler
from .reconciler import BaseReconciler
from .resource import ResourceReconciler
from .store import ObjectStore
from .tunnel import TunnelReconciler


@dataclass(frozen=True)
class KindRegistration:
    """A reconciled kind: its model and the reconciler that owns it."""

    kind: str
    model: type[KubeObject]
    reconciler: BaseReconciler


class KindRegistry:
    """Mapping of kind name to registration."""

    def __init__(self) -> None:
        self._registrations: dict[str, KindRegistration] = {}

    def register(self, reconciler: BaseReconciler) -> KindRegistration:
        """Register a reconciler under the kind of its model.

        Raises:
            ValueError: If the kind is already registered.
        """
        kind = reconciler.kind
        if kind in self._registrations:
            raise ValueError(f"Kind '{kind}' is already registered")
        registration = KindRegistration(kind=kind, model=reconciler.model, reconciler=reconciler)
        self._registrations[kind] = registration
        return registration

    def get(self, kind: str) -> KindRegistration | None:
        return self._registrations.get(kind)

    def __contains__(self, kind: object) -> bool:
        return kind in self._registrations

    def __iter__(self) -> Iterator[KindRegistration]:
        return iter(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def kinds(self) -> list[str]:
        return list(self._registrations)


def build_registry(
    store: ObjectStore, config: Config, client_factory: ClientFactory
) -> KindRegistry:
    """Register the four reconcilers, leaf to root."""
    registry = KindRegistry()
    for reconciler_class in (
        OrganizationReconciler,
        TunnelReconciler,
        ResourceReconciler,
        BindingReconciler,
    ):
        registry.register(reconciler_class(store, client_factory, config))
    return registry
