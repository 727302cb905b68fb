"""PangolinBinding reconciler.

A binding exposes an in-cluster Service by generating one PangolinResource
named ``<binding>-binding`` and owning it. The generated resource carries the
tunnel reference, the http or proxy settings of the binding, and a target
pointing at the Service cluster IP.
"""

from __future__ import annotations

import logging

from .conditions import is_ready
from .models import (
    Endpoints,
    LocalObjectReference,
    ObjectMeta,
    PangolinBinding,
    PangolinOrganization,
    PangolinResource,
    PangolinTunnel,
    ResourceSpec,
    Service,
    TargetConfig,
)
from .reconciler import BaseReconciler, DependencyNotReadyError, ReconcileError
from .resource import default_target_method
from .store import AlreadyExistsError, NotFoundError, ObjectKey, StoreError

logger = logging.getLogger(__name__)

BINDING_FINALIZER = "binding.pangolin.io/finalizer"


def generated_resource_name(binding: PangolinBinding) -> str:
    return f"{binding.name}-binding"


class BindingReconciler(BaseReconciler[PangolinBinding]):
    """Reconciles PangolinBinding objects into a generated PangolinResource."""

    model = PangolinBinding
    finalizer = BINDING_FINALIZER

    async def converge(self, binding: PangolinBinding) -> str:
        spec = binding.spec

        service = await self.get_dependency(
            Service, spec.service_ref.namespace, spec.service_ref.name, "service"
        )
        await self.get_ready_dependency(
            PangolinOrganization, binding.namespace, spec.organization_ref.name, "organization"
        )
        if spec.tunnel_ref is None:
            raise ReconcileError(
                "tunnelRef is required - automatic tunnel creation is not supported"
            )
        await self.get_ready_dependency(
            PangolinTunnel, binding.namespace, spec.tunnel_ref.name, "tunnel"
        )

        child = await self._ensure_resource(binding, service, spec.tunnel_ref.name)
        binding.status.generated_resource_name = child.name

        if not is_ready(child):
            raise DependencyNotReadyError(f"Waiting for resource {child.name} to be ready")

        if spec.auto_update_targets:
            await self._record_service_endpoints(binding)

        binding.status.url = child.status.url
        binding.status.proxy_endpoint = child.status.proxy_endpoint
        return "Binding is ready"

    def dependencies(self, binding: PangolinBinding) -> list[ObjectKey]:
        spec = binding.spec
        keys = [
            ObjectKey(PangolinOrganization.kind, binding.namespace, spec.organization_ref.name),
            ObjectKey(Service.kind, spec.service_ref.namespace, spec.service_ref.name),
            ObjectKey(PangolinResource.kind, binding.namespace, generated_resource_name(binding)),
        ]
        if spec.tunnel_ref is not None:
            keys.append(ObjectKey(PangolinTunnel.kind, binding.namespace, spec.tunnel_ref.name))
        if spec.auto_update_targets:
            keys.append(
                ObjectKey(Endpoints.kind, spec.service_ref.namespace, spec.service_ref.name)
            )
        return keys

    async def _ensure_resource(
        self, binding: PangolinBinding, service: Service, tunnel_name: str
    ) -> PangolinResource:
        name = generated_resource_name(binding)
        try:
            return await self._store.get(PangolinResource, binding.namespace, name)
        except NotFoundError:
            pass

        child = self._build_resource(binding, service, tunnel_name)
        try:
            created = await self._store.create(child)
        except AlreadyExistsError:
            return await self.get_dependency(PangolinResource, binding.namespace, name, "resource")

        logger.info(
            "Generated resource created",
            extra={"binding": f"{binding.namespace}/{binding.name}", "resource": name},
        )
        return created

    @staticmethod
    def _build_resource(
        binding: PangolinBinding, service: Service, tunnel_name: str
    ) -> PangolinResource:
        spec = binding.spec
        if not service.spec.cluster_ip:
            raise ReconcileError(f"service {service.name} has no cluster IP")

        return PangolinResource(
            metadata=ObjectMeta(
                name=generated_resource_name(binding),
                namespace=binding.namespace,
                owner_references=[binding.owner_reference()],
                labels={"tunnel.pangolin.io/binding": binding.name},
            ),
            spec=ResourceSpec(
                tunnel_ref=LocalObjectReference(name=tunnel_name),
                name=f"{spec.service_ref.name}-{spec.protocol}",
                protocol=spec.protocol,
                http_config=(
                    spec.http_config.model_copy()
                    if spec.http_config
                    else None
                ),
                proxy_config=(
                    spec.proxy_config.model_copy()
                    if spec.proxy_config
                    else None
                ),
                target=TargetConfig(
                    ip=service.spec.cluster_ip,
                    port=spec.service_port,
                    method=default_target_method(spec.protocol),
                ),
            ),
        )

    async def _record_service_endpoints(self, binding: PangolinBinding) -> None:
        ref = binding.spec.service_ref
        try:
            endpoints = await self._store.get(Endpoints, ref.namespace, ref.name)
        except StoreError as e:
            logger.info(
                "Failed to read service endpoints",
                extra={"service": f"{ref.namespace}/{ref.name}", "error": str(e)},
            )
            return

        binding.status.service_endpoints = [
            address.ip for subset in endpoints.subsets for address in subset.addresses
        ]
