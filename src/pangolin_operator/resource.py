"""PangolinResource reconciler.

A resource exposes a target behind a tunnel, either as an http hostname or as
a raw tcp/udp proxy port. The control-plane resource is resolved in priority
order: an explicit ``spec.resourceId`` (bound, never touched), an id already
recorded in status, and only then a create call. The forwarding target is
created once and its id recorded the same way.
"""

from __future__ import annotations

import logging

import httpx

from .client import (
    PangolinAPIError,
    PangolinClient,
    ResourceCreateRequest,
    TargetCreateRequest,
)
from .credentials import CredentialError
from .domains import ResolvedDomain, resolve_resource_domain
from .models import BindingMode, PangolinOrganization, PangolinResource, PangolinTunnel
from .reconciler import BaseReconciler, ReconcileError
from .store import ObjectKey, StoreError

logger = logging.getLogger(__name__)

RESOURCE_FINALIZER = "resource.pangolin.io/finalizer"


def default_target_method(protocol: str) -> str:
    """Target method used when spec.target.method is unset."""
    return "http" if protocol == "http" else protocol


def proxy_endpoint(protocol: str, api_endpoint: str, proxy_port: int) -> str:
    """Public address of a raw proxy resource, e.g. ``tcp://pangolin.example.com:2222``."""
    host = httpx.URL(api_endpoint).host
    return f"{protocol}://{host}:{proxy_port}"


class ResourceReconciler(BaseReconciler[PangolinResource]):
    """Reconciles PangolinResource objects. Depends on PangolinTunnel."""

    model = PangolinResource
    finalizer = RESOURCE_FINALIZER

    async def converge(self, resource: PangolinResource) -> str:
        tunnel = await self.get_ready_dependency(
            PangolinTunnel, resource.namespace, resource.spec.tunnel_ref.name, "tunnel"
        )
        site_id = tunnel.status.site_id
        if site_id is None:
            raise ReconcileError("Tunnel missing site ID")

        org = await self.get_ready_dependency(
            PangolinOrganization,
            resource.namespace,
            tunnel.spec.organization_ref.name,
            "organization",
        )
        org_id = org.status.organization_id
        if not org_id:
            raise ReconcileError("Organization missing organization ID")

        client = await self.client_for(org)
        async with client:
            await self._reconcile_resource(client, resource, org, org_id, site_id)
            await self._reconcile_target(client, resource)

        self._publish_endpoints(resource, org)
        return "Resource is ready"

    def dependencies(self, resource: PangolinResource) -> list[ObjectKey]:
        return [ObjectKey(PangolinTunnel.kind, resource.namespace, resource.spec.tunnel_ref.name)]

    # -------------------------------------------------------------------------
    # Resource
    # -------------------------------------------------------------------------

    async def _reconcile_resource(
        self,
        client: PangolinClient,
        resource: PangolinResource,
        org: PangolinOrganization,
        org_id: str,
        site_id: int,
    ) -> None:
        spec = resource.spec
        status = resource.status

        if spec.resource_id:
            status.resource_id = spec.resource_id
            status.binding_mode = BindingMode.BOUND
            self._resolve_hostname(resource, org)
            return

        if status.resource_id:
            if not status.full_domain:
                self._resolve_hostname(resource, org)
            return

        resolved = self._resolve_hostname(resource, org)
        request = self._build_create_request(resource, site_id, resolved)
        try:
            created = await client.create_resource(org_id, site_id, request)
        except PangolinAPIError as e:
            raise ReconcileError(f"failed to create resource: {e}") from e

        status.resource_id = created.id
        status.binding_mode = BindingMode.CREATED
        logger.info(
            "Resource created",
            extra={
                "object": f"{resource.namespace}/{resource.name}",
                "resource_id": created.id,
                "protocol": spec.protocol,
            },
        )

    @staticmethod
    def _build_create_request(
        resource: PangolinResource, site_id: int, resolved: ResolvedDomain | None
    ) -> ResourceCreateRequest:
        spec = resource.spec
        if spec.protocol == "http":
            if spec.http_config is None or resolved is None:
                raise ReconcileError("httpConfig is required when protocol is http")
            # The control plane models http resources as tcp with http routing
            return ResourceCreateRequest(
                name=spec.name,
                site_id=site_id,
                http=True,
                protocol="tcp",
                subdomain=spec.http_config.subdomain,
                domain_id=resolved.domain_id,
            )

        if spec.proxy_config is None:
            raise ReconcileError(f"proxyConfig is required when protocol is {spec.protocol}")
        return ResourceCreateRequest(
            name=spec.name,
            site_id=site_id,
            http=False,
            protocol=spec.protocol,
            proxy_port=spec.proxy_config.proxy_port,
            enable_proxy=spec.proxy_config.enable_proxy,
        )

    @staticmethod
    def _resolve_hostname(
        resource: PangolinResource, org: PangolinOrganization
    ) -> ResolvedDomain | None:
        """Resolve and record the public hostname of an http resource."""
        http_config = resource.spec.http_config
        if resource.spec.protocol != "http" or http_config is None:
            return None

        resolved = resolve_resource_domain(
            http_config, org.status.domains, org.status.default_domain_id
        )
        resource.status.full_domain = resolved.full_hostname
        logger.debug(
            "Resolved resource hostname",
            extra={"hostname": resolved.full_hostname, "domain_id": resolved.domain_id},
        )
        return resolved

    # -------------------------------------------------------------------------
    # Target
    # -------------------------------------------------------------------------

    async def _reconcile_target(self, client: PangolinClient, resource: PangolinResource) -> None:
        status = resource.status
        if status.target_id:
            return
        if not status.resource_id:
            raise ReconcileError("resource ID not available")

        target = resource.spec.target
        request = TargetCreateRequest(
            ip=target.ip,
            port=target.port,
            method=target.method or default_target_method(resource.spec.protocol),
            enabled=target.enabled,
        )
        try:
            created = await client.create_target(status.resource_id, request)
        except PangolinAPIError as e:
            raise ReconcileError(f"failed to create target: {e}") from e

        status.target_id = created.id
        logger.info(
            "Target created",
            extra={"resource_id": status.resource_id, "target_id": created.id},
        )

    @staticmethod
    def _publish_endpoints(resource: PangolinResource, org: PangolinOrganization) -> None:
        spec = resource.spec
        status = resource.status
        if spec.protocol == "http":
            status.url = f"https://{status.full_domain}" if status.full_domain else None
            status.proxy_endpoint = None
        elif spec.proxy_config is not None:
            status.proxy_endpoint = proxy_endpoint(
                spec.protocol, org.spec.api_endpoint, spec.proxy_config.proxy_port
            )
            status.url = None

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def cleanup(self, resource: PangolinResource) -> None:
        resource_id = resource.status.resource_id
        if resource.status.binding_mode != BindingMode.CREATED or not resource_id:
            return

        try:
            tunnel = await self._store.get(
                PangolinTunnel, resource.namespace, resource.spec.tunnel_ref.name
            )
            org = await self._store.get(
                PangolinOrganization, resource.namespace, tunnel.spec.organization_ref.name
            )
            client = await self.client_for(org)
            async with client:
                await client.delete_resource(resource_id)
            logger.info("Resource deleted", extra={"resource_id": resource_id})
        except (PangolinAPIError, CredentialError, StoreError) as e:
            logger.warning(
                "Failed to delete resource, continuing with finalizer removal",
                extra={"resource_id": resource_id, "error": str(e)},
            )
