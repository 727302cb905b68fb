"""PangolinTunnel reconciler.

A tunnel maps to a control-plane site. Binding mode follows the tunnel fields:
setting ``siteId`` or ``niceId`` binds to an existing site, otherwise a site
is created once and its id remembered in status. For ``newt`` sites the
operator can also run the connector: a Secret with the site credentials and
a Deployment consuming it, both owned by the tunnel.
"""

from __future__ import annotations

import logging

from .client import PangolinAPIError, PangolinClient, SiteInfo
from .credentials import CredentialError
from .models import (
    CONNECTOR_SITE_TYPES,
    BindingMode,
    Deployment,
    DeploymentSpec,
    NewtClientSpec,
    ObjectMeta,
    PangolinOrganization,
    PangolinTunnel,
    Secret,
)
from .reconciler import BaseReconciler, ReconcileError
from .store import AlreadyExistsError, NotFoundError, ObjectKey, StoreError

logger = logging.getLogger(__name__)

TUNNEL_FINALIZER = "tunnel.pangolin.io/finalizer"

DEFAULT_NEWT_IMAGE = "fosrl/newt:latest"

# Keys of the connector credentials Secret
NEWT_ID_KEY = "NEWT_ID"
NEWT_SECRET_KEY = "NEWT_SECRET"
PANGOLIN_ENDPOINT_KEY = "PANGOLIN_ENDPOINT"


def newt_resource_name(tunnel: PangolinTunnel) -> str:
    """Name shared by the connector Secret and Deployment."""
    return f"{tunnel.name}-newt"


class TunnelReconciler(BaseReconciler[PangolinTunnel]):
    """Reconciles PangolinTunnel objects. Depends on PangolinOrganization."""

    model = PangolinTunnel
    finalizer = TUNNEL_FINALIZER

    async def converge(self, tunnel: PangolinTunnel) -> str:
        org = await self.get_ready_dependency(
            PangolinOrganization,
            tunnel.namespace,
            tunnel.spec.organization_ref.name,
            "organization",
        )
        org_id = org.status.organization_id
        if not org_id:
            raise ReconcileError("Organization missing organization ID")

        client = await self.client_for(org)
        async with client:
            site = await self._reconcile_site(client, org_id, tunnel)

        await self._reconcile_connector(tunnel, site, org)
        return "Tunnel is ready"

    def dependencies(self, tunnel: PangolinTunnel) -> list[ObjectKey]:
        keys = [
            ObjectKey(PangolinOrganization.kind, tunnel.namespace, tunnel.spec.organization_ref.name)
        ]
        if tunnel.spec.newt_client and tunnel.spec.newt_client.enabled:
            keys.append(ObjectKey(Deployment.kind, tunnel.namespace, newt_resource_name(tunnel)))
        return keys

    # -------------------------------------------------------------------------
    # Site
    # -------------------------------------------------------------------------

    async def _reconcile_site(
        self, client: PangolinClient, org_id: str, tunnel: PangolinTunnel
    ) -> SiteInfo:
        spec = tunnel.spec
        status = tunnel.status

        if spec.is_bind_mode:
            if spec.site_id is not None and spec.nice_id:
                logger.warning(
                    "Both siteId and niceId set, binding by siteId",
                    extra={
                        "object": f"{tunnel.namespace}/{tunnel.name}",
                        "site_id": spec.site_id,
                        "nice_id": spec.nice_id,
                    },
                )
            try:
                if spec.site_id is not None:
                    site = await client.get_site_by_id(spec.site_id)
                else:
                    site = await client.get_site_by_nice_id(org_id, spec.nice_id or "")
            except PangolinAPIError as e:
                raise ReconcileError(f"failed to bind to existing site: {e}") from e

            self._copy_site(tunnel, site)
            status.binding_mode = BindingMode.BOUND
            return site

        if status.site_id is None:
            try:
                site = await client.create_site(org_id, spec.site_name or "", spec.site_type or "")
            except PangolinAPIError as e:
                raise ReconcileError(f"failed to create site: {e}") from e

            if site.site_id is None:
                raise ReconcileError("create site response did not include a site id")
            self._copy_site(tunnel, site)
            status.binding_mode = BindingMode.CREATED
            logger.info(
                "Site created",
                extra={
                    "object": f"{tunnel.namespace}/{tunnel.name}",
                    "site_id": site.site_id,
                    "nice_id": site.nice_id,
                },
            )
            return site

        # Already created on an earlier cycle
        return SiteInfo(
            site_id=status.site_id,
            nice_id=status.nice_id,
            name=status.site_name or "",
            type=status.site_type,
            subnet=status.subnet,
            address=status.address,
            online=status.online,
            endpoint=status.endpoint,
        )

    @staticmethod
    def _copy_site(tunnel: PangolinTunnel, site: SiteInfo) -> None:
        status = tunnel.status
        status.site_id = site.site_id
        status.nice_id = site.nice_id
        status.site_name = site.name
        status.site_type = site.type
        status.subnet = site.subnet
        status.address = site.address
        status.online = site.online
        status.endpoint = site.endpoint

    # -------------------------------------------------------------------------
    # Connector
    # -------------------------------------------------------------------------

    async def _reconcile_connector(
        self, tunnel: PangolinTunnel, site: SiteInfo, org: PangolinOrganization
    ) -> None:
        newt = tunnel.spec.newt_client
        if tunnel.status.site_type not in CONNECTOR_SITE_TYPES or newt is None or not newt.enabled:
            return

        secret_name = await self._reconcile_newt_secret(tunnel, site, org)
        deployment = await self._reconcile_newt_deployment(tunnel, newt, secret_name)

        tunnel.status.newt_secret_ref = secret_name
        tunnel.status.ready_replicas = deployment.status.ready_replicas

    async def _reconcile_newt_secret(
        self, tunnel: PangolinTunnel, site: SiteInfo, org: PangolinOrganization
    ) -> str:
        name = newt_resource_name(tunnel)
        try:
            await self._store.get(Secret, tunnel.namespace, name)
            return name
        except NotFoundError:
            pass

        if not (site.newt_id and site.newt_secret):
            raise ReconcileError(
                f"connector secret {name} is missing and site {tunnel.status.site_id} "
                "credentials are only returned when the site is created"
            )

        secret = Secret(
            metadata=ObjectMeta(
                name=name,
                namespace=tunnel.namespace,
                owner_references=[tunnel.owner_reference()],
                labels={"app.kubernetes.io/managed-by": "pangolin-operator"},
            ),
            data={
                NEWT_ID_KEY: site.newt_id,
                NEWT_SECRET_KEY: site.newt_secret,
                PANGOLIN_ENDPOINT_KEY: org.spec.api_endpoint,
            },
        )
        try:
            await self._store.create(secret)
        except AlreadyExistsError:
            pass
        except StoreError as e:
            # The control plane returns the credentials once; they are gone after this cycle
            logger.error(
                "Connector credentials lost, secret could not be stored",
                extra={
                    "secret": f"{tunnel.namespace}/{name}",
                    "site_id": tunnel.status.site_id,
                    "error": str(e),
                },
            )
            raise ReconcileError(
                f"failed to store connector secret {name}: {e}; site "
                f"{tunnel.status.site_id} credentials cannot be retrieved again, "
                "recreate the site to run the connector"
            ) from e
        logger.info("Connector secret created", extra={"secret": f"{tunnel.namespace}/{name}"})
        return name

    async def _reconcile_newt_deployment(
        self, tunnel: PangolinTunnel, newt: NewtClientSpec, secret_name: str
    ) -> Deployment:
        name = newt_resource_name(tunnel)
        desired = DeploymentSpec(
            replicas=newt.replicas,
            image=newt.image or DEFAULT_NEWT_IMAGE,
            env_from_secret=secret_name,
            labels={"app.kubernetes.io/name": "newt", "app.kubernetes.io/instance": tunnel.name},
        )

        try:
            deployment = await self._store.get(Deployment, tunnel.namespace, name)
        except NotFoundError:
            deployment = Deployment(
                metadata=ObjectMeta(
                    name=name,
                    namespace=tunnel.namespace,
                    owner_references=[tunnel.owner_reference()],
                    labels={"app.kubernetes.io/managed-by": "pangolin-operator"},
                ),
                spec=desired,
            )
            logger.info(
                "Creating connector deployment",
                extra={"deployment": f"{tunnel.namespace}/{name}", "image": desired.image},
            )
            return await self._store.create(deployment)

        if deployment.spec != desired:
            deployment.spec = desired
            logger.info(
                "Updating connector deployment",
                extra={"deployment": f"{tunnel.namespace}/{name}", "replicas": desired.replicas},
            )
            deployment = await self._store.update(deployment)
        return deployment

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def cleanup(self, tunnel: PangolinTunnel) -> None:
        """Delete a site this operator created; bound sites are left alone."""
        site_id = tunnel.status.site_id
        if tunnel.status.binding_mode != BindingMode.CREATED or site_id is None:
            return

        try:
            org = await self._store.get(
                PangolinOrganization, tunnel.namespace, tunnel.spec.organization_ref.name
            )
            client = await self.client_for(org)
            async with client:
                await client.delete_site(site_id)
            logger.info("Site deleted", extra={"site_id": site_id})
        except (PangolinAPIError, CredentialError, StoreError) as e:
            logger.warning(
                "Failed to delete site, continuing with finalizer removal",
                extra={"site_id": site_id, "error": str(e)},
            )
