"""PangolinOrganization reconciler.

Binds to the organization named in spec, or discovers the first one the API
key can see, then snapshots its domain inventory and resolves a default
domain for resources that do not pick one explicitly.
"""

from __future__ import annotations

import logging

from .client import PangolinClient
from .domains import resolve_default_domain_id
from .models import BindingMode, PangolinOrganization
from .reconciler import BaseReconciler, ReconcileError
from .store import ObjectKey

logger = logging.getLogger(__name__)

ORGANIZATION_FINALIZER = "organization.pangolin.io/finalizer"


class OrganizationReconciler(BaseReconciler[PangolinOrganization]):
    """Reconciles PangolinOrganization objects. Has no upstream dependencies."""

    model = PangolinOrganization
    finalizer = ORGANIZATION_FINALIZER

    async def converge(self, org: PangolinOrganization) -> str:
        client = await self.client_for(org)
        async with client:
            await self._reconcile_organization(client, org)
            await self._reconcile_domains(client, org)
        return "Organization is ready"

    def dependencies(self, org: PangolinOrganization) -> list[ObjectKey]:
        # Rotating the API key secret should be picked up immediately
        return [ObjectKey("Secret", org.namespace, org.spec.api_key_ref.name)]

    async def _reconcile_organization(
        self, client: PangolinClient, org: PangolinOrganization
    ) -> None:
        orgs = await client.list_organizations()

        if org.spec.organization_id:
            match = next((o for o in orgs if o.org_id == org.spec.organization_id), None)
            if match is None:
                raise ReconcileError(f"organization {org.spec.organization_id} not found")
            mode = BindingMode.BOUND
        else:
            if not orgs:
                raise ReconcileError("no organizations found")
            match = orgs[0]
            mode = BindingMode.DISCOVERED

        org.status.organization_id = match.org_id
        org.status.organization_name = match.name
        org.status.subnet = match.subnet
        org.status.binding_mode = mode

        logger.info(
            "Organization resolved",
            extra={"object": f"{org.namespace}/{org.name}", "org_id": match.org_id, "mode": mode},
        )

    async def _reconcile_domains(self, client: PangolinClient, org: PangolinOrganization) -> None:
        org_id = org.status.organization_id
        if not org_id:
            raise ReconcileError("organization ID not available")

        domains = await client.list_domains(org_id)
        logger.info(
            "Found domains for organization",
            extra={"org_id": org_id, "domain_count": len(domains)},
        )
        org.status.domains = domains

        selector = org.spec.defaults.default_domain if org.spec.defaults else None
        org.status.default_domain_id = resolve_default_domain_id(
            domains, selector, current=org.status.default_domain_id
        )
