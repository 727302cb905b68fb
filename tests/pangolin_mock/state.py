"""In-memory state of the fake Pangolin control plane."""

from __future__ import annotations

import copy
import secrets
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RecordedCall:
    """A request received by the fake control plane."""

    operation: str
    method: str
    path: str
    body: dict[str, Any] | None = None


@dataclass
class InjectedFailure:
    """Response returned instead of the real one for an operation."""

    status_code: int = 500
    body: str = '{"success": false, "message": "internal error"}'
    content_type: str = "application/json"
    remaining: int | None = None  # None = fail forever


@dataclass
class MockPangolinState:
    """Organizations, domains, sites, resources and targets known to the fake API."""

    orgs: list[dict[str, Any]] = field(default_factory=list)
    domains: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    sites: dict[int, dict[str, Any]] = field(default_factory=dict)
    resources: dict[str, dict[str, Any]] = field(default_factory=dict)
    targets: dict[str, dict[str, Any]] = field(default_factory=dict)

    calls: list[RecordedCall] = field(default_factory=list)
    failures: dict[str, InjectedFailure] = field(default_factory=dict)

    _next_site_id: int = 1
    _next_resource_id: int = 100
    _next_target_id: int = 1000

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_org(self, org_id: str, name: str | None = None, subnet: str = "100.90.0.0/16") -> None:
        self.orgs.append({"orgId": org_id, "name": name or org_id, "subnet": subnet})
        self.domains.setdefault(org_id, [])

    def add_domain(
        self,
        org_id: str,
        domain_id: str,
        base_domain: str,
        *,
        verified: bool = True,
        domain_type: str = "ns",
    ) -> None:
        self.domains.setdefault(org_id, []).append(
            {
                "domainId": domain_id,
                "baseDomain": base_domain,
                "verified": verified,
                "type": domain_type,
                "failed": False,
                "tries": 0,
                "configManaged": False,
            }
        )

    def add_site(
        self,
        org_id: str,
        name: str,
        site_type: str = "newt",
        *,
        site_id: int | None = None,
        nice_id: str | None = None,
    ) -> dict[str, Any]:
        if site_id is None:
            site_id = self._next_site_id
        self._next_site_id = max(self._next_site_id, site_id + 1)
        site = {
            "siteId": site_id,
            "niceId": nice_id or f"{name}-{site_id}",
            "orgId": org_id,
            "name": name,
            "type": site_type,
            "subnet": f"100.90.{site_id}.0/24",
            "address": f"100.90.{site_id}.1",
            "online": True,
            "endpoint": None,
        }
        self.sites[site_id] = site
        return copy.deepcopy(site)

    # -------------------------------------------------------------------------
    # Mutations used by the API handler
    # -------------------------------------------------------------------------

    def create_site(self, org_id: str, name: str, site_type: str) -> dict[str, Any]:
        site = self.add_site(org_id, name, site_type)
        # Credentials are only ever returned by the create call
        return {
            **site,
            "newtId": f"newt-{site['siteId']}",
            "newtSecret": secrets.token_hex(16),
        }

    def create_resource(self, org_id: str, site_id: int, body: dict[str, Any]) -> dict[str, Any]:
        resource_id = self._next_resource_id
        self._next_resource_id += 1
        resource = {"resourceId": resource_id, "orgId": org_id, "siteId": site_id, **body}
        self.resources[str(resource_id)] = resource
        return copy.deepcopy(resource)

    def create_target(self, resource_id: str, body: dict[str, Any]) -> dict[str, Any]:
        target_id = self._next_target_id
        self._next_target_id += 1
        target = {"targetId": target_id, "resourceId": resource_id, **body}
        self.targets[str(target_id)] = target
        return copy.deepcopy(target)

    # -------------------------------------------------------------------------
    # Assertions helpers
    # -------------------------------------------------------------------------

    def call_count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call.operation == operation)

    def last_call(self, operation: str) -> RecordedCall | None:
        for call in reversed(self.calls):
            if call.operation == operation:
                return call
        return None

    def fail(
        self,
        operation: str,
        status_code: int = 500,
        body: str = '{"success": false, "message": "internal error"}',
        *,
        content_type: str = "application/json",
        times: int | None = None,
    ) -> None:
        """Make an operation return the given response.

        Args:
            operation: Operation name, e.g. "create_site".
            status_code: HTTP status to return.
            body: Raw response body.
            content_type: Content-Type header of the response.
            times: Number of failing calls, None for all of them.
        """
        self.failures[operation] = InjectedFailure(
            status_code=status_code, body=body, content_type=content_type, remaining=times
        )

    def clear_failures(self) -> None:
        self.failures.clear()

    def take_failure(self, operation: str) -> InjectedFailure | None:
        failure = self.failures.get(operation)
        if failure is None:
            return None
        if failure.remaining is not None:
            failure.remaining -= 1
            if failure.remaining <= 0:
                del self.failures[operation]
        return failure
