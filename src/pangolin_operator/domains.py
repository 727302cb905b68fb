"""Domain lookup against an organization's cached domain inventory."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import Domain, HTTPConfig

logger = logging.getLogger(__name__)


class DomainResolutionError(Exception):
    """Raised when a hostname cannot be resolved to a known domain."""

    pass


@dataclass(frozen=True)
class ResolvedDomain:
    """Outcome of resolving an http resource's hostname."""

    domain_id: str
    full_hostname: str


def find_domain_by_id(domains: list[Domain], domain_id: str) -> Domain | None:
    for domain in domains:
        if domain.domain_id == domain_id:
            return domain
    return None


def find_domain_by_name(domains: list[Domain], base_domain: str) -> Domain | None:
    for domain in domains:
        if domain.base_domain == base_domain:
            return domain
    return None


def resolve_domain_selector(selector: str, domains: list[Domain]) -> str:
    """Resolve a domain id or base domain name to a domain id.

    An exact id match wins over a base domain match.

    Raises:
        DomainResolutionError: If neither matches.
    """
    domain = find_domain_by_id(domains, selector) or find_domain_by_name(domains, selector)
    if domain is None:
        raise DomainResolutionError(f"domain {selector} not found")
    return domain.domain_id


def first_verified_domain(domains: list[Domain]) -> Domain | None:
    for domain in domains:
        if domain.verified:
            return domain
    return None


def resolve_default_domain_id(
    domains: list[Domain],
    selector: str | None,
    current: str | None = None,
) -> str | None:
    """Pick the organization's default domain id.

    Order: explicit selector (id, then base domain), then the first verified
    domain. A selector that cannot be resolved is logged and keeps ``current``.

    Args:
        domains: Freshly fetched inventory.
        selector: Configured default domain, id or base domain.
        current: Previously resolved default domain id.

    Returns:
        Domain id, or None if nothing could be resolved.
    """
    resolved = current
    if selector:
        try:
            resolved = resolve_domain_selector(selector, domains)
            logger.info(
                "Resolved default domain",
                extra={"default_domain": selector, "domain_id": resolved},
            )
        except DomainResolutionError as e:
            logger.info(
                "Failed to resolve default domain",
                extra={"default_domain": selector, "error": str(e)},
            )

    if not resolved:
        verified = first_verified_domain(domains)
        if verified is not None:
            resolved = verified.domain_id
            logger.info(
                "Using first verified domain as default",
                extra={"domain_id": resolved},
            )

    return resolved


def resolve_resource_domain(
    http_config: HTTPConfig,
    domains: list[Domain],
    default_domain_id: str | None,
) -> ResolvedDomain:
    """Resolve the public hostname of an http resource.

    Priority: explicit domain id, explicit domain name, organization default.
    Every candidate must be present in the inventory.

    Raises:
        DomainResolutionError: If no candidate resolves.
    """
    if http_config.domain_id:
        domain = find_domain_by_id(domains, http_config.domain_id)
        if domain is None:
            raise DomainResolutionError(
                f"domain id {http_config.domain_id} not found in organization domains"
            )
    elif http_config.domain_name:
        domain = find_domain_by_name(domains, http_config.domain_name)
        if domain is None:
            raise DomainResolutionError(
                f"domain {http_config.domain_name} not found in organization domains"
            )
    elif default_domain_id:
        domain = find_domain_by_id(domains, default_domain_id)
        if domain is None:
            raise DomainResolutionError(
                f"default domain id {default_domain_id} not found in organization domains"
            )
    else:
        raise DomainResolutionError(
            "no domain specified and organization has no default domain"
        )

    return ResolvedDomain(
        domain_id=domain.domain_id,
        full_hostname=f"{http_config.subdomain}.{domain.base_domain}",
    )
