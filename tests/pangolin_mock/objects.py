"""Builders for stored objects used across the tests.

Objects are built from camelCase manifests so the pydantic aliases are
exercised the same way manifests loaded from YAML are.
"""

from __future__ import annotations

from typing import Any

from pangolin_operator.conditions import ReconcileOutcome, set_ready
from pangolin_operator.models import (
    Endpoints,
    KubeObject,
    PangolinBinding,
    PangolinOrganization,
    PangolinResource,
    PangolinTunnel,
    Secret,
    Service,
)
from pangolin_operator.reconciler import BaseReconciler, ReconcileResult
from pangolin_operator.store import ObjectStore

API_ENDPOINT = "https://pangolin.example.com"
API_KEY = "test-api-key"


def _meta(name: str, namespace: str) -> dict[str, Any]:
    return {"name": name, "namespace": namespace}


def api_key_secret(
    name: str = "pangolin-api",
    *,
    key: str = "apiKey",
    value: str = API_KEY,
    namespace: str = "default",
) -> Secret:
    return Secret.model_validate({"metadata": _meta(name, namespace), "data": {key: value}})


def organization(
    name: str = "org",
    *,
    organization_id: str | None = "org1",
    default_domain: str | None = None,
    api_endpoint: str = API_ENDPOINT,
    secret_name: str = "pangolin-api",
    namespace: str = "default",
) -> PangolinOrganization:
    spec: dict[str, Any] = {
        "apiEndpoint": api_endpoint,
        "apiKeyRef": {"name": secret_name, "key": "apiKey"},
    }
    if organization_id:
        spec["organizationId"] = organization_id
    if default_domain:
        spec["defaults"] = {"defaultDomain": default_domain}
    return PangolinOrganization.model_validate({"metadata": _meta(name, namespace), "spec": spec})


def tunnel(
    name: str = "tunnel",
    *,
    org: str = "org",
    site_name: str | None = "s1",
    site_type: str | None = "newt",
    site_id: int | None = None,
    nice_id: str | None = None,
    newt_client: dict[str, Any] | None = None,
    namespace: str = "default",
) -> PangolinTunnel:
    spec: dict[str, Any] = {"organizationRef": {"name": org}}
    if site_id is not None:
        spec["siteId"] = site_id
    if nice_id is not None:
        spec["niceId"] = nice_id
    if site_id is None and nice_id is None:
        spec["siteName"] = site_name
        spec["siteType"] = site_type
    if newt_client is not None:
        spec["newtClient"] = newt_client
    return PangolinTunnel.model_validate({"metadata": _meta(name, namespace), "spec": spec})


def http_resource(
    name: str = "app",
    *,
    tunnel_name: str = "tunnel",
    subdomain: str = "app",
    domain_id: str | None = None,
    domain_name: str | None = None,
    resource_id: str | None = None,
    target_ip: str = "10.0.0.5",
    target_port: int = 8080,
    namespace: str = "default",
) -> PangolinResource:
    http_config: dict[str, Any] = {"subdomain": subdomain}
    if domain_id:
        http_config["domainId"] = domain_id
    if domain_name:
        http_config["domainName"] = domain_name
    spec: dict[str, Any] = {
        "tunnelRef": {"name": tunnel_name},
        "name": name,
        "protocol": "http",
        "httpConfig": http_config,
        "target": {"ip": target_ip, "port": target_port},
    }
    if resource_id:
        spec["resourceId"] = resource_id
    return PangolinResource.model_validate({"metadata": _meta(name, namespace), "spec": spec})


def proxy_resource(
    name: str = "ssh",
    *,
    tunnel_name: str = "tunnel",
    protocol: str = "tcp",
    proxy_port: int = 2222,
    enable_proxy: bool | None = None,
    target_ip: str = "10.0.0.6",
    target_port: int = 22,
    namespace: str = "default",
) -> PangolinResource:
    proxy_config: dict[str, Any] = {"proxyPort": proxy_port}
    if enable_proxy is not None:
        proxy_config["enableProxy"] = enable_proxy
    return PangolinResource.model_validate(
        {
            "metadata": _meta(name, namespace),
            "spec": {
                "tunnelRef": {"name": tunnel_name},
                "name": name,
                "protocol": protocol,
                "proxyConfig": proxy_config,
                "target": {"ip": target_ip, "port": target_port},
            },
        }
    )


def service(
    name: str = "web",
    *,
    cluster_ip: str | None = "10.96.0.10",
    port: int = 80,
    namespace: str = "default",
) -> Service:
    spec: dict[str, Any] = {"ports": [{"name": "http", "port": port}]}
    if cluster_ip:
        spec["clusterIP"] = cluster_ip
    return Service.model_validate({"metadata": _meta(name, namespace), "spec": spec})


def endpoints(name: str = "web", *ips: str, namespace: str = "default") -> Endpoints:
    return Endpoints.model_validate(
        {
            "metadata": _meta(name, namespace),
            "subsets": [{"addresses": [{"ip": ip} for ip in ips]}],
        }
    )


def binding(
    name: str = "web",
    *,
    service_name: str = "web",
    service_namespace: str = "default",
    org: str = "org",
    tunnel_name: str | None = "tunnel",
    protocol: str = "http",
    service_port: int = 80,
    subdomain: str = "web",
    proxy_port: int = 3000,
    auto_update_targets: bool = True,
    namespace: str = "default",
) -> PangolinBinding:
    spec: dict[str, Any] = {
        "serviceRef": {"name": service_name, "namespace": service_namespace},
        "organizationRef": {"name": org},
        "protocol": protocol,
        "servicePort": service_port,
        "autoUpdateTargets": auto_update_targets,
    }
    if tunnel_name:
        spec["tunnelRef"] = {"name": tunnel_name}
    if protocol == "http":
        spec["httpConfig"] = {"subdomain": subdomain}
    else:
        spec["proxyConfig"] = {"proxyPort": proxy_port}
    return PangolinBinding.model_validate({"metadata": _meta(name, namespace), "spec": spec})


async def run_cycles(
    reconciler: BaseReconciler,
    name: str,
    namespace: str = "default",
    cycles: int = 2,
) -> ReconcileResult:
    """Run several reconcile cycles; the first one only adds the finalizer."""
    result = None
    for _ in range(cycles):
        result = await reconciler.reconcile(namespace, name)
    assert result is not None
    return result


async def mark_status(
    store: ObjectStore,
    model: type[KubeObject],
    name: str,
    outcome: ReconcileOutcome = ReconcileOutcome.READY,
    namespace: str = "default",
    **status_fields: Any,
) -> KubeObject:
    """Publish a status directly, as if the object's reconciler had run."""
    obj = await store.get(model, namespace, name)
    for field_name, value in status_fields.items():
        setattr(obj.status, field_name, value)  # type: ignore[attr-defined]
    set_ready(obj, outcome, f"marked {outcome.value}")
    return await store.update_status(obj)
