"""Pydantic models for the declarative object kinds.

These models provide:
1. Type-safe manifest parsing (camelCase on the wire, snake_case in Python)
2. Validation at the boundary (fail fast, fail loudly)
3. A shared metadata shape used by the object store and the reconcilers
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

API_GROUP = "tunnel.pangolin.io"
API_VERSION = f"{API_GROUP}/v1alpha1"

# Site types supported by the control plane
VALID_SITE_TYPES = {"newt", "wireguard", "local"}

# Site types that run a managed connector workload next to the operator
CONNECTOR_SITE_TYPES = {"newt"}

Protocol = Literal["http", "tcp", "udp"]

Port = Annotated[int, Field(ge=1, le=65535)]


class BindingMode:
    """Values recorded in ``status.bindingMode``."""

    BOUND = "Bound"
    CREATED = "Created"
    DISCOVERED = "Discovered"


# =============================================================================
# Metadata
# =============================================================================


class _Model(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}


class OwnerReference(_Model):
    """Link from a generated object to the object that owns it."""

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: bool = True


class ObjectMeta(_Model):
    """Object identity and store-managed bookkeeping."""

    name: Annotated[str, Field(min_length=1, max_length=253)]
    namespace: str = "default"
    uid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    generation: int = 1
    resource_version: int = Field(0, alias="resourceVersion")
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: datetime | None = Field(None, alias="deletionTimestamp")
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")
    labels: dict[str, str] = Field(default_factory=dict)


class LocalObjectReference(_Model):
    """Reference to an object in the same namespace."""

    name: Annotated[str, Field(min_length=1)]


class SecretKeySelector(_Model):
    """Selects a key of a Secret in the same namespace."""

    name: Annotated[str, Field(min_length=1)]
    key: str = "apiKey"


class Condition(_Model):
    """A typed status condition."""

    type: str
    status: Literal["True", "False", "Unknown"]
    reason: str
    message: str = ""
    last_transition_time: datetime = Field(alias="lastTransitionTime")
    observed_generation: int = Field(0, alias="observedGeneration")


class BaseStatus(_Model):
    """Fields every kind publishes in its status."""

    status: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int = Field(0, alias="observedGeneration")


class KubeObject(_Model):
    """Base class for every stored object."""

    kind: ClassVar[str] = ""
    api_version: ClassVar[str] = API_VERSION

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def is_deleting(self) -> bool:
        """True once the store has marked the object for deletion."""
        return self.metadata.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers

    def add_finalizer(self, finalizer: str) -> None:
        if finalizer not in self.metadata.finalizers:
            self.metadata.finalizers.append(finalizer)

    def remove_finalizer(self, finalizer: str) -> None:
        self.metadata.finalizers = [f for f in self.metadata.finalizers if f != finalizer]

    def owner_reference(self) -> OwnerReference:
        """Build an owner reference pointing at this object."""
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
        )

    def is_owned_by(self, owner: KubeObject) -> bool:
        return any(ref.uid == owner.metadata.uid for ref in self.metadata.owner_references)

    def to_manifest(self) -> dict[str, Any]:
        """Serialize to the camelCase manifest shape."""
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        return {"apiVersion": self.api_version, "kind": self.kind, **data}


# =============================================================================
# PangolinOrganization
# =============================================================================


class OrganizationDefaults(_Model):
    """Defaults applied to objects referencing the organization."""

    # Domain id or base domain name
    default_domain: str | None = Field(None, alias="defaultDomain")


class OrganizationSpec(_Model):
    api_endpoint: Annotated[str, Field(min_length=1, alias="apiEndpoint")]
    api_key_ref: SecretKeySelector = Field(alias="apiKeyRef")

    # Bind to this organization; discover the first one when unset
    organization_id: str | None = Field(None, alias="organizationId")
    defaults: OrganizationDefaults | None = None

    @field_validator("api_endpoint")
    @classmethod
    def validate_api_endpoint(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("apiEndpoint must be an http(s) URL")
        return v.rstrip("/")


class Domain(_Model):
    """One entry of the organization's domain inventory."""

    domain_id: str = Field(alias="domainId")
    base_domain: str = Field(alias="baseDomain")
    verified: bool = False
    type: str | None = None
    failed: bool = False
    tries: int = 0
    config_managed: bool = Field(False, alias="configManaged")


class OrganizationStatus(BaseStatus):
    organization_id: str | None = Field(None, alias="organizationId")
    organization_name: str | None = Field(None, alias="organizationName")
    subnet: str | None = None
    domains: list[Domain] = Field(default_factory=list)
    default_domain_id: str | None = Field(None, alias="defaultDomainId")
    binding_mode: str | None = Field(None, alias="bindingMode")


class PangolinOrganization(KubeObject):
    kind: ClassVar[str] = "PangolinOrganization"

    spec: OrganizationSpec
    status: OrganizationStatus = Field(default_factory=OrganizationStatus)


# =============================================================================
# PangolinTunnel
# =============================================================================


class NewtClientSpec(_Model):
    """Managed connector workload settings."""

    enabled: bool = False
    replicas: Annotated[int, Field(ge=0, le=10)] = 1
    image: str | None = None


class TunnelSpec(_Model):
    organization_ref: LocalObjectReference = Field(alias="organizationRef")

    # Bind mode selectors
    site_id: int | None = Field(None, alias="siteId")
    nice_id: str | None = Field(None, alias="niceId")

    # Create mode settings
    site_name: str | None = Field(None, alias="siteName")
    site_type: str | None = Field(None, alias="siteType")

    newt_client: NewtClientSpec | None = Field(None, alias="newtClient")

    @field_validator("site_type")
    @classmethod
    def validate_site_type(cls, v: str | None) -> str | None:
        if v is not None and v not in VALID_SITE_TYPES:
            raise ValueError(f"siteType must be one of {sorted(VALID_SITE_TYPES)}")
        return v

    @model_validator(mode="after")
    def validate_mode_fields(self) -> TunnelSpec:
        if not self.is_bind_mode and not (self.site_name and self.site_type):
            raise ValueError("siteName and siteType are required unless siteId or niceId is set")
        return self

    @property
    def is_bind_mode(self) -> bool:
        return self.site_id is not None or bool(self.nice_id)


class TunnelStatus(BaseStatus):
    site_id: int | None = Field(None, alias="siteId")
    nice_id: str | None = Field(None, alias="niceId")
    site_name: str | None = Field(None, alias="siteName")
    site_type: str | None = Field(None, alias="siteType")
    subnet: str | None = None
    address: str | None = None
    online: bool | None = None
    endpoint: str | None = None
    binding_mode: str | None = Field(None, alias="bindingMode")
    newt_secret_ref: str | None = Field(None, alias="newtSecretRef")
    ready_replicas: int | None = Field(None, alias="readyReplicas")


class PangolinTunnel(KubeObject):
    kind: ClassVar[str] = "PangolinTunnel"

    spec: TunnelSpec
    status: TunnelStatus = Field(default_factory=TunnelStatus)


# =============================================================================
# PangolinResource
# =============================================================================


class HTTPConfig(_Model):
    """Public hostname settings for an http resource."""

    subdomain: Annotated[str, Field(min_length=1, max_length=63)]
    domain_id: str | None = Field(None, alias="domainId")
    domain_name: str | None = Field(None, alias="domainName")


class ProxyConfig(_Model):
    """Raw proxy settings for a tcp/udp resource."""

    proxy_port: Port = Field(alias="proxyPort")
    enable_proxy: bool = Field(True, alias="enableProxy")


class TargetConfig(_Model):
    """Where the control plane forwards traffic to."""

    ip: Annotated[str, Field(min_length=1)]
    port: Port
    method: str | None = None
    enabled: bool = True


def _validate_protocol_config(
    protocol: str, http_config: HTTPConfig | None, proxy_config: ProxyConfig | None
) -> None:
    if protocol == "http":
        if http_config is None:
            raise ValueError("httpConfig is required when protocol is http")
        if proxy_config is not None:
            raise ValueError("proxyConfig must not be set when protocol is http")
    else:
        if proxy_config is None:
            raise ValueError(f"proxyConfig is required when protocol is {protocol}")
        if http_config is not None:
            raise ValueError(f"httpConfig must not be set when protocol is {protocol}")


class ResourceSpec(_Model):
    tunnel_ref: LocalObjectReference = Field(alias="tunnelRef")
    name: Annotated[str, Field(min_length=1)]
    protocol: Protocol

    # Bind to an existing control-plane resource instead of creating one
    resource_id: str | None = Field(None, alias="resourceId")

    http_config: HTTPConfig | None = Field(None, alias="httpConfig")
    proxy_config: ProxyConfig | None = Field(None, alias="proxyConfig")
    target: TargetConfig

    @model_validator(mode="after")
    def validate_protocol_config(self) -> ResourceSpec:
        _validate_protocol_config(self.protocol, self.http_config, self.proxy_config)
        return self


class ResourceStatus(BaseStatus):
    resource_id: str | None = Field(None, alias="resourceId")
    target_id: str | None = Field(None, alias="targetId")
    full_domain: str | None = Field(None, alias="fullDomain")
    url: str | None = None
    proxy_endpoint: str | None = Field(None, alias="proxyEndpoint")
    binding_mode: str | None = Field(None, alias="bindingMode")


class PangolinResource(KubeObject):
    kind: ClassVar[str] = "PangolinResource"

    spec: ResourceSpec
    status: ResourceStatus = Field(default_factory=ResourceStatus)


# =============================================================================
# PangolinBinding
# =============================================================================


class ServiceReference(_Model):
    name: Annotated[str, Field(min_length=1)]
    namespace: Annotated[str, Field(min_length=1)]


class BindingSpec(_Model):
    service_ref: ServiceReference = Field(alias="serviceRef")
    organization_ref: LocalObjectReference = Field(alias="organizationRef")
    tunnel_ref: LocalObjectReference | None = Field(None, alias="tunnelRef")
    protocol: Protocol
    service_port: Port = Field(alias="servicePort")
    http_config: HTTPConfig | None = Field(None, alias="httpConfig")
    proxy_config: ProxyConfig | None = Field(None, alias="proxyConfig")
    auto_update_targets: bool = Field(True, alias="autoUpdateTargets")

    @model_validator(mode="after")
    def validate_protocol_config(self) -> BindingSpec:
        _validate_protocol_config(self.protocol, self.http_config, self.proxy_config)
        return self


class BindingStatus(BaseStatus):
    generated_resource_name: str | None = Field(None, alias="generatedResourceName")
    url: str | None = None
    proxy_endpoint: str | None = Field(None, alias="proxyEndpoint")
    service_endpoints: list[str] = Field(default_factory=list, alias="serviceEndpoints")


class PangolinBinding(KubeObject):
    kind: ClassVar[str] = "PangolinBinding"

    spec: BindingSpec
    status: BindingStatus = Field(default_factory=BindingStatus)


# =============================================================================
# Core kinds read or written by the reconcilers
# =============================================================================


class Secret(KubeObject):
    kind: ClassVar[str] = "Secret"
    api_version: ClassVar[str] = "v1"

    data: dict[str, str] = Field(default_factory=dict)


class ServicePortSpec(_Model):
    name: str | None = None
    port: Port
    protocol: str = "TCP"


class ServiceSpec(_Model):
    cluster_ip: str | None = Field(None, alias="clusterIP")
    ports: list[ServicePortSpec] = Field(default_factory=list)


class Service(KubeObject):
    kind: ClassVar[str] = "Service"
    api_version: ClassVar[str] = "v1"

    spec: ServiceSpec = Field(default_factory=ServiceSpec)


class EndpointAddress(_Model):
    ip: str


class EndpointSubset(_Model):
    addresses: list[EndpointAddress] = Field(default_factory=list)


class Endpoints(KubeObject):
    kind: ClassVar[str] = "Endpoints"
    api_version: ClassVar[str] = "v1"

    subsets: list[EndpointSubset] = Field(default_factory=list)


class DeploymentSpec(_Model):
    replicas: int = 1
    image: str
    env_from_secret: str | None = Field(None, alias="envFromSecret")
    labels: dict[str, str] = Field(default_factory=dict)


class DeploymentStatus(_Model):
    ready_replicas: int = Field(0, alias="readyReplicas")


class Deployment(KubeObject):
    kind: ClassVar[str] = "Deployment"
    api_version: ClassVar[str] = "apps/v1"

    spec: DeploymentSpec
    status: DeploymentStatus = Field(default_factory=DeploymentStatus)


# Registry mapping kind names to model classes
KIND_REGISTRY: dict[str, type[KubeObject]] = {
    model.kind: model
    for model in (
        PangolinOrganization,
        PangolinTunnel,
        PangolinResource,
        PangolinBinding,
        Secret,
        Service,
        Endpoints,
        Deployment,
    )
}


def get_kind_class(kind: str) -> type[KubeObject]:
    """Get the model class for a kind.

    Raises:
        ValueError: If kind is not recognized.
    """
    model = KIND_REGISTRY.get(kind)
    if model is None:
        valid_kinds = list(KIND_REGISTRY.keys())
        raise ValueError(f"Unknown kind '{kind}'. Valid kinds: {valid_kinds}")
    return model
