"""Async client for the Pangolin control-plane API.

Every call is an HTTPS request with a bearer API key. Responses are JSON
envelopes of the form ``{"success": bool, "data": ...}``. Anything else
(non-2xx status, a non-JSON body such as an HTML error page, or
``success: false``) raises PangolinAPIError with a truncated body excerpt.

The client is stateless apart from its connection pool; reconcilers open one
per cycle with ``async with``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, Field, ValidationError, model_validator

from .config import DEFAULT_HTTP_TIMEOUT_SECONDS, MAX_ERROR_BODY_BYTES
from .models import Domain

logger = logging.getLogger(__name__)

USER_AGENT = "pangolin-operator/1.0"
API_PREFIX = "/v1"

# Page size used for list calls; the operator never pages further
LIST_LIMIT = 1000


class PangolinAPIError(Exception):
    """Raised when a control-plane call fails.

    Attributes:
        operation: Name of the failed call (e.g. "create site").
        status_code: HTTP status, if a response was received.
        body: Response body excerpt, truncated for diagnostics.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        detail = f"{operation} failed: {message}"
        if status_code is not None:
            detail += f" (status {status_code})"
        if body:
            detail += f": {body}"
        super().__init__(detail)


# =============================================================================
# Payload models
# =============================================================================


class _Payload(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}


class OrgInfo(_Payload):
    org_id: str = Field(alias="orgId")
    name: str = ""
    subnet: str | None = None


class SiteInfo(_Payload):
    site_id: int | None = Field(None, validation_alias=AliasChoices("siteId", "id"))
    nice_id: str | None = Field(None, alias="niceId")
    name: str = ""
    type: str | None = None
    subnet: str | None = None
    address: str | None = None
    online: bool | None = None
    endpoint: str | None = None

    # Connector credentials, only present on create responses
    newt_id: str | None = Field(None, alias="newtId")
    newt_secret: str | None = Field(
        None, validation_alias=AliasChoices("newtSecret", "newtSecretKey")
    )


def _normalize_id(data: Any, alternate: str) -> Any:
    """Fill ``id`` from an alternate field and coerce it to a string."""
    if not isinstance(data, dict):
        return data
    data = dict(data)
    value = data.get("id")
    if value in (None, "", 0):
        value = data.get(alternate)
    data["id"] = str(value) if value not in (None, "", 0) else ""
    return data


class ResourceInfo(_Payload):
    id: str = ""
    name: str = ""
    site_id: int | None = Field(None, alias="siteId")
    http: bool = False
    protocol: str | None = None
    subdomain: str | None = None
    domain_id: str | None = Field(None, alias="domainId")
    proxy_port: int | None = Field(None, alias="proxyPort")
    enable_proxy: bool | None = Field(None, alias="enableProxy")

    @model_validator(mode="before")
    @classmethod
    def normalize_id(cls, data: Any) -> Any:
        return _normalize_id(data, "resourceId")


class TargetInfo(_Payload):
    id: str = ""
    ip: str = ""
    port: int | None = None
    method: str | None = None
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def normalize_id(cls, data: Any) -> Any:
        return _normalize_id(data, "targetId")


class ResourceCreateRequest(_Payload):
    name: str
    site_id: int = Field(alias="siteId")
    http: bool
    protocol: str
    subdomain: str | None = None
    domain_id: str | None = Field(None, alias="domainId")
    proxy_port: int | None = Field(None, alias="proxyPort")
    enable_proxy: bool | None = Field(None, alias="enableProxy")

    def to_payload(self) -> dict[str, Any]:
        """Build the request body; http and proxy fields are mutually exclusive."""
        data: dict[str, Any] = {
            "name": self.name,
            "siteId": self.site_id,
            "http": self.http,
            "protocol": self.protocol,
        }
        if self.http:
            data["subdomain"] = self.subdomain
            if self.domain_id:
                data["domainId"] = self.domain_id
        else:
            data["proxyPort"] = self.proxy_port
            data["enableProxy"] = self.enable_proxy
        return data


class TargetCreateRequest(_Payload):
    ip: str
    port: int
    method: str
    enabled: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {"ip": self.ip, "port": self.port, "method": self.method, "enabled": self.enabled}


# =============================================================================
# Client
# =============================================================================


class PangolinClient:
    """Thin async façade over the Pangolin HTTP API."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: API base URL, without the /v1 prefix.
            api_key: Bearer API key.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests inject a mock here).
        """
        self._endpoint = endpoint.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=f"{self._endpoint}{API_PREFIX}",
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def __aenter__(self) -> PangolinClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and unwrap the ``data`` field of the envelope.

        Raises:
            PangolinAPIError: On transport failure, non-2xx status, non-JSON
                response or an unsuccessful envelope.
        """
        try:
            response = await self._http.request(method, path, json=body, params=params)
        except httpx.HTTPError as e:
            raise PangolinAPIError(operation, f"request error: {e}") from e

        excerpt = response.content[:MAX_ERROR_BODY_BYTES].decode("utf-8", errors="replace")

        if not response.is_success:
            raise PangolinAPIError(operation, "unexpected status", response.status_code, excerpt)

        # Guard against HTML error pages served with a 2xx status
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            raise PangolinAPIError(
                operation,
                f"unexpected content-type {content_type!r}",
                response.status_code,
                excerpt,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise PangolinAPIError(
                operation, f"failed to decode response: {e}", response.status_code, excerpt
            ) from e

        if not isinstance(envelope, dict) or not envelope.get("success"):
            raise PangolinAPIError(
                operation, "API request was not successful", response.status_code, excerpt
            )

        logger.debug(
            "Pangolin API call succeeded",
            extra={"operation": operation, "method": method, "path": path},
        )
        return envelope.get("data")

    @staticmethod
    def _parse(operation: str, model: type[BaseModel], data: Any) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise PangolinAPIError(operation, f"invalid payload: {e}") from e

    def _parse_list(self, operation: str, model: type[BaseModel], data: Any, key: str) -> list[Any]:
        items = (data or {}).get(key) if isinstance(data, dict) else None
        return [self._parse(operation, model, item) for item in items or []]

    # -------------------------------------------------------------------------
    # Organizations and domains
    # -------------------------------------------------------------------------

    async def list_organizations(self) -> list[OrgInfo]:
        data = await self._request("list orgs", "GET", "/orgs")
        return self._parse_list("list orgs", OrgInfo, data, "orgs")

    async def list_domains(self, org_id: str) -> list[Domain]:
        operation = "list domains"
        data = await self._request(
            operation,
            "GET",
            f"/org/{org_id}/domains",
            params={"limit": LIST_LIMIT, "offset": 0},
        )
        return self._parse_list(operation, Domain, data, "domains")

    # -------------------------------------------------------------------------
    # Sites
    # -------------------------------------------------------------------------

    async def list_sites(self, org_id: str) -> list[SiteInfo]:
        operation = "list sites"
        data = await self._request(
            operation,
            "GET",
            f"/org/{org_id}/sites",
            params={"limit": LIST_LIMIT, "offset": 0},
        )
        return self._parse_list(operation, SiteInfo, data, "sites")

    async def get_site_by_id(self, site_id: int) -> SiteInfo:
        operation = "get site by id"
        data = await self._request(operation, "GET", f"/site/{site_id}")
        return self._parse(operation, SiteInfo, data)

    async def get_site_by_nice_id(self, org_id: str, nice_id: str) -> SiteInfo:
        operation = "get site by niceId"
        data = await self._request(operation, "GET", f"/org/{org_id}/site/{nice_id}")
        return self._parse(operation, SiteInfo, data)

    async def create_site(self, org_id: str, name: str, site_type: str) -> SiteInfo:
        operation = "create site"
        data = await self._request(
            operation,
            "PUT",
            f"/org/{org_id}/site",
            body={"name": name, "type": site_type},
        )
        return self._parse(operation, SiteInfo, data)

    async def delete_site(self, site_id: int) -> None:
        await self._request("delete site", "DELETE", f"/site/{site_id}")

    # -------------------------------------------------------------------------
    # Resources and targets
    # -------------------------------------------------------------------------

    async def create_resource(
        self, org_id: str, site_id: int, request: ResourceCreateRequest
    ) -> ResourceInfo:
        operation = "create resource"
        data = await self._request(
            operation,
            "PUT",
            f"/org/{org_id}/site/{site_id}/resource",
            body=request.to_payload(),
        )
        resource = self._parse(operation, ResourceInfo, data)
        if not resource.id:
            raise PangolinAPIError(operation, "response did not include a resource id")
        return resource

    async def delete_resource(self, resource_id: str) -> None:
        await self._request("delete resource", "DELETE", f"/resource/{resource_id}")

    async def create_target(self, resource_id: str, request: TargetCreateRequest) -> TargetInfo:
        operation = "create target"
        data = await self._request(
            operation,
            "PUT",
            f"/resource/{resource_id}/target",
            body=request.to_payload(),
        )
        target = self._parse(operation, TargetInfo, data)
        if not target.id:
            raise PangolinAPIError(operation, "response did not include a target id")
        return target


# Builds a client from (endpoint, api_key)
ClientFactory = Callable[[str, str], PangolinClient]


def default_client_factory(timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS) -> ClientFactory:
    """Return a factory producing real HTTP clients with the given timeout."""

    def factory(endpoint: str, api_key: str) -> PangolinClient:
        return PangolinClient(endpoint, api_key, timeout=timeout)

    return factory
