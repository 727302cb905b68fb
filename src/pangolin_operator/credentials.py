"""API key retrieval for control-plane clients.

The API key lives in a Secret next to the PangolinOrganization and is read on
every reconcile, so rotating the Secret takes effect on the next cycle. Keys
are never logged.
"""

from __future__ import annotations

import logging

from .client import ClientFactory, PangolinClient
from .models import PangolinOrganization, Secret, SecretKeySelector
from .store import NotFoundError, ObjectStore, StoreError

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Raised when the API key cannot be read."""

    pass


async def read_api_key(store: ObjectStore, namespace: str, selector: SecretKeySelector) -> str:
    """Read an API key from a Secret.

    Raises:
        CredentialError: If the Secret or key is missing or empty.
    """
    try:
        secret = await store.get(Secret, namespace, selector.name)
    except NotFoundError as e:
        raise CredentialError(f"failed to get API key secret: {e}") from e
    except StoreError as e:
        raise CredentialError(f"failed to read API key secret {selector.name}: {e}") from e

    api_key = secret.data.get(selector.key)
    if not api_key:
        logger.warning(
            "API key not found in secret",
            extra={"secret": f"{namespace}/{selector.name}", "key": selector.key},
        )
        raise CredentialError(f"API key not found in secret {selector.name} (key {selector.key})")
    return api_key


async def open_client(
    store: ObjectStore,
    organization: PangolinOrganization,
    client_factory: ClientFactory,
) -> PangolinClient:
    """Build a control-plane client from an organization's endpoint and Secret.

    Raises:
        CredentialError: If the API key cannot be read.
    """
    api_key = await read_api_key(store, organization.namespace, organization.spec.api_key_ref)
    return client_factory(organization.spec.api_endpoint, api_key)
