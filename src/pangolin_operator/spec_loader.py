"""Manifest loading with validation.

SECURITY: All file operations enforce size limits to prevent DoS attacks
via large files. Input validation is performed at the boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import KubeObject, get_kind_class
from .store import AlreadyExistsError, ObjectStore

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")


class ManifestLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def _read_manifest_file(path: Path) -> str:
    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ManifestLoadError(f"Failed to stat manifest file {path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ManifestLoadError(f"Failed to read manifest file {path}: {e}") from e


def parse_manifest(document: Any, source: str = "<manifest>") -> KubeObject:
    """Validate one manifest document against the model of its kind.

    Raises:
        ManifestLoadError: If the document is malformed or fails validation.
    """
    if not isinstance(document, dict):
        raise ManifestLoadError(f"Manifest must be a YAML mapping: {source}")

    kind = document.get("kind")
    if not kind:
        raise ManifestLoadError(f"Manifest is missing 'kind': {source}")

    try:
        model = get_kind_class(kind)
    except ValueError as e:
        raise ManifestLoadError(f"{e}: {source}") from e

    api_version = document.get("apiVersion")
    if api_version != model.api_version:
        raise ManifestLoadError(
            f"{kind} requires apiVersion '{model.api_version}', got '{api_version}': {source}"
        )

    data = {k: v for k, v in document.items() if k not in ("apiVersion", "kind")}
    try:
        return model.model_validate(data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise ManifestLoadError(f"Validation failed for {kind} in {source}:\n{error_list}") from e


def load_manifest_file(path: Path) -> list[KubeObject]:
    """Load every document of a (possibly multi-document) YAML file.

    Raises:
        ManifestLoadError: If the file cannot be read, parsed or validated.
    """
    content = _read_manifest_file(path)

    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    objects = [
        parse_manifest(document, f"{path} (document {index})")
        for index, document in enumerate(documents, start=1)
        if document is not None
    ]
    logger.info("Loaded %d manifest(s) from %s", len(objects), path)
    return objects


def load_manifests(path: Path) -> list[KubeObject]:
    """Load manifests from a YAML file or from every YAML file in a directory.

    Directory entries are read in name order. Duplicate identities are
    rejected.

    Raises:
        ManifestLoadError: If anything cannot be loaded.
    """
    if not path.exists():
        raise ManifestLoadError(f"Manifest path not found: {path}")

    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix in MANIFEST_SUFFIXES)
    else:
        files = [path]

    objects: list[KubeObject] = []
    seen: set[tuple[str, str, str]] = set()
    for file in files:
        for obj in load_manifest_file(file):
            identity = (obj.kind, obj.namespace, obj.name)
            if identity in seen:
                raise ManifestLoadError(
                    f"Duplicate manifest {obj.kind} {obj.namespace}/{obj.name} in {file}"
                )
            seen.add(identity)
            objects.append(obj)
    return objects


async def seed_store(store: ObjectStore, objects: list[KubeObject]) -> int:
    """Create loaded objects in a store, skipping identities that already exist.

    Returns:
        Number of objects created.
    """
    created = 0
    for obj in objects:
        try:
            await store.create(obj)
            created += 1
        except AlreadyExistsError:
            logger.warning(
                "Object already exists, skipping",
                extra={"object": f"{obj.kind}/{obj.namespace}/{obj.name}"},
            )
    return created
