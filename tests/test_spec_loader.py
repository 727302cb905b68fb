"""Tests for manifest loading and validation."""

from pathlib import Path

import pytest

from pangolin_operator import spec_loader
from pangolin_operator.models import PangolinOrganization, PangolinTunnel, Secret
from pangolin_operator.spec_loader import (
    ManifestLoadError,
    load_manifest_file,
    load_manifests,
    parse_manifest,
    seed_store,
)
from pangolin_operator.store import InMemoryStore

ORG_YAML = """\
apiVersion: tunnel.pangolin.io/v1alpha1
kind: PangolinOrganization
metadata:
  name: org
  namespace: default
spec:
  apiEndpoint: https://pangolin.example.com
  apiKeyRef:
    name: pangolin-api
  organizationId: org1
"""

TUNNEL_YAML = """\
apiVersion: tunnel.pangolin.io/v1alpha1
kind: PangolinTunnel
metadata:
  name: tunnel
  namespace: default
spec:
  organizationRef:
    name: org
  siteName: s1
  siteType: newt
"""

SECRET_YAML = """\
apiVersion: v1
kind: Secret
metadata:
  name: pangolin-api
  namespace: default
data:
  apiKey: test-api-key
"""


def _write(path: Path, *documents: str) -> Path:
    path.write_text("---\n".join(documents), encoding="utf-8")
    return path


class TestParseManifest:
    """Tests for single-document validation."""

    def test_valid(self) -> None:
        obj = parse_manifest(
            {
                "apiVersion": "tunnel.pangolin.io/v1alpha1",
                "kind": "PangolinTunnel",
                "metadata": {"name": "t"},
                "spec": {"organizationRef": {"name": "org"}, "siteId": 3},
            }
        )

        assert isinstance(obj, PangolinTunnel)
        assert obj.namespace == "default"
        assert obj.spec.site_id == 3

    def test_not_a_mapping(self) -> None:
        with pytest.raises(ManifestLoadError, match="YAML mapping"):
            parse_manifest(["a", "b"])

    def test_missing_kind(self) -> None:
        with pytest.raises(ManifestLoadError, match="missing 'kind'"):
            parse_manifest({"apiVersion": "v1"})

    def test_unknown_kind(self) -> None:
        with pytest.raises(ManifestLoadError, match="Unknown kind 'ConfigMap'"):
            parse_manifest({"apiVersion": "v1", "kind": "ConfigMap"})

    def test_wrong_api_version(self) -> None:
        with pytest.raises(ManifestLoadError, match="requires apiVersion 'tunnel.pangolin.io/v1alpha1'"):
            parse_manifest(
                {"apiVersion": "v1", "kind": "PangolinTunnel", "metadata": {"name": "t"}}
            )

    def test_validation_errors_are_listed(self) -> None:
        """Test that each pydantic error is reported with its field path."""
        with pytest.raises(ManifestLoadError) as exc_info:
            parse_manifest(
                {
                    "apiVersion": "tunnel.pangolin.io/v1alpha1",
                    "kind": "PangolinOrganization",
                    "metadata": {"name": "org"},
                    "spec": {"apiKeyRef": {"name": "s"}},
                },
                "org.yaml",
            )

        message = str(exc_info.value)
        assert message.startswith("Validation failed for PangolinOrganization in org.yaml")
        assert "  - spec.apiEndpoint:" in message


class TestLoadManifests:
    """Tests for file and directory loading."""

    def test_multi_document_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "all.yaml", SECRET_YAML, ORG_YAML, TUNNEL_YAML)

        loaded = load_manifest_file(path)

        assert [type(obj) for obj in loaded] == [Secret, PangolinOrganization, PangolinTunnel]

    def test_empty_documents_skipped(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "org.yaml", "", ORG_YAML, "")

        assert len(load_manifest_file(path)) == 1

    def test_directory_in_name_order(self, tmp_path: Path) -> None:
        _write(tmp_path / "20-tunnel.yml", TUNNEL_YAML)
        _write(tmp_path / "10-org.yaml", ORG_YAML)
        (tmp_path / "README.md").write_text("not a manifest")

        loaded = load_manifests(tmp_path)

        assert [obj.kind for obj in loaded] == ["PangolinOrganization", "PangolinTunnel"]

    def test_duplicates_rejected(self, tmp_path: Path) -> None:
        _write(tmp_path / "a.yaml", ORG_YAML)
        _write(tmp_path / "b.yaml", ORG_YAML)

        with pytest.raises(ManifestLoadError, match="Duplicate manifest PangolinOrganization default/org"):
            load_manifests(tmp_path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("kind: [unclosed", encoding="utf-8")

        with pytest.raises(ManifestLoadError, match="Invalid YAML"):
            load_manifest_file(path)

    def test_size_limit(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(spec_loader, "MAX_MANIFEST_FILE_SIZE_BYTES", 16)
        path = _write(tmp_path / "org.yaml", ORG_YAML)

        with pytest.raises(ManifestLoadError, match="exceeds maximum size"):
            load_manifest_file(path)

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestLoadError, match="not found"):
            load_manifests(tmp_path / "missing")


class TestSeedStore:
    """Tests for seeding the store."""

    @pytest.mark.asyncio
    async def test_existing_objects_skipped(self, tmp_path: Path) -> None:
        store = InMemoryStore()
        loaded = load_manifest_file(_write(tmp_path / "all.yaml", SECRET_YAML, ORG_YAML))

        assert await seed_store(store, loaded) == 2
        assert await seed_store(store, loaded) == 0
        assert len(store) == 2
