"""Tests for the command line interface."""

from pathlib import Path

from click.testing import CliRunner

from pangolin_operator import __version__
from pangolin_operator.cli import cli

ORG_YAML = """\
apiVersion: tunnel.pangolin.io/v1alpha1
kind: PangolinOrganization
metadata:
  name: org
spec:
  apiEndpoint: https://pangolin.example.com
  apiKeyRef:
    name: pangolin-api
"""


class TestValidate:
    """Tests for the validate command."""

    def test_valid_manifests(self, tmp_path: Path) -> None:
        (tmp_path / "org.yaml").write_text(ORG_YAML, encoding="utf-8")

        result = CliRunner().invoke(cli, ["validate", str(tmp_path)])

        assert result.exit_code == 0
        assert "PangolinOrganization default/org" in result.output
        assert "1 manifest(s) valid" in result.output

    def test_invalid_manifest(self, tmp_path: Path) -> None:
        path = tmp_path / "org.yaml"
        path.write_text(ORG_YAML.replace("https://", "ftp://"), encoding="utf-8")

        result = CliRunner().invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Validation failed for PangolinOrganization" in result.output
        assert "apiEndpoint must be an http(s) URL" in result.output

    def test_missing_path(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["validate", str(tmp_path / "missing")])

        assert result.exit_code == 2


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
