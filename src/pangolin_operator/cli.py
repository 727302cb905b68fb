"""Pangolin operator CLI.

Usage:
    pangolin-operator validate manifests/      # Validate manifests
    pangolin-operator run --manifests ./demo    # Run the operator locally
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import click

from . import __version__
from .config import VALID_LOG_FORMATS, VALID_LOG_LEVELS, Config, ConfigurationError
from .main import run_operator, setup_logging
from .spec_loader import ManifestLoadError, load_manifests


@click.group()
@click.version_option(version=__version__, prog_name="pangolin-operator")
def cli() -> None:
    """Pangolin operator.

    Converges PangolinOrganization, PangolinTunnel, PangolinResource and
    PangolinBinding objects against a Pangolin control plane.
    """
    pass


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
def validate(path: Path) -> None:
    """Validate a manifest file or a directory of manifests."""
    try:
        objects = load_manifests(path)
    except ManifestLoadError as e:
        raise click.ClickException(str(e)) from e

    for obj in objects:
        click.echo(f"  {obj.kind} {obj.namespace}/{obj.name}")
    click.secho(f"✓ {len(objects)} manifest(s) valid", fg="green")


@cli.command()
@click.option(
    "--manifests",
    "-m",
    type=click.Path(exists=True, path_type=Path),
    help="Manifest file or directory to seed the store with (default: MANIFESTS_DIR)",
)
@click.option(
    "--log-level",
    type=click.Choice(VALID_LOG_LEVELS, case_sensitive=False),
    help="Log level (default: LOG_LEVEL or INFO)",
)
@click.option(
    "--log-format",
    type=click.Choice(VALID_LOG_FORMATS),
    help="Log format (default: LOG_FORMAT or json)",
)
def run(manifests: Path | None, log_level: str | None, log_format: str | None) -> None:
    """Run the operator until interrupted."""
    try:
        config = Config.from_env()
        overrides: dict[str, object] = {}
        if manifests is not None:
            overrides["manifests_dir"] = manifests
        if log_level is not None:
            overrides["log_level"] = log_level.upper()
        if log_format is not None:
            overrides["log_format"] = log_format
        if overrides:
            config = dataclasses.replace(config, **overrides)  # type: ignore[arg-type]
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(config.log_level, config.log_format)
    exit_code = asyncio.run(run_operator(config))
    if exit_code != 0:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    cli()
