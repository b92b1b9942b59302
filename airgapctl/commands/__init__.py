"""CLI commands for airgapctl."""
from pathlib import Path

import typer

from airgapctl.modules.cluster.config import ClusterSpec, apply_defaults_and_validate, load_cluster_spec
from airgapctl.modules.errors import ConfigError


def load_validated_spec(config: Path) -> ClusterSpec:
    """Load and validate a cluster file, exiting with status 1 on a config error."""
    try:
        spec = load_cluster_spec(config)
        return apply_defaults_and_validate(spec)
    except ConfigError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)
