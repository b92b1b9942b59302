from pathlib import Path

import typer

from . import load_validated_spec


def validate(config: Path = typer.Option(..., "--config", "-c", help="Path to the cluster YAML file")):
    """Validate a cluster file without touching any node."""
    typer.echo(f"🔍 Validating {config}")
    spec = load_validated_spec(config)
    typer.echo(
        f"✅ Configuration valid: {len(spec.masters())} master(s), {len(spec.workers())} worker(s), "
        f"mode={spec.install_mode.value}, runtime={spec.container_runtime.value}, "
        f"kubernetes={spec.versions.k8s}"
    )
    if spec.ha.enabled:
        typer.echo(f"🔗 HA control plane endpoint: {spec.ha.vip_host}")
    if spec.registry.enabled:
        typer.echo(f"📦 Registry: {spec.registry.scheme}://{spec.registry.host}")
