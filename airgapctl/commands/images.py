"""Image catalogue commands."""
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from airgapctl.modules.cluster.images import required_images
from airgapctl.modules.cluster.registry_sync import build_sync_item, default_sync_engine
from airgapctl.modules.errors import AirgapError
from . import load_validated_spec


def list_images(config: Path = typer.Option(..., "--config", "-c", help="Path to the cluster YAML file")):
    """Print the images the cluster needs and where they are mirrored to."""
    spec = load_validated_spec(config)
    images = required_images(spec)

    table = Table(title=f"Required images ({len(images)})")
    table.add_column("Image", style="cyan")
    table.add_column("Registry target")
    for image in images:
        target = build_sync_item(image, spec.registry.host).target if spec.registry.enabled else "-"
        table.add_row(image, target)
    Console().print(table)


def sync_images(config: Path = typer.Option(..., "--config", "-c", help="Path to the cluster YAML file")):
    """Mirror the required images into the configured registry."""
    spec = load_validated_spec(config)
    if not spec.registry.enabled:
        typer.echo("❌ No registry configured (registry.endpoint is empty)", err=True)
        raise typer.Exit(code=1)

    images = required_images(spec)
    typer.echo(f"📦 Syncing {len(images)} image(s) to {spec.registry.host}")
    try:
        synced, present = default_sync_engine(spec).run(images)
    except AirgapError as e:
        typer.echo(f"❌ Image sync failed: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"✅ {len(synced)} image(s) pushed, {len(present)} already present")
