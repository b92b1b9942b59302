"""Cluster installation command."""
import logging
from pathlib import Path

import typer

from airgapctl.modules.cluster.report import exit_code, print_summary
from airgapctl.modules.cluster.scheduler import NodeScheduler
from . import load_validated_spec

logger = logging.getLogger("airgapctl.install")


def install(
    config: Path = typer.Option(..., "--config", "-c", help="Path to the cluster YAML file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Run checks only and report what would change"),
):
    """Install or extend an offline Kubernetes cluster."""
    spec = load_validated_spec(config)
    mode = "🔎 Dry run" if dry_run else "🚀 Installing"
    typer.echo(
        f"{mode}: {len(spec.nodes)} node(s), mode={spec.install_mode.value}, "
        f"runtime={spec.container_runtime.value}, ha={'on' if spec.ha.enabled else 'off'}"
    )

    scheduler = NodeScheduler(spec, dry_run=dry_run)
    results = scheduler.run()
    print_summary(results, dry_run=dry_run, sync_state=scheduler.sync_state)

    code = exit_code(results)
    if code:
        logger.error(f"{sum(1 for r in results if not r.ok)} node(s) did not complete")
    raise typer.Exit(code=code)
