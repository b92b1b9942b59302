"""
Offline Kubernetes cluster installation.

Key pieces:
- Check-then-act step pipeline with dry-run support
- Per-node step plans driven by role, install mode, HA and registry settings
- kubeadm bootstrap with join command hand-off between nodes
- HAProxy/Keepalived control plane load balancing
- Idempotent image mirroring into a Harbor-compatible registry
- Scheduler running masters in order and workers concurrently
"""
from .config import (
    ClusterSpec,
    InstallMode,
    NodeSpec,
    apply_defaults_and_validate,
    load_cluster_spec,
)
from .models import JoinArtifacts, RegistrySyncState, RunResult
from .pipeline import Step, run_pipeline
from .scheduler import NodeScheduler

__all__ = [
    'ClusterSpec',
    'InstallMode',
    'NodeSpec',
    'apply_defaults_and_validate',
    'load_cluster_spec',
    'JoinArtifacts',
    'RegistrySyncState',
    'RunResult',
    'Step',
    'run_pipeline',
    'NodeScheduler',
]
