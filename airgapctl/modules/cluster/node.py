"""Step list assembly and execution for a single node.

Which step groups a node gets depends on a handful of facts (role, install
mode, HA, registry, accelerators). The plan is a fixed, ordered table of
(predicate, group) pairs evaluated once per run, so the resulting step
sequence can be inspected without touching a machine.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from airgapctl.modules.errors import AirgapError, CommandError, NodeRunError
from airgapctl.modules.ssh import connect_node
from . import images
from .addons import AddonDeployer
from .bootstrap import ClusterBootstrap
from .config import ClusterSpec, ContainerRuntime, InstallMode, NodeSpec
from .installer import NodeInstaller, detect_environment, select_installer
from .loadbalancer import LoadBalancerSetup
from .models import JoinArtifacts, RegistrySyncState
from .pipeline import PipelineObserver, Step, StepOutcome, run_pipeline
from .registry_sync import RegistrySyncEngine, RegistrySyncStep, default_sync_engine
from .resources import ResourceDistributor

logger = logging.getLogger("airgapctl.cluster.node")


@dataclass(frozen=True)
class RunFacts:
    """Everything the step plan depends on."""
    install_mode: InstallMode
    container_runtime: ContainerRuntime
    is_master: bool
    is_primary_execution: bool
    ha_enabled: bool
    registry_enabled: bool
    has_gpu: bool = False
    has_npu: bool = False

    @classmethod
    def for_node(cls, spec: ClusterSpec, node: NodeSpec, has_gpu: bool = False, has_npu: bool = False) -> "RunFacts":
        return cls(
            install_mode=spec.install_mode,
            container_runtime=spec.container_runtime,
            is_master=node.is_master,
            is_primary_execution=spec.is_primary_execution_node(node),
            ha_enabled=spec.ha.enabled,
            registry_enabled=spec.registry.enabled,
            has_gpu=has_gpu,
            has_npu=has_npu,
        )

    @property
    def prepares_node(self) -> bool:
        return self.install_mode.prepares_nodes


# Evaluated top to bottom; the order is the execution order.
STEP_PLAN: List[Tuple[Callable[[RunFacts], bool], str]] = [
    (lambda f: True, "resources"),
    (lambda f: f.prepares_node, "os_baseline"),
    (lambda f: f.prepares_node, "common_tools"),
    (lambda f: f.prepares_node and f.container_runtime is ContainerRuntime.CONTAINERD, "containerd_runtime"),
    (lambda f: f.prepares_node and f.container_runtime is ContainerRuntime.DOCKER_CE, "docker_ce_runtime"),
    (lambda f: f.prepares_node, "runtime_config"),
    (lambda f: f.prepares_node and f.is_primary_execution, "helm"),
    (lambda f: f.prepares_node and f.ha_enabled and f.is_master, "load_balancer"),
    (lambda f: f.prepares_node and f.registry_enabled, "registry_mirror"),
    (lambda f: f.prepares_node and not f.registry_enabled, "offline_images"),
    (lambda f: f.prepares_node and (f.has_gpu or f.has_npu), "accelerator"),
    (lambda f: f.prepares_node, "kubernetes"),
    (lambda f: f.registry_enabled and f.is_primary_execution, "registry_sync"),
    (lambda f: f.install_mode.bootstraps_cluster, "bootstrap"),
    (lambda f: f.is_primary_execution and f.install_mode.deploys_addons, "addons"),
]


def plan_groups(facts: RunFacts) -> List[str]:
    """Names of the step groups a node with these facts runs, in order."""
    return [group for predicate, group in STEP_PLAN if predicate(facts)]


class NodeRun:
    """One node's installation: connect, probe, assemble steps, run them."""

    def __init__(
        self,
        spec: ClusterSpec,
        index: int,
        artifacts: JoinArtifacts,
        sync_state: RegistrySyncState,
        dry_run: bool = False,
        observer: Optional[PipelineObserver] = None,
        connect: Callable = connect_node,
        sync_engine_factory: Optional[Callable[[ClusterSpec], RegistrySyncEngine]] = None,
        position: int = 0,
    ):
        """
        Args:
            spec: Validated cluster spec
            index: Position of the node in spec.nodes
            artifacts: Join commands shared by every node of this run
            sync_state: Image mirror state shared by every node of this run
            dry_run: Only report what would change
            observer: Receives pipeline events
            connect: Opens the SSH connection for a node
            sync_engine_factory: Builds the registry sync engine
            position: 1-based order in which the scheduler started this node
        """
        self.spec = spec
        self.index = index
        self.node = spec.nodes[index]
        self.artifacts = artifacts
        self.sync_state = sync_state
        self.dry_run = dry_run
        self.observer = observer
        self.connect = connect
        self.sync_engine_factory = sync_engine_factory or default_sync_engine
        self.position = position or index + 1
        self.prefix = f"[{self.node.ip}] "

        self.conn = None
        self.installer: Optional[NodeInstaller] = None
        self.facts: Optional[RunFacts] = None

    def execute(self) -> List[Tuple[str, StepOutcome]]:
        """Run the node's pipeline.

        Raises:
            NodeRunError: wrapping whatever stopped the run
        """
        try:
            self.conn = self.connect(self.node, self.spec)
            try:
                self.prepare()
                steps = self.build_steps()
                return run_pipeline(steps, self.prefix, self.dry_run, self.observer)
            finally:
                self.conn.close()
        except AirgapError as e:
            raise NodeRunError(self.node.ip, e) from e

    def prepare(self) -> None:
        """Probe the node and pick its installer."""
        ctx = detect_environment(self.conn, self.spec)
        self.installer = select_installer(ctx)
        self.facts = RunFacts.for_node(self.spec, self.node, ctx.has_gpu, ctx.has_npu)
        logger.info(
            f"{self.prefix}({self.position}/{len(self.spec.nodes)} {self.node.role}) detected "
            f"{ctx.system_name} {ctx.system_version} | kernel {ctx.kernel_version} | arch {ctx.arch} "
            f"| GPU: {ctx.has_gpu} | NPU: {ctx.has_npu} | installer: {self.installer.name}"
        )

    def build_steps(self) -> List[Step]:
        steps: List[Step] = []
        for group in plan_groups(self.facts):
            steps.extend(getattr(self, f"_{group}_steps")())
        return steps

    @property
    def ctx(self):
        return self.installer.ctx

    # --- step groups ---

    def _resources_steps(self) -> List[Step]:
        distributor = ResourceDistributor(
            self.conn, self.spec.resource_package, self.spec.remote_tmp_dir, self.prefix
        )
        return [Step("Distribute offline resources", distributor.check, distributor.distribute)]

    def _os_baseline_steps(self) -> List[Step]:
        i = self.installer
        return [
            Step("Disable SELinux", i.check_selinux, i.disable_selinux),
            Step("Disable firewall", i.check_firewall, i.disable_firewall),
            Step("Disable swap", i.check_swap, i.disable_swap),
            Step("Load kernel modules", i.check_kernel_modules, i.load_kernel_modules),
            Step("Configure sysctl", i.check_sysctl, i.configure_sysctl),
        ]

    def _common_tools_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Install common tools", i.check_common_tools, i.install_common_tools)]

    def _containerd_runtime_steps(self) -> List[Step]:
        i = self.installer
        return [
            Step("Install containerd", i.check_containerd_binaries, i.install_containerd_binaries),
            Step("Install runc", i.check_runc, i.install_runc),
            Step("Install containerd service", i.check_containerd_service, i.configure_containerd_service),
        ]

    def _docker_ce_runtime_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Install docker-ce packages", i.check_docker_ce, i.install_docker_ce)]

    def _runtime_config_steps(self) -> List[Step]:
        i = self.installer
        return [
            Step("Configure cgroup and start containerd", i.check_containerd_running, i.configure_and_start_containerd),
            Step("Configure crictl endpoint", i.check_crictl, i.configure_crictl),
            Step("Install nerdctl", i.check_nerdctl, i.install_nerdctl),
        ]

    def _helm_steps(self) -> List[Step]:
        return [Step("Install Helm", self.check_helm, self.install_helm)]

    def _load_balancer_steps(self) -> List[Step]:
        i = self.installer
        lb = LoadBalancerSetup(self.conn.run_command, self.spec, self.node)
        return [
            Step("Configure LB sysctl", lb.check_sysctl, lb.configure_sysctl),
            Step("Install HAProxy", i.check_haproxy, i.install_haproxy),
            Step("Configure HAProxy", lb.check_haproxy_config, lb.configure_haproxy),
            Step("Install Keepalived", i.check_keepalived, i.install_keepalived),
            Step("Configure Keepalived", lb.check_keepalived_config, lb.configure_keepalived),
        ]

    def _registry_mirror_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Configure containerd registry mirror", i.check_registry_mirror, i.configure_registry_mirror)]

    def _offline_images_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Import offline images", i.check_images, i.import_images)]

    def _accelerator_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Configure accelerator runtime", i.check_accelerator, i.configure_accelerator)]

    def _kubernetes_steps(self) -> List[Step]:
        i = self.installer
        return [Step("Install Kubernetes components", i.check_k8s_components, i.install_k8s_components)]

    def _registry_sync_steps(self) -> List[Step]:
        sync = RegistrySyncStep(
            self.sync_engine_factory(self.spec), images.required_images(self.spec), self.sync_state
        )
        return [Step("Sync images to private registry", sync.check, sync.action)]

    def _bootstrap_steps(self) -> List[Step]:
        bootstrap = ClusterBootstrap(self.conn.run_command, self.spec, self.node, self.artifacts)
        return [Step("Initialize or join cluster", bootstrap.check, bootstrap.execute)]

    def _addons_steps(self) -> List[Step]:
        deployer = AddonDeployer(
            self.conn.run_command,
            self.spec,
            self.node,
            self.spec.remote_tmp_dir,
            has_gpu=self.ctx.has_gpu,
            has_npu=self.ctx.has_npu,
            connect=lambda other: self.connect(other, self.spec),
        )
        return deployer.steps()

    # --- helm ---

    def check_helm(self) -> bool:
        try:
            out = self.conn.run_command("helm version --short")
        except CommandError:
            return False
        return out.strip() != ""

    def install_helm(self) -> None:
        arch = self.ctx.arch
        tarball_dir = f"{self.spec.remote_tmp_dir}/helm/{arch}"
        self.conn.run_command(
            f"cd {tarball_dir} && tar -zxvf helm-v*-linux-{arch}.tar.gz >/dev/null "
            f"&& mv linux-{arch}/helm /usr/local/bin/helm && rm -rf linux-{arch}"
        )
