"""Cluster file models, loading and validation.

The cluster file is YAML describing SSH defaults, version pins, the private
registry, HA settings, add-ons and the node list. It is parsed into pydantic
models once per process and validated by `apply_defaults_and_validate`
before any node is touched.
"""
import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from airgapctl.config import Config
from airgapctl.modules.errors import ConfigError
from . import constants

logger = logging.getLogger("airgapctl.cluster.config")


class InstallMode(str, Enum):
    """Which step groups a node run includes."""
    FULL = "full"
    ADDONS_ONLY = "addons-only"
    INSTALL_ONLY = "install-only"
    PRE_INIT = "pre-init"

    @property
    def prepares_nodes(self) -> bool:
        """OS baseline, container runtime and Kubernetes packages."""
        return self is not InstallMode.ADDONS_ONLY

    @property
    def bootstraps_cluster(self) -> bool:
        return self is InstallMode.FULL

    @property
    def deploys_addons(self) -> bool:
        return self in (InstallMode.FULL, InstallMode.ADDONS_ONLY)


class ContainerRuntime(str, Enum):
    CONTAINERD = "containerd"
    DOCKER_CE = "docker-ce"


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)


class NodeSpec(_Model):
    """One machine of the fleet."""
    ip: str = Field(default="", description="Address the node is reached at over SSH")
    password: str = Field(default="", description="SSH password")
    user: Optional[str] = Field(default=None, description="Overrides the global SSH user")
    ssh_port: Optional[int] = Field(default=None, description="Overrides the global SSH port")
    ssh_key_path: Optional[str] = Field(default=None, description="Overrides the global SSH key")
    interface: str = Field(default="", description="Network interface carrying the VIP (HA masters)")
    is_master: bool = False
    is_primary_master: bool = False

    @property
    def role(self) -> str:
        return "master" if self.is_master else "worker"


class RegistryConfig(_Model):
    """Harbor-compatible private registry the cluster pulls from."""
    endpoint: str = Field(default="", description="Registry host name")
    ip: str = Field(default="", description="Registry IP, written to /etc/hosts on every node")
    port: int = 0
    username: str = ""
    password: str = ""
    use_http: bool = True

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint.strip())

    @property
    def host(self) -> str:
        return f"{self.endpoint}:{self.port}"

    @property
    def scheme(self) -> str:
        return "http" if self.use_http else "https"


class HAConfig(_Model):
    enabled: bool = False
    virtual_ip: str = Field(default="", description="VIP, optionally with a prefix length (10.0.0.100/24)")

    @property
    def vip_host(self) -> str:
        """The VIP without its prefix length."""
        return self.virtual_ip.strip().split("/", 1)[0]


class VersionConfig(_Model):
    containerd: str = ""
    runc: str = ""
    nerdctl: str = ""
    docker_ce: str = ""
    k8s: str = ""


class AddonConfig(_Model):
    enabled: bool = False
    version: str = ""


class AddonsConfig(_Model):
    kube_ovn: AddonConfig = Field(default_factory=AddonConfig)
    multus_cni: AddonConfig = Field(default_factory=AddonConfig)
    kube_prometheus: AddonConfig = Field(default_factory=AddonConfig)
    hami: AddonConfig = Field(default_factory=AddonConfig)


class ClusterSpec(_Model):
    """Everything one run needs to know about the fleet."""
    user: str = "root"
    ssh_port: int = 22
    ssh_key_path: Optional[str] = None
    command_timeout_seconds: int = 0
    resource_package: str = ""
    remote_tmp_dir: str = Field(default_factory=lambda: Config.REMOTE_TMP_DIR)
    install_mode: InstallMode = InstallMode.FULL
    container_runtime: ContainerRuntime = ContainerRuntime.CONTAINERD
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    versions: VersionConfig = Field(default_factory=VersionConfig)
    ha: HAConfig = Field(default_factory=HAConfig)
    addons: AddonsConfig = Field(default_factory=AddonsConfig)
    nodes: List[NodeSpec] = Field(default_factory=list)
    join_command: str = Field(default="", description="Join command of an existing cluster (no masters declared)")

    def masters(self) -> List[Tuple[int, NodeSpec]]:
        return [(i, n) for i, n in enumerate(self.nodes) if n.is_master]

    def workers(self) -> List[Tuple[int, NodeSpec]]:
        return [(i, n) for i, n in enumerate(self.nodes) if not n.is_master]

    def master_ips(self) -> List[str]:
        return [n.ip for _, n in self.masters()]

    def is_primary_execution_node(self, node: NodeSpec) -> bool:
        """The master that bootstraps the cluster and installs add-ons."""
        if not node.is_master:
            return False
        if not self.ha.enabled:
            return True
        return node.is_primary_master

    def image_repository(self) -> str:
        """Where kubeadm pulls control plane images from."""
        if self.registry.enabled:
            return f"{self.registry.host}/google_containers"
        return constants.DEFAULT_K8S_IMAGE_REPOSITORY


def load_cluster_spec(path: Union[str, Path]) -> ClusterSpec:
    """Read a cluster YAML file into a ClusterSpec (not yet validated)."""
    path = Path(path).expanduser()
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"cluster config not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        spec = ClusterSpec(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid cluster config {path}: {e}")
    logger.debug(f"Loaded cluster config from {path} with {len(spec.nodes)} node(s)")
    return spec


def _pin(name: str, current: str, supported: List[str]) -> str:
    if not current:
        return supported[0]
    if current not in supported:
        raise ConfigError(f"{name} version {current} is not supported (supported: {', '.join(supported)})")
    return current


def apply_defaults_and_validate(spec: ClusterSpec) -> ClusterSpec:
    """Fill defaults in place and reject configs the orchestrator cannot run.

    Raises:
        ConfigError: describing the first problem found
    """
    if not spec.resource_package.strip():
        raise ConfigError("resource_package is required")
    if not spec.nodes:
        raise ConfigError("no nodes defined")
    if spec.command_timeout_seconds <= 0:
        spec.command_timeout_seconds = Config.COMMAND_TIMEOUT

    versions = spec.versions
    versions.containerd = _pin("Containerd", versions.containerd, constants.CONTAINERD_VERSIONS)
    versions.runc = _pin("Runc", versions.runc, constants.RUNC_VERSIONS)
    versions.nerdctl = _pin("Nerdctl", versions.nerdctl, constants.NERDCTL_VERSIONS)
    versions.docker_ce = _pin("DockerCE", versions.docker_ce, constants.DOCKER_CE_VERSIONS)
    versions.k8s = _pin("Kubernetes", versions.k8s, constants.K8S_VERSIONS)

    addons = spec.addons
    addons.kube_ovn.version = _pin("Kube-OVN", addons.kube_ovn.version, constants.KUBE_OVN_VERSIONS)
    addons.multus_cni.version = _pin("Multus CNI", addons.multus_cni.version, constants.MULTUS_CNI_VERSIONS)
    addons.hami.version = _pin("HAMI", addons.hami.version, constants.HAMI_VERSIONS)
    addons.kube_prometheus.version = _pin(
        "Kube Prometheus Stack", addons.kube_prometheus.version, constants.KUBE_PROMETHEUS_VERSIONS
    )

    for i, node in enumerate(spec.nodes):
        if not node.ip.strip():
            raise ConfigError(f"node[{i}] ip is required")
        if not node.password.strip() and not (node.ssh_key_path or spec.ssh_key_path):
            raise ConfigError(f"node[{i}] password or ssh_key_path is required")
        if not node.is_master:
            node.is_primary_master = False

    ips = [n.ip for n in spec.nodes]
    duplicates = sorted({ip for ip in ips if ips.count(ip) > 1})
    if duplicates:
        raise ConfigError(f"duplicate node ip(s): {', '.join(duplicates)}")

    registry = spec.registry
    if registry.enabled:
        if not registry.ip:
            raise ConfigError("registry ip is required")
        if not registry.port:
            raise ConfigError("registry port is required")
        if not registry.username or not registry.password:
            raise ConfigError("registry username and password are required")

    masters = spec.masters()
    primary_count = sum(1 for _, n in masters if n.is_primary_master)

    if not masters and not spec.join_command.strip():
        raise ConfigError("join_command is required when no master node is declared")

    if spec.ha.enabled:
        if len(masters) != 3:
            raise ConfigError(f"HA mode requires exactly 3 master nodes, got {len(masters)}")
        if primary_count != 1:
            raise ConfigError("HA mode requires exactly 1 primary master node")
        if not spec.ha.virtual_ip.strip():
            raise ConfigError("HA mode requires virtual_ip")
        for idx, node in masters:
            if not node.interface.strip():
                raise ConfigError(f"master node[{idx}] interface is required for HA mode")
    else:
        if len(masters) > 1:
            raise ConfigError(
                f"{len(masters)} master nodes declared without HA; enable ha or declare a single master"
            )
        if primary_count > 1:
            raise ConfigError("at most one node may be the primary master")

    return spec
