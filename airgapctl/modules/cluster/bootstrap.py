"""kubeadm init/join and the hand-off of join commands between nodes.

The primary master initializes the cluster and publishes the join commands
into the run's JoinArtifacts. Secondary masters and workers only read them;
the scheduler guarantees the primary master finished before they start.
"""
import logging
import re
from typing import Callable

from airgapctl.modules.errors import CertificateKeyError, CommandError
from . import constants
from .config import ClusterSpec, NodeSpec
from .models import JoinArtifacts

logger = logging.getLogger("airgapctl.cluster.bootstrap")

CERTIFICATE_KEY_PATTERN = re.compile(r"[a-f0-9]{32,64}")


def extract_certificate_key(output: str) -> str:
    """Return the last hex token of `kubeadm init phase upload-certs` output.

    Raises:
        CertificateKeyError: if the output holds no candidate key
    """
    matches = CERTIFICATE_KEY_PATTERN.findall(output.lower())
    if not matches:
        raise CertificateKeyError(output)
    return matches[-1]


def build_init_command(spec: ClusterSpec) -> str:
    """`kubeadm init` for the primary master."""
    cmd = (
        f"kubeadm init --v 0 "
        f"--kubernetes-version=v{spec.versions.k8s} "
        f"--image-repository={spec.image_repository()}"
    )
    if spec.ha.enabled:
        cmd += (
            f' --control-plane-endpoint "{spec.ha.vip_host}:{constants.HA_APISERVER_PORT}"'
            f" --upload-certs"
        )
    return cmd


class ClusterBootstrap:
    """Initialize or join the cluster from one node."""

    def __init__(
        self,
        run: Callable[[str], str],
        spec: ClusterSpec,
        node: NodeSpec,
        artifacts: JoinArtifacts,
    ):
        self.run = run
        self.spec = spec
        self.node = node
        self.artifacts = artifacts
        self.prefix = f"[{node.ip}] "

    @property
    def is_primary(self) -> bool:
        return self.spec.is_primary_execution_node(self.node)

    def _exists(self, path: str) -> bool:
        try:
            self.run(f"test -f {path}")
        except CommandError:
            return False
        return True

    def check(self) -> bool:
        """True when the node is already part of the cluster.

        An initialized primary master regenerates the join commands before
        reporting success so later nodes can still join.
        """
        if not self.node.is_master:
            return self._exists(constants.KUBELET_CONF)
        if not self._exists(constants.ADMIN_CONF):
            return False
        if self.is_primary:
            logger.info(f"{self.prefix}cluster already initialized, regenerating join commands")
            self.generate_join_artifacts()
        return True

    def execute(self) -> None:
        if not self.node.is_master:
            self.join(self.artifacts.worker_join_command)
        elif not self.is_primary:
            self.join(self.artifacts.master_join_command)
        else:
            self.init_cluster()

    def init_cluster(self) -> None:
        cmd = build_init_command(self.spec)
        logger.info(f"{self.prefix}🚀 Initializing cluster: {cmd}")
        self.run(cmd)
        self.run(
            f"mkdir -p $HOME/.kube && cp -f {constants.ADMIN_CONF} $HOME/.kube/config "
            f"&& chown $(id -u):$(id -g) $HOME/.kube/config"
        )
        self.generate_join_artifacts()

    def join(self, join_command: str) -> None:
        logger.info(f"{self.prefix}🔗 Joining cluster as {self.node.role}")
        self.run(join_command)

    def generate_join_artifacts(self) -> None:
        """Create the worker join command, and with HA the control-plane variant."""
        worker_join = self.run("kubeadm token create --print-join-command").strip()
        master_join = ""
        if self.spec.ha.enabled:
            certs_output = self.run("kubeadm init phase upload-certs --upload-certs")
            key = extract_certificate_key(certs_output)
            master_join = f"{worker_join} --control-plane --certificate-key {key}"
        self.artifacts.publish(worker_join, master_join)
        logger.info(f"{self.prefix}Join commands published")
