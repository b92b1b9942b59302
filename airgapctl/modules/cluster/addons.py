"""Cluster add-ons deployed from the primary execution node.

Helm charts and manifests come from the resource bundle. When a private
registry is configured, image references are rewritten to it before the
chart or manifest is applied.
"""
import logging
import posixpath
from typing import Callable, Dict, List, Optional, Tuple

from airgapctl.modules.errors import AirgapError, CommandError, ProtocolError
from . import constants, images
from .config import ClusterSpec, InstallMode, NodeSpec
from .installer import ACCELERATOR_PROBE_COMMAND, parse_accelerator_output
from .pipeline import Step

logger = logging.getLogger("airgapctl.cluster.addons")

NODE_ADDRESSES_COMMAND = (
    "kubectl get nodes -o custom-columns="
    "'NAME:.metadata.name,IP:.status.addresses[?(@.type==\"InternalIP\")].address' --no-headers"
)

SED_SPECIAL = "\\.*[]^$|"


def sed_escape(value: str) -> str:
    """Escape a literal for use as a sed pattern with `|` as delimiter."""
    return "".join(f"\\{c}" if c in SED_SPECIAL else c for c in value)


def registry_replacements(group_images: List[str], registry_host: str) -> List[Tuple[str, str]]:
    """(old, new) pairs rewriting image references to the private registry.

    Full repositories come first, then bare registry hosts, longest match
    first so that a host is never replaced inside an already-rewritten path.
    """
    replacements: Dict[str, str] = {}
    for image in group_images:
        src_repo, _ = images.split_image(image)
        dst_repo, _ = images.split_image(images.replace_image_registry(image, registry_host))
        replacements[src_repo] = dst_repo
        src_registry = src_repo.split("/", 1)[0]
        replacements.setdefault(src_registry, registry_host)
    return sorted(replacements.items(), key=lambda item: len(item[0]), reverse=True)


class AddonDeployer:
    """Builds and runs the add-on steps for the primary execution node."""

    def __init__(
        self,
        run: Callable[[str], str],
        spec: ClusterSpec,
        node: NodeSpec,
        remote_tmp_dir: str,
        has_gpu: bool = False,
        has_npu: bool = False,
        connect: Optional[Callable[[NodeSpec], object]] = None,
    ):
        """
        Args:
            run: Runs a command on this node
            spec: Validated cluster spec
            node: The primary execution node
            remote_tmp_dir: Where the resource bundle was extracted
            has_gpu: Whether this node has an NVIDIA GPU
            has_npu: Whether this node has an Ascend NPU
            connect: Opens an SSH connection to another node (accelerator probing)
        """
        self.run = run
        self.spec = spec
        self.node = node
        self.remote_tmp_dir = remote_tmp_dir
        self.has_gpu = has_gpu
        self.has_npu = has_npu
        self.connect = connect
        self.prefix = f"[{node.ip}] "

    def steps(self) -> List[Step]:
        """Add-on steps for the current install mode, in deployment order."""
        addons = self.spec.addons
        mode = self.spec.install_mode
        steps: List[Step] = []

        if mode.deploys_addons and addons.kube_ovn.enabled:
            steps.append(Step(
                "Deploy Kube-OVN CNI",
                lambda: self._file_exists(constants.KUBE_OVN_CNI_CONF),
                self.deploy_kube_ovn,
            ))
        if mode.deploys_addons and addons.multus_cni.enabled:
            steps.append(Step(
                "Deploy Multus CNI",
                lambda: self._file_exists(constants.MULTUS_CNI_CONF),
                self.deploy_multus_cni,
            ))

        if mode is not InstallMode.ADDONS_ONLY:
            return steps

        if addons.kube_prometheus.enabled:
            steps.append(Step(
                "Deploy kube-prometheus-stack",
                lambda: self._helm_release_exists("monitoring", "kube-prometheus-stack"),
                self.deploy_kube_prometheus_stack,
            ))
        if addons.hami.enabled:
            steps.extend([
                Step(
                    "Deploy HAMI",
                    lambda: self._helm_release_exists("kube-system", "hami"),
                    self.deploy_hami,
                ),
                Step(
                    "Deploy HAMI-WebUI",
                    lambda: self._helm_release_exists("kube-system", "hami-webui"),
                    self.deploy_hami_webui,
                ),
                Step(
                    "Deploy ascend-device-plugin",
                    self.check_ascend_device_plugin,
                    self.deploy_ascend_device_plugin,
                ),
            ])
        return steps

    # --- checks ---

    def _file_exists(self, path: str) -> bool:
        try:
            self.run(f"test -e {path}")
        except CommandError:
            return False
        return True

    def _helm_release_exists(self, namespace: str, release: str) -> bool:
        out = self.run(f"helm -n {namespace} list -q | grep -w '^{release}$' || true")
        return out.strip() == release

    def check_ascend_device_plugin(self) -> bool:
        """Satisfied when HAMi is absent, no node is labelled ascend, or the plugin runs."""
        if not self._helm_release_exists("kube-system", "hami"):
            return True
        nodes = self.run("kubectl get node -l ascend=on -o name")
        if not nodes.strip():
            return True
        out = self.run("kubectl get ds -n kube-system hami-ascend-device-plugin --ignore-not-found -o name")
        return out.strip() != ""

    # --- helpers ---

    def _path(self, *parts: str) -> str:
        return posixpath.join(self.remote_tmp_dir, *parts)

    def ensure_admin_conf(self) -> None:
        if not self._file_exists(constants.ADMIN_CONF):
            raise ProtocolError("admin.conf not found on master node")

    def rewrite_helm_values(self, group: str, values_path: str) -> None:
        """Point every image of `group` in a values file at the private registry."""
        registry = self.spec.registry
        if not registry.enabled:
            return
        group_images = images.images_by_group().get(group, [])
        for old, new in registry_replacements(group_images, registry.host):
            self.run(f"sed -i 's|{sed_escape(old)}|{new}|g' {values_path}")

    def deploy_helm_addon(self, release: str, group: str, chart_dir: str, chart: str, namespace: str) -> None:
        self.ensure_admin_conf()
        base = self._path("helm-resource", chart_dir)
        chart_path = posixpath.join(base, chart)
        values_path = posixpath.join(base, "values.yaml")
        self.rewrite_helm_values(group, values_path)
        logger.info(f"{self.prefix}📦 helm install {release} -n {namespace}")
        self.run(f"helm install {release} {chart_path} -n {namespace} -f {values_path} --create-namespace")

    # --- add-ons ---

    def deploy_kube_ovn(self) -> None:
        self.run(
            "kubectl label node -l beta.kubernetes.io/os=linux kubernetes.io/os=linux --overwrite > /dev/null 2>&1 "
            "&& kubectl label node -l node-role.kubernetes.io/control-plane kube-ovn/role=master --overwrite "
            "> /dev/null 2>&1"
        )
        version = self.spec.addons.kube_ovn.version
        self.deploy_helm_addon(
            "kube-ovn", images.KUBE_OVN_IMAGES, "cni/kube-ovn",
            constants.chart_archive("kube-ovn", f"v{version}"), "kube-system",
        )

    def deploy_multus_cni(self) -> None:
        self.ensure_admin_conf()
        manifest = self._path("cni", "multus-cni", "multus-daemonset-thick.yml")
        registry = self.spec.registry
        if registry.enabled:
            image = f"{registry.host}/{constants.DEFAULT_MULTUS_IMAGE}"
            self.run(f"sed -i 's|{sed_escape(constants.UPSTREAM_MULTUS_IMAGE)}|{image}|g' {manifest}")
        self.run(f"kubectl apply -f {manifest}")

    def deploy_kube_prometheus_stack(self) -> None:
        version = self.spec.addons.kube_prometheus.version
        self.deploy_helm_addon(
            "kube-prometheus-stack", images.KUBE_PROMETHEUS_IMAGES, "kube-prometheus-stack",
            constants.chart_archive("kube-prometheus-stack", version), "monitoring",
        )

    def deploy_hami(self) -> None:
        self.ensure_admin_conf()
        has_ascend = self.label_accelerator_nodes()
        values_path = self._path("helm-resource", "hami", "hami", "values.yaml")
        if has_ascend:
            self.run(f"sed -i '/ascend:/,/enabled:/ s/enabled: false/enabled: true/' {values_path}")
        version = self.spec.addons.hami.version
        self.deploy_helm_addon(
            "hami", images.HAMI_IMAGES, "hami/hami",
            constants.chart_archive("hami", version), "kube-system",
        )

    def deploy_hami_webui(self) -> None:
        self.deploy_helm_addon(
            "hami-webui", images.HAMI_WEBUI_IMAGES, "hami/hami-webui",
            constants.chart_archive("hami-webui", constants.HAMI_WEBUI_VERSION), "kube-system",
        )

    def deploy_ascend_device_plugin(self) -> None:
        self.ensure_admin_conf()
        manifest = self._path("helm-resource", "hami", "ascend-device-plugin", "ascend-device-plugin.yaml")
        registry = self.spec.registry
        if registry.enabled:
            self.run(f"sed -i 's|docker\\.io|{registry.host}|g' {manifest}")
        self.run(f"kubectl apply -f {manifest}")

    # --- accelerator labels ---

    def node_names_by_ip(self) -> Dict[str, str]:
        out = self.run(NODE_ADDRESSES_COMMAND)
        names = {}
        for line in out.strip().splitlines():
            parts = line.split()
            if len(parts) >= 2:
                names[parts[1]] = parts[0]
        return names

    def probe_accelerators(self, node: NodeSpec) -> Tuple[bool, bool]:
        if node.ip == self.node.ip:
            return self.has_gpu, self.has_npu
        if self.connect is None:
            raise AirgapError(f"no connection factory to probe {node.ip}")
        with self.connect(node) as conn:
            return parse_accelerator_output(conn.run_command(ACCELERATOR_PROBE_COMMAND))

    def label_accelerator_nodes(self) -> bool:
        """Label GPU and NPU nodes; return True if any node has an Ascend NPU."""
        names = self.node_names_by_ip()
        has_ascend = False
        for node in self.spec.nodes:
            name = names.get(node.ip)
            if name is None:
                continue
            try:
                gpu, npu = self.probe_accelerators(node)
            except AirgapError as e:
                logger.warning(f"{self.prefix}Failed to probe accelerators on {node.ip}: {e}")
                continue
            if gpu:
                self.run(f"kubectl label node {name} gpu=on --overwrite")
            if npu:
                self.run(f"kubectl label node {name} ascend=on --overwrite")
                has_ascend = True
        return has_ascend
