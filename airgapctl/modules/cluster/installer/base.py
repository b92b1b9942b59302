"""Base class for OS-specific node installers.

An installer exposes check/act pairs for everything that depends on the
operating system: package format, SELinux, firewall, swap handling and so
on. The node run only ever talks to this interface; the concrete class is
picked once per node from the os-release probe.
"""
import base64
import logging
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from airgapctl.modules.errors import CommandError
from .. import constants
from ..config import ClusterSpec, ContainerRuntime

logger = logging.getLogger("airgapctl.cluster.installer")

CONTAINERD_UNIT = "/usr/lib/systemd/system/containerd.service"
MODULES_CONF = "/etc/modules-load.d/containerd.conf"
SYSCTL_CONF = "/etc/sysctl.d/99-kubernetes-cri.conf"
CRICTL_CONF = "/etc/crictl.yaml"
NVIDIA_RUNTIME_CONF = "/etc/containerd/conf.d/99-nvidia.toml"

DOCKER_UNIT = """[Unit]
Description=Docker Application Container Engine
Documentation=https://docs.docker.com
After=network-online.target containerd.service
Requires=containerd.service

[Service]
Type=notify
ExecStart=/usr/local/bin/dockerd --containerd=/run/containerd/containerd.sock
Restart=always
RestartSec=5
LimitNOFILE=infinity
LimitNPROC=infinity
LimitCORE=infinity
Delegate=yes
KillMode=process

[Install]
WantedBy=multi-user.target
"""

DOCKER_CONTAINERD_UNIT = """[Unit]
Description=containerd container runtime
Documentation=https://containerd.io
After=network.target

[Service]
ExecStart=/usr/local/bin/containerd
Restart=always
RestartSec=5
Delegate=yes
KillMode=process
LimitNOFILE=infinity
LimitNPROC=infinity
LimitCORE=infinity

[Install]
WantedBy=multi-user.target
"""


def dashed(version: str) -> str:
    """Version as used in resource bundle directory names (1.35.0 -> 1-35-0)."""
    return version.replace(".", "-")


def heredoc(path: str, content: str) -> str:
    """Shell command writing `content` to `path` without expansion."""
    return f"cat > {path} <<'EOF'\n{content.rstrip()}\nEOF"


@dataclass
class InstallContext:
    """What an installer knows about its node."""
    spec: ClusterSpec
    arch: str
    system_name: str
    system_version: str
    kernel_version: str
    has_gpu: bool
    has_npu: bool
    remote_tmp_dir: str
    run: Callable[[str], str]


class NodeInstaller(ABC):
    """Check/act pairs for one OS family.

    Checks return True when the node is already converged. Actions raise
    CommandError when a remote command fails.
    """

    name = ""
    package_dir = ""
    package_ext = ""

    def __init__(self, ctx: InstallContext):
        self.ctx = ctx

    @property
    def versions(self):
        return self.ctx.spec.versions

    def run(self, command: str) -> str:
        return self.ctx.run(command)

    def probe(self, command: str) -> Optional[str]:
        """Run a read-only command; None means it exited non-zero."""
        try:
            return self.ctx.run(command)
        except CommandError:
            return None

    def resource(self, *parts: str) -> str:
        return posixpath.join(self.ctx.remote_tmp_dir, *parts)

    def packages(self, *parts: str, pattern: str = "") -> str:
        """Glob of the local packages for this OS family under a bundle directory."""
        pattern = pattern or f"*.{self.package_ext}"
        return self.resource(*parts, self.ctx.arch, self.package_dir, pattern)

    @abstractmethod
    def install_packages_command(self, pattern: str) -> str:
        """Command installing local package files matching a glob."""

    # --- System prep ---

    @abstractmethod
    def check_selinux(self) -> bool:
        pass

    @abstractmethod
    def disable_selinux(self) -> None:
        pass

    @abstractmethod
    def check_firewall(self) -> bool:
        pass

    @abstractmethod
    def disable_firewall(self) -> None:
        pass

    def check_swap(self) -> bool:
        out = self.probe("swapon --show")
        return out is not None and out.strip() == ""

    def disable_swap(self) -> None:
        self.run("swapoff -a")
        self.run(r"sed -ri '/\sswap\s/s/^#?/#/' /etc/fstab")

    def check_kernel_modules(self) -> bool:
        out = self.probe(f"cat {MODULES_CONF}")
        return out is not None and "overlay" in out and "br_netfilter" in out

    def load_kernel_modules(self) -> None:
        self.run(heredoc(MODULES_CONF, "overlay\nbr_netfilter"))
        self.run("modprobe overlay")
        self.run("modprobe br_netfilter")

    def check_sysctl(self) -> bool:
        out = self.probe(f"cat {SYSCTL_CONF}")
        return out is not None and "net.ipv4.ip_forward" in out

    def configure_sysctl(self) -> None:
        self.run(heredoc(SYSCTL_CONF, (
            "net.bridge.bridge-nf-call-iptables  = 1\n"
            "net.ipv4.ip_forward                 = 1\n"
            "net.bridge.bridge-nf-call-ip6tables = 1"
        )))
        self.run("sysctl --system")

    # --- Tools ---

    def check_common_tools(self) -> bool:
        return self.probe("command -v socat && command -v conntrack") is not None

    def install_common_tools(self) -> None:
        self.run(self.install_packages_command(self.packages("common-tools")))

    # --- Container runtime ---

    def check_containerd_binaries(self) -> bool:
        out = self.probe("containerd --version")
        return out is not None and self.versions.containerd in out

    def install_containerd_binaries(self) -> None:
        version = self.versions.containerd
        tarball = self.resource(
            "containerd", self.ctx.arch, dashed(version), f"containerd-{version}-linux-{self.ctx.arch}.tar.gz"
        )
        self.run(f"tar -C /usr/local -xzf {tarball}")

    def check_runc(self) -> bool:
        out = self.probe("runc --version")
        return out is not None and self.versions.runc in out

    def install_runc(self) -> None:
        binary = self.resource("runc", self.ctx.arch, dashed(self.versions.runc), f"runc.{self.ctx.arch}")
        self.run(f"install -m 0755 {binary} /usr/local/bin/runc")

    def check_containerd_service(self) -> bool:
        return self.probe(f"test -f {CONTAINERD_UNIT}") is not None

    def configure_containerd_service(self) -> None:
        self.run(f"cp {self.resource('containerd', 'containerd.service')} {CONTAINERD_UNIT}")
        self.run("systemctl daemon-reload")

    def check_docker_ce(self) -> bool:
        docker = self.probe("docker --version")
        containerd = self.probe("containerd --version")
        runc = self.probe("runc --version")
        if docker is None or containerd is None or runc is None:
            return False
        return (
            self.versions.docker_ce in docker
            and self.versions.containerd in containerd
            and self.versions.runc in runc
        )

    def install_docker_ce(self) -> None:
        """Docker, containerd and runc from the docker-ce tree plus systemd units."""
        arch = self.ctx.arch
        v = self.versions
        docker_tar = self.resource("docker-ce", "docker", arch, dashed(v.docker_ce), f"docker-{v.docker_ce}.tgz")
        containerd_tar = self.resource(
            "docker-ce", "containerd", arch, dashed(v.containerd), f"containerd-{v.containerd}-linux-{arch}.tar.gz"
        )
        runc_bin = self.resource("docker-ce", "runc", arch, dashed(v.runc), f"runc.{arch}")

        self.run(f"tar -xzf {docker_tar} -C /usr/local/src")
        self.run("cp -f /usr/local/src/docker/* /usr/local/bin/")
        self.run(f"tar -C /usr/local -xzf {containerd_tar}")
        self.run(f"install -m 755 {runc_bin} /usr/local/sbin/runc")
        self.run("mkdir -p /etc/docker /var/lib/docker /run/containerd")
        self.run(heredoc("/etc/systemd/system/docker.service", DOCKER_UNIT))
        self.run(heredoc("/etc/systemd/system/containerd.service", DOCKER_CONTAINERD_UNIT))
        self.run("systemctl daemon-reload")

    def check_containerd_running(self) -> bool:
        config = self.probe(f"cat {constants.CONTAINERD_CONFIG}")
        if config is None or "SystemdCgroup = true" not in config:
            return False
        if self.probe("systemctl is-active containerd") is None:
            return False
        if self.ctx.spec.container_runtime is ContainerRuntime.DOCKER_CE:
            return self.probe("systemctl is-active docker") is not None
        return True

    def configure_and_start_containerd(self) -> None:
        config = constants.CONTAINERD_CONFIG
        pause = constants.DEFAULT_PAUSE_IMAGE
        self.run("mkdir -p /etc/containerd")
        self.run(f"containerd config default > {config}")
        self.run(f"sed -i 's/SystemdCgroup = false/SystemdCgroup = true/g' {config}")
        self.run(
            f"sed -i \"s|sandbox = 'registry.k8s.io/{pause}'|"
            f"sandbox = '{constants.DEFAULT_K8S_IMAGE_REPOSITORY}/{pause}'|g\" {config}"
        )
        self.run("systemctl daemon-reload")
        self.run("systemctl enable --now containerd")
        if self.ctx.spec.container_runtime is ContainerRuntime.DOCKER_CE:
            self.run("systemctl enable --now docker")

    def check_registry_mirror(self) -> bool:
        registry = self.ctx.spec.registry
        config = self.probe(f"cat {constants.CONTAINERD_CONFIG}")
        hosts = self.probe(f"cat /etc/containerd/certs.d/{registry.host}/hosts.toml")
        if config is None or hosts is None:
            return False
        return (
            f"{registry.host}/google_containers/{constants.DEFAULT_PAUSE_IMAGE}" in config
            and f'server = "{registry.scheme}://{registry.host}"' in hosts
        )

    def configure_registry_mirror(self) -> None:
        """Point containerd at the private registry through certs.d/hosts.toml."""
        registry = self.ctx.spec.registry
        config = constants.CONTAINERD_CONFIG
        pause = constants.DEFAULT_PAUSE_IMAGE
        url = f"{registry.scheme}://{registry.host}"
        auth = base64.b64encode(f"{registry.username}:{registry.password}".encode()).decode()

        self.run(
            "sed -i \"s|config_path = '/etc/containerd/certs.d:/etc/docker/certs.d'|"
            f"config_path = '/etc/containerd/certs.d'|g\" {config}"
        )
        self.run(
            f"sed -i \"s|sandbox = '{constants.DEFAULT_K8S_IMAGE_REPOSITORY}/{pause}'|"
            f"sandbox = '{registry.host}/google_containers/{pause}'|g\" {config}"
        )
        hosts_entry = f"{registry.ip} {registry.endpoint}"
        self.run(f"grep -qxF '{hosts_entry}' /etc/hosts || echo '{hosts_entry}' >> /etc/hosts")

        self.run(f"mkdir -p /etc/containerd/certs.d/{registry.host}")
        hosts_toml = (
            f'server = "{url}"\n'
            f'\n'
            f'[host."{url}"]\n'
            f'  capabilities = ["pull", "resolve", "push"]\n'
            f'\n'
            f'[host."{url}".header]\n'
            f'  authorization = "Basic {auth}"\n'
        )
        self.run(heredoc(f"/etc/containerd/certs.d/{registry.host}/hosts.toml", hosts_toml))
        self.run("systemctl daemon-reload")
        self.run("systemctl restart containerd")

    def check_crictl(self) -> bool:
        out = self.probe(f"cat {CRICTL_CONF}")
        return out is not None and "containerd.sock" in out

    def configure_crictl(self) -> None:
        self.run(heredoc(CRICTL_CONF, (
            "runtime-endpoint: unix:///run/containerd/containerd.sock\n"
            "image-endpoint: unix:///run/containerd/containerd.sock\n"
            "timeout: 2\n"
            "debug: false\n"
            "pull-image-on-create: false"
        )))

    def check_nerdctl(self) -> bool:
        out = self.probe("nerdctl --version")
        return out is not None and self.versions.nerdctl in out

    def install_nerdctl(self) -> None:
        version = self.versions.nerdctl
        tarball = self.resource(
            "nerdctl", self.ctx.arch, dashed(version), f"nerdctl-{version}-linux-{self.ctx.arch}.tar.gz"
        )
        self.run(f"tar -xzf {tarball} -C /usr/local/bin/")

    # --- Offline images ---

    def check_images(self) -> bool:
        out = self.probe("ctr -n k8s.io images list | grep kube-apiserver")
        return bool(out and out.strip())

    def import_images(self) -> None:
        self.run(f"find {self.resource('images')} -name '*.tar' -exec ctr -n k8s.io images import {{}} \\;")

    # --- Accelerators ---

    def check_accelerator(self) -> bool:
        if self.ctx.has_gpu:
            if self.probe(f"test -e {NVIDIA_RUNTIME_CONF}") is None:
                return False
            if self.probe("nvidia-container-cli info") is None:
                return False
        if self.ctx.has_npu:
            if self.probe(f"grep ascend-docker-runtime {constants.CONTAINERD_CONFIG}") is None:
                return False
        return True

    def configure_accelerator(self) -> None:
        if self.ctx.has_gpu:
            toolkit = self.packages("common-tools", pattern=f"nvidia-container-toolkit*.{self.package_ext}")
            self.run(self.install_packages_command(toolkit))
            self.run("nvidia-ctk runtime configure --runtime=containerd")
            self.after_gpu_runtime_configured()
            self.run("systemctl restart containerd")

        if self.ctx.has_npu:
            runtime_dir = self.resource("docker-runtime", "ascend", self.ctx.arch)
            self.run(f"chmod u+x {runtime_dir}/*.run")
            self.run(f"cd {runtime_dir} && ./*.run --install")
            self.run(f"grep ascend-docker-runtime {constants.CONTAINERD_CONFIG}")
            self.run("systemctl restart containerd")

    def after_gpu_runtime_configured(self) -> None:
        """Hook for families that need extra runtime tweaks for NVIDIA."""
        pass

    # --- Kubernetes ---

    def check_k8s_components(self) -> bool:
        out = self.probe("kubeadm version -o short")
        return out is not None and self.versions.k8s in out

    def install_k8s_components(self) -> None:
        pattern = self.resource(
            "k8s", self.ctx.arch, self.package_dir, dashed(self.versions.k8s), f"*.{self.package_ext}"
        )
        self.run(self.install_packages_command(pattern))
        self.run("systemctl enable --now kubelet")

    # --- Load balancer (HA masters) ---

    def check_haproxy(self) -> bool:
        out = self.probe("haproxy -v")
        return out is not None and "haproxy" in out.lower()

    def install_haproxy(self) -> None:
        self.run(self.install_packages_command(self.packages("ha", "haproxy")))

    def check_keepalived(self) -> bool:
        out = self.probe("keepalived -v")
        return out is not None and "keepalived" in out.lower()

    def install_keepalived(self) -> None:
        self.run(self.install_packages_command(self.packages("ha", "keepalived")))
