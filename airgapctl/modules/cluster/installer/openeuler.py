"""Installer for openEuler hosts."""
from .base import NVIDIA_RUNTIME_CONF
from .fedora import FedoraInstaller

SYSTEM_SYSCTL_CONF = "/etc/sysctl.d/99-sysctl.conf"


class OpenEulerInstaller(FedoraInstaller):
    """openEuler ships its own 99-sysctl.conf, which must also enable forwarding."""

    name = "openEuler"

    def disable_swap(self) -> None:
        self.run("swapoff -a")
        self.run("sed -i '/swap/s/^/#/' /etc/fstab")

    def check_sysctl(self) -> bool:
        if not super().check_sysctl():
            return False
        return self.probe(f"grep -x 'net.ipv4.ip_forward=1' {SYSTEM_SYSCTL_CONF}") is not None

    def configure_sysctl(self) -> None:
        super().configure_sysctl()
        self.run(
            r"sed -ri '/^[[:space:]]*net\.ipv4\.ip_forward[[:space:]]*=/d' " + SYSTEM_SYSCTL_CONF
            + f" && echo 'net.ipv4.ip_forward=1' >> {SYSTEM_SYSCTL_CONF}"
        )
        self.run("sysctl --system")

    def check_common_tools(self) -> bool:
        # the base image already carries what kubeadm needs
        return True

    def install_common_tools(self) -> None:
        pass

    def after_gpu_runtime_configured(self) -> None:
        self.run(
            "sed -i 's/^\\([[:space:]]*default_runtime_name[[:space:]]*=[[:space:]]*\\)\"runc\"/\\1\"nvidia\"/' "
            f"{NVIDIA_RUNTIME_CONF}"
        )
