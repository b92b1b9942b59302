"""Installer for Fedora and CentOS hosts (RPM based)."""
from .base import NodeInstaller


class FedoraInstaller(NodeInstaller):
    name = "Fedora/CentOS"
    package_dir = "rpm"
    package_ext = "rpm"

    def install_packages_command(self, pattern: str) -> str:
        return f"rpm -Uvh {pattern} --nodeps --force"

    def check_selinux(self) -> bool:
        out = (self.probe("getenforce") or "").lower()
        return "disabled" in out or "permissive" in out

    def disable_selinux(self) -> None:
        self.run("sed -ri 's/SELINUX=enforcing/SELINUX=disabled/' /etc/selinux/config")
        self.run("setenforce 0 || true")

    def check_firewall(self) -> bool:
        # is-active exits non-zero for inactive or missing units
        out = self.probe("systemctl is-active firewalld")
        return out is None or out.strip() != "active"

    def disable_firewall(self) -> None:
        self.run("systemctl stop firewalld || true")
        self.run("systemctl disable firewalld || true")

    def disable_swap(self) -> None:
        # zram-generator recreates swap on every boot
        self.run("dnf remove -y zram-generator-defaults || true")
        super().disable_swap()
