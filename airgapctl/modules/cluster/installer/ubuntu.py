"""Installer for Ubuntu and Debian hosts (dpkg based)."""
from .base import NodeInstaller


class UbuntuInstaller(NodeInstaller):
    name = "Ubuntu/Debian"
    package_dir = "apt"
    package_ext = "deb"

    def install_packages_command(self, pattern: str) -> str:
        return f"dpkg -i {pattern}"

    def check_selinux(self) -> bool:
        return True

    def disable_selinux(self) -> None:
        pass

    def check_firewall(self) -> bool:
        out = self.probe("ufw status")
        return out is None or "inactive" in out

    def disable_firewall(self) -> None:
        self.run("systemctl stop ufw || true")
        self.run("systemctl disable ufw || true")
