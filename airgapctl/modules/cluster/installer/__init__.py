"""OS detection and installer selection."""
import logging
from typing import Dict, Type

from airgapctl.modules.errors import AirgapError, UnsupportedOSError
from .base import InstallContext, NodeInstaller
from .fedora import FedoraInstaller
from .openeuler import OpenEulerInstaller
from .ubuntu import UbuntuInstaller

logger = logging.getLogger("airgapctl.cluster.installer")

# Prints NAME|VERSION_ID|KERNEL|HAS_GPU|HAS_NPU in one round trip
ENV_PROBE_COMMAND = """\
name=$(grep '^NAME=' /etc/os-release | cut -d= -f2 | sed 's/"//g')
version=$(grep '^VERSION_ID=' /etc/os-release | cut -d= -f2 | sed 's/"//g')
kernel=$(uname -r)
gpu="false"
if lspci 2>/dev/null | grep -i nvidia >/dev/null 2>&1; then gpu="true"; fi
npu="false"
if lspci 2>/dev/null | grep -i "Huawei" >/dev/null 2>&1; then npu="true"; fi
echo "${name}|${version}|${kernel}|${gpu}|${npu}"
"""

ACCELERATOR_PROBE_COMMAND = """\
gpu="false"; if lspci 2>/dev/null | grep -i nvidia >/dev/null 2>&1; then gpu="true"; fi
npu="false"; if lspci 2>/dev/null | grep -i "Huawei" >/dev/null 2>&1; then npu="true"; fi
echo "${gpu}|${npu}"
"""

# Matched in order against the lowercased os-release NAME
INSTALLERS: Dict[str, Type[NodeInstaller]] = {
    "fedora": FedoraInstaller,
    "centos": FedoraInstaller,
    "ubuntu": UbuntuInstaller,
    "debian": UbuntuInstaller,
    "openeuler": OpenEulerInstaller,
}


def parse_probe_output(output: str) -> Dict[str, object]:
    """Parse the output of ENV_PROBE_COMMAND."""
    parts = output.strip().split("|")
    if len(parts) != 5:
        raise AirgapError(f"unexpected probe output: {output}")
    return {
        "system_name": parts[0],
        "system_version": parts[1],
        "kernel_version": parts[2],
        "has_gpu": parts[3] == "true",
        "has_npu": parts[4] == "true",
    }


def parse_accelerator_output(output: str):
    """Parse ACCELERATOR_PROBE_COMMAND output into (has_gpu, has_npu)."""
    parts = output.strip().split("|")
    if len(parts) != 2:
        raise AirgapError(f"unexpected probe output: {output}")
    return parts[0] == "true", parts[1] == "true"


def select_installer(ctx: InstallContext) -> NodeInstaller:
    """Pick the installer for the node's OS.

    Raises:
        UnsupportedOSError: if no installer matches the os-release name
    """
    os_name = ctx.system_name.lower()
    for marker, installer_cls in INSTALLERS.items():
        if marker in os_name:
            return installer_cls(ctx)
    raise UnsupportedOSError(ctx.system_name)


def detect_environment(conn, spec) -> InstallContext:
    """Probe a node and build its InstallContext."""
    arch = conn.detect_arch()
    info = parse_probe_output(conn.run_command(ENV_PROBE_COMMAND))
    return InstallContext(
        spec=spec,
        arch=arch,
        remote_tmp_dir=spec.remote_tmp_dir,
        run=conn.run_command,
        **info,
    )


__all__ = [
    "InstallContext",
    "NodeInstaller",
    "FedoraInstaller",
    "UbuntuInstaller",
    "OpenEulerInstaller",
    "ENV_PROBE_COMMAND",
    "ACCELERATOR_PROBE_COMMAND",
    "detect_environment",
    "parse_probe_output",
    "parse_accelerator_output",
    "select_installer",
]
