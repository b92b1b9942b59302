"""Exception types raised by the airgapctl modules."""
from typing import Optional


class AirgapError(Exception):
    """Base class for all airgapctl errors."""
    pass


class ConfigError(AirgapError):
    """The cluster file is missing fields or describes an invalid topology."""
    pass


class UnsupportedOSError(AirgapError):
    """The node runs an operating system no installer handles."""

    def __init__(self, system_name: str):
        self.system_name = system_name
        super().__init__(f"unsupported OS: {system_name}")


class SSHConnectionError(AirgapError):
    """The SSH session to a node could not be established or was lost."""
    pass


class CommandError(AirgapError):
    """A remote or local command exited non-zero.

    The combined stdout/stderr is preserved verbatim so the operator sees
    exactly what the underlying tool printed.
    """

    def __init__(self, command: str, exit_status: int, output: str):
        self.command = command
        self.exit_status = exit_status
        self.output = output
        super().__init__(
            f"command '{command}' failed with exit status {exit_status}, output: {output.strip()}"
        )


class StepError(AirgapError):
    """A pipeline step failed during its check or its action."""

    def __init__(self, step_name: str, phase: str, elapsed: float, cause: BaseException):
        self.step_name = step_name
        self.phase = phase
        self.elapsed = elapsed
        self.cause = cause
        super().__init__(f"step '{step_name}' {phase} failed after {elapsed:.1f}s: {cause}")


class ProtocolError(AirgapError):
    """The cluster bootstrap protocol cannot proceed."""
    pass


class MissingJoinCommandError(ProtocolError):
    """A node needs a join command that no master has published."""
    pass


class CertificateKeyError(ProtocolError):
    """No certificate key could be parsed from `kubeadm init phase upload-certs`."""

    def __init__(self, output: str):
        self.output = output
        super().__init__(f"failed to parse certificate key from output: {output.strip()}")


class RegistryError(AirgapError):
    """The private registry answered with an unexpected status."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        detail = f" (HTTP {status}: {body.strip()})" if status is not None else ""
        super().__init__(f"{message}{detail}")


class RegistryAuthError(RegistryError):
    """The registry rejected the configured credentials (401/403)."""
    pass


class ImageClientError(AirgapError):
    """No local image client is available, or it failed to pull/tag/push."""
    pass


class NodeRunError(AirgapError):
    """Wraps any failure of a node run with the node's IP."""

    def __init__(self, ip: str, cause: BaseException):
        self.ip = ip
        self.cause = cause
        super().__init__(f"[{ip}] {cause}")


class MasterPhaseFailedError(AirgapError):
    """Synthetic result for nodes never started because a master run failed."""

    def __init__(self, ip: str):
        self.ip = ip
        super().__init__(f"[{ip}] skipped due to prior master failure")
