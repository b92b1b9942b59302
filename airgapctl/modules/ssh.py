"""
SSH connection management using paramiko.

Each node owns exactly one SSHConnection for the whole run. Commands on a
connection are serialized: later steps rely on the filesystem and service
state left behind by earlier ones.
"""
import logging
import posixpath
import shlex
import socket
import threading
from typing import BinaryIO, Callable, Optional

import paramiko
from paramiko.ssh_exception import AuthenticationException, SSHException
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from airgapctl.config import Config
from airgapctl.modules.errors import CommandError, SSHConnectionError

logger = logging.getLogger("airgapctl.ssh")

ProgressCallback = Callable[[int, int], None]

ARCH_ALIASES = {
    "x86_64": "amd64",
    "aarch64": "arm64",
}


def _is_transient(exc: BaseException) -> bool:
    """Network hiccups are worth another attempt; bad credentials are not."""
    if isinstance(exc, AuthenticationException):
        return False
    return isinstance(exc, (OSError, SSHException))


class SSHConnection:
    """SSH connection to a single node with command execution and SFTP upload."""

    def __init__(
        self,
        host: str,
        username: str,
        password: Optional[str] = None,
        key_path: Optional[str] = None,
        port: int = 22,
        timeout: int = Config.SSH_CONNECT_TIMEOUT,
        command_timeout: int = Config.COMMAND_TIMEOUT,
        connect_retries: int = Config.SSH_CONNECT_RETRIES,
    ):
        """Initialize and open the SSH connection.

        Args:
            host: Remote host to connect to
            username: Username for authentication
            password: Password (optional when a key is given)
            key_path: Path to SSH private key (optional)
            port: SSH port (default: 22)
            timeout: Connection timeout in seconds
            command_timeout: Per-command timeout in seconds
            connect_retries: Attempts made to establish the connection
        """
        self.host = host
        self.username = username
        self.password = password
        self.key_path = key_path
        self.port = port
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.connect_retries = max(1, connect_retries)
        self._lock = threading.Lock()
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._connect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _connect(self) -> None:
        """Establish the SSH session, retrying transient network failures."""
        retrying = Retrying(
            stop=stop_after_attempt(self.connect_retries),
            wait=wait_exponential(multiplier=Config.RETRY_DELAY, max=10),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    logger.debug(
                        f"Connecting to {self.username}@{self.host}:{self.port} "
                        f"(attempt {attempt.retry_state.attempt_number}/{self.connect_retries})"
                    )
                    client = paramiko.SSHClient()
                    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
                    client.connect(
                        hostname=self.host,
                        port=self.port,
                        username=self.username,
                        password=self.password or None,
                        key_filename=self.key_path or None,
                        timeout=self.timeout,
                        look_for_keys=False,
                        allow_agent=False,
                    )
                    self._client = client
        except (OSError, SSHException) as e:
            raise SSHConnectionError(f"ssh connection to {self.host}:{self.port} failed: {e}") from e
        logger.debug(f"SSH connection to {self.host} established")

    def run_command(self, command: str, timeout: Optional[int] = None) -> str:
        """Run a command under `bash -lc` and return its combined output.

        Raises:
            CommandError: If the command exits non-zero or times out
            SSHConnectionError: If the session is gone
        """
        if self._client is None:
            raise SSHConnectionError(f"ssh connection to {self.host} is closed")
        exec_timeout = timeout or self.command_timeout
        wrapped = f"bash -lc {shlex.quote(command)}"

        with self._lock:
            logger.debug(f"[{self.host}] $ {Config.redact(command)}")
            try:
                _, stdout, _ = self._client.exec_command(wrapped, timeout=exec_timeout)
                channel = stdout.channel
                channel.set_combine_stderr(True)
                output = stdout.read().decode("utf-8", "replace")
                exit_status = channel.recv_exit_status()
            except socket.timeout:
                raise CommandError(command, 124, f"command timed out after {exec_timeout} seconds")
            except (OSError, SSHException) as e:
                raise SSHConnectionError(f"[{self.host}] ssh channel failed: {e}") from e

        if exit_status != 0:
            raise CommandError(command, exit_status, output)
        return output.strip()

    def write_file(
        self,
        remote_path: str,
        src: BinaryIO,
        size: int = 0,
        callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Stream a local file object to a remote path over SFTP."""
        directory = posixpath.dirname(remote_path)
        self.run_command(f"mkdir -p {shlex.quote(directory)}")

        with self._lock:
            try:
                if self._sftp is None:
                    self._sftp = self._client.open_sftp()
                self._sftp.putfo(src, remote_path, file_size=size, callback=callback, confirm=True)
                self._sftp.chmod(remote_path, 0o755)
            except (OSError, SSHException) as e:
                raise SSHConnectionError(
                    f"sftp transfer to {self.host}:{remote_path} failed: {e}"
                ) from e

    def detect_arch(self) -> str:
        """Return the node architecture in Go/OCI naming (amd64, arm64, ...)."""
        out = self.run_command("uname -m").strip()
        return ARCH_ALIASES.get(out, out)

    def close(self) -> None:
        """Close the SFTP session and the SSH connection."""
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None


def connect_node(node, spec) -> SSHConnection:
    """Open the connection for a node, applying cluster-wide SSH defaults."""
    return SSHConnection(
        host=node.ip,
        username=node.user or spec.user,
        password=node.password,
        key_path=node.ssh_key_path or spec.ssh_key_path,
        port=node.ssh_port or spec.ssh_port,
        command_timeout=spec.command_timeout_seconds or Config.COMMAND_TIMEOUT,
    )
