"""Data models shared between node runs and the scheduler."""
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from airgapctl.modules.errors import (
    MasterPhaseFailedError,
    MissingJoinCommandError,
    ProtocolError,
)


@dataclass(frozen=True)
class RunResult:
    """Outcome of one node run. Created once, never mutated."""
    index: int
    ip: str
    is_master: bool
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def skipped(self) -> bool:
        return isinstance(self.error, MasterPhaseFailedError)

    @property
    def role(self) -> str:
        return "master" if self.is_master else "worker"

    @property
    def status(self) -> str:
        if self.ok:
            return "success"
        if self.skipped:
            return "skipped"
        return "failed"


@dataclass(frozen=True)
class ImageSyncItem:
    """One image to mirror and where it lands in the private registry."""
    source: str
    target: str
    project: str
    repo_name: str
    tag: str


class JoinArtifacts:
    """Write-once holder for the join commands produced by the primary master.

    The scheduler creates one per run and hands it to every node run. Exactly
    one publish is allowed; readers that find it empty fail instead of
    proceeding without a join command.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._published = threading.Event()
        self._worker_join_command = ""
        self._master_join_command = ""

    @classmethod
    def seeded(cls, join_command: str) -> "JoinArtifacts":
        """Artifacts pre-filled with the join command of an existing cluster."""
        artifacts = cls()
        artifacts.publish(join_command)
        return artifacts

    def publish(self, worker_join_command: str, master_join_command: str = "") -> None:
        with self._lock:
            if self._published.is_set():
                raise ProtocolError("join artifacts have already been published for this run")
            self._worker_join_command = worker_join_command.strip()
            self._master_join_command = master_join_command.strip()
            self._published.set()

    @property
    def worker_join_command(self) -> str:
        if not self._published.is_set() or not self._worker_join_command:
            raise MissingJoinCommandError("join command is required for worker nodes")
        return self._worker_join_command

    @property
    def master_join_command(self) -> str:
        if not self._published.is_set() or not self._master_join_command:
            raise MissingJoinCommandError("master join command is required for HA mode")
        return self._master_join_command


@dataclass
class RegistrySyncState:
    """Remembers whether the image mirror has been synced during this run."""
    done: bool = False
    synced: List[str] = field(default_factory=list)
    present: List[str] = field(default_factory=list)

    def mark_done(self, synced: List[str], present: List[str]) -> None:
        self.synced = list(synced)
        self.present = list(present)
        self.done = True
