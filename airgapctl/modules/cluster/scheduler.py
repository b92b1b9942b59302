"""Orders and parallelizes node runs across the fleet.

Masters run one after another on the calling thread, the HA primary
first. Workers start only after every master succeeded and then run
concurrently, each on its own connection. If a master fails, no further
node is started and every node that did not run gets a synthetic
"skipped" result.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from airgapctl.config import Config
from airgapctl.modules.errors import MasterPhaseFailedError, NodeRunError
from .config import ClusterSpec
from .models import JoinArtifacts, RegistrySyncState, RunResult
from .node import NodeRun
from .pipeline import PipelineObserver

logger = logging.getLogger("airgapctl.cluster.scheduler")

RunFactory = Callable[..., object]


def master_order(spec: ClusterSpec) -> List[int]:
    """Indices of master nodes in execution order."""
    masters = [idx for idx, _ in spec.masters()]
    if spec.ha.enabled:
        masters.sort(key=lambda idx: not spec.nodes[idx].is_primary_master)
    return masters


class NodeScheduler:
    """Runs every node of a cluster spec and collects one result per node."""

    def __init__(
        self,
        spec: ClusterSpec,
        dry_run: bool = False,
        observer: Optional[PipelineObserver] = None,
        run_factory: RunFactory = NodeRun,
        max_workers: int = Config.MAX_WORKERS,
    ):
        self.spec = spec
        self.dry_run = dry_run
        self.observer = observer
        self.run_factory = run_factory
        self.max_workers = max(1, max_workers)
        self.sync_state = RegistrySyncState()
        if not spec.masters() and spec.join_command.strip():
            self.artifacts = JoinArtifacts.seeded(spec.join_command)
        else:
            self.artifacts = JoinArtifacts()

    def _run_node(self, index: int, position: int) -> RunResult:
        node = self.spec.nodes[index]
        error = None
        try:
            run = self.run_factory(
                self.spec,
                index,
                self.artifacts,
                self.sync_state,
                dry_run=self.dry_run,
                observer=self.observer,
                position=position,
            )
            run.execute()
        except NodeRunError as e:
            error = e
        except Exception as e:
            logger.exception(f"[{node.ip}] unexpected error")
            error = NodeRunError(node.ip, e)
        if error is None:
            logger.info(f"[{node.ip}] ✅ {node.role} finished")
        else:
            logger.error(f"[{node.ip}] ❌ {node.role} failed: {error}")
        return RunResult(index=index, ip=node.ip, is_master=node.is_master, error=error)

    def _skipped(self, index: int) -> RunResult:
        node = self.spec.nodes[index]
        return RunResult(index=index, ip=node.ip, is_master=node.is_master, error=MasterPhaseFailedError(node.ip))

    def run(self) -> List[RunResult]:
        """Run all nodes.

        Returns:
            One RunResult per configured node, ordered by node index
        """
        masters = master_order(self.spec)
        workers = [idx for idx, _ in self.spec.workers()]
        mode = "dry run" if self.dry_run else "install"
        logger.info(
            f"🚀 Starting {mode} of {len(self.spec.nodes)} node(s): "
            f"{len(masters)} master(s), {len(workers)} worker(s)"
        )

        results: Dict[int, RunResult] = {}
        position = 0
        for pos, index in enumerate(masters):
            position += 1
            result = self._run_node(index, position)
            results[index] = result
            if not result.ok:
                pending = masters[pos + 1:] + workers
                if pending:
                    logger.error(f"Master {result.ip} failed, skipping {len(pending)} remaining node(s)")
                for skipped in pending:
                    results[skipped] = self._skipped(skipped)
                return [results[i] for i in sorted(results)]

        if workers:
            pool_size = min(self.max_workers, len(workers))
            logger.info(f"Masters done, starting {len(workers)} worker(s) with {pool_size} thread(s)")
            with ThreadPoolExecutor(max_workers=pool_size) as executor:
                futures = {
                    executor.submit(self._run_node, index, position + offset): index
                    for offset, index in enumerate(workers, start=1)
                }
                for future in as_completed(futures):
                    results[futures[future]] = future.result()

        return [results[i] for i in sorted(results)]
