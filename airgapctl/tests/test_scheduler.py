import threading
import time

from airgapctl.modules.cluster.models import JoinArtifacts
from airgapctl.modules.cluster.scheduler import NodeScheduler, master_order
from airgapctl.modules.errors import CommandError, MasterPhaseFailedError, NodeRunError
from airgapctl.tests.fakes import WORKER_JOIN, ha_nodes, make_ha_spec, make_spec


class RecordingRuns:
    """run_factory that records start order and fails chosen nodes."""

    def __init__(self, spec, fail_ips=(), delays=None, publish_on=None):
        self.spec = spec
        self.fail_ips = set(fail_ips)
        self.delays = delays or {}
        self.publish_on = publish_on
        self.started = []
        self.seen_artifacts = {}
        self.lock = threading.Lock()

    def __call__(self, spec, index, artifacts, sync_state, dry_run=False, observer=None, position=0):
        runs = self
        node = spec.nodes[index]

        class Run:
            def execute(self):
                with runs.lock:
                    runs.started.append(node.ip)
                time.sleep(runs.delays.get(node.ip, 0))
                if node.ip == runs.publish_on:
                    artifacts.publish(WORKER_JOIN)
                if not node.is_master:
                    runs.seen_artifacts[node.ip] = artifacts.worker_join_command
                if node.ip in runs.fail_ips:
                    raise NodeRunError(node.ip, CommandError("kubeadm init", 1, "preflight failed"))

        return Run()


def test_master_order_puts_primary_first():
    nodes = ha_nodes()
    nodes[0].is_primary_master = False
    nodes[2].is_primary_master = True
    spec = make_ha_spec(workers=0)
    spec.nodes = nodes
    assert master_order(spec) == [2, 0, 1]


def test_masters_run_before_workers():
    spec = make_ha_spec(workers=3)
    runs = RecordingRuns(spec, publish_on="10.0.0.11")

    results = NodeScheduler(spec, run_factory=runs).run()

    assert runs.started[:3] == ["10.0.0.11", "10.0.0.12", "10.0.0.13"]
    assert sorted(runs.started[3:]) == ["10.0.0.21", "10.0.0.22", "10.0.0.23"]
    assert all(r.ok for r in results)
    assert set(runs.seen_artifacts.values()) == {WORKER_JOIN}


def test_results_sorted_by_node_index():
    spec = make_ha_spec(workers=3)
    runs = RecordingRuns(
        spec,
        publish_on="10.0.0.11",
        delays={"10.0.0.21": 0.2, "10.0.0.22": 0.1, "10.0.0.23": 0.0},
    )

    results = NodeScheduler(spec, run_factory=runs).run()

    assert [r.index for r in results] == list(range(len(spec.nodes)))
    assert [r.ip for r in results][3:] == ["10.0.0.21", "10.0.0.22", "10.0.0.23"]


def test_master_failure_skips_everything_after_it():
    spec = make_ha_spec(workers=2)
    runs = RecordingRuns(spec, fail_ips=["10.0.0.11"])

    results = NodeScheduler(spec, run_factory=runs).run()

    assert runs.started == ["10.0.0.11"]
    assert len(results) == 5
    assert results[0].status == "failed"
    assert "preflight failed" in str(results[0].error)
    for result in results[1:]:
        assert result.status == "skipped"
        assert isinstance(result.error, MasterPhaseFailedError)
        assert str(result.error) == f"[{result.ip}] skipped due to prior master failure"


def test_worker_failure_does_not_stop_other_workers():
    spec = make_spec(nodes=ha_nodes(workers=3)[2:], ha={"enabled": False})
    runs = RecordingRuns(spec, fail_ips=["10.0.0.22"], publish_on="10.0.0.13")

    results = NodeScheduler(spec, run_factory=runs).run()

    assert [r.status for r in results] == ["success", "success", "failed", "success"]


def test_unexpected_exception_becomes_node_error():
    spec = make_spec()

    def factory(*args, **kwargs):
        raise RuntimeError("bug")

    results = NodeScheduler(spec, run_factory=factory).run()
    assert isinstance(results[0].error, NodeRunError)
    assert results[1].skipped


def test_workers_only_fleet_uses_configured_join_command():
    spec = make_spec(
        nodes=ha_nodes(workers=2)[3:],
        join_command="kubeadm join 10.9.0.1:6443 --token t",
    )
    scheduler = NodeScheduler(spec, run_factory=RecordingRuns(spec))
    assert isinstance(scheduler.artifacts, JoinArtifacts)
    assert scheduler.artifacts.worker_join_command == "kubeadm join 10.9.0.1:6443 --token t"
    assert all(r.ok for r in scheduler.run())


def test_max_workers_bounds_concurrency():
    spec = make_spec(nodes=ha_nodes(workers=4)[2:], ha={"enabled": False})
    active = {"now": 0, "peak": 0}
    lock = threading.Lock()

    def factory(spec, index, artifacts, sync_state, **kwargs):
        class Run:
            def execute(self):
                if spec.nodes[index].is_master:
                    artifacts.publish(WORKER_JOIN)
                    return
                with lock:
                    active["now"] += 1
                    active["peak"] = max(active["peak"], active["now"])
                time.sleep(0.05)
                with lock:
                    active["now"] -= 1

        return Run()

    results = NodeScheduler(spec, run_factory=factory, max_workers=2).run()

    assert all(r.ok for r in results)
    assert active["peak"] <= 2
