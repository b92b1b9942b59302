import importlib

import pytest
import typer
from typer.testing import CliRunner

from airgapctl import cli
from airgapctl.commands import images as images_command
from airgapctl.commands import install as install_command
from airgapctl.modules.cluster import registry_sync
from airgapctl.modules.cluster.models import RegistrySyncState, RunResult
from airgapctl.modules.cluster.report import build_summary_table, exit_code
from airgapctl.modules.errors import CommandError, MasterPhaseFailedError, NodeRunError

runner = CliRunner()

CLUSTER_YAML = """
resource_package: {package}
nodes:
  - ip: 10.0.0.11
    password: secret
    is_master: true
  - ip: 10.0.0.21
    password: secret
"""

REGISTRY_YAML = """
registry:
  endpoint: harbor.local
  ip: 10.0.0.5
  port: 8080
  username: admin
  password: Harbor12345
"""


@pytest.fixture
def cluster_file(tmp_path, resource_package):
    path = tmp_path / "cluster.yaml"
    path.write_text(CLUSTER_YAML.format(package=resource_package))
    return path


def failed_results():
    return [
        RunResult(0, "10.0.0.11", True, NodeRunError("10.0.0.11", CommandError("kubeadm init", 1, "boom"))),
        RunResult(1, "10.0.0.21", False, MasterPhaseFailedError("10.0.0.21")),
    ]


class StubScheduler:
    results = []
    sync_state = RegistrySyncState()

    def __init__(self, spec, dry_run=False):
        StubScheduler.dry_run = dry_run
        self.sync_state = StubScheduler.sync_state

    def run(self):
        return StubScheduler.results


def test_entry_point_imports():
    module = importlib.import_module("airgapctl.cli")
    assert isinstance(module.app, typer.Typer)
    assert images_command.default_sync_engine is registry_sync.default_sync_engine


def test_help():
    result = runner.invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    for command in ("install", "validate", "images", "sync-images"):
        assert command in result.stdout


def test_validate_ok(cluster_file):
    result = runner.invoke(cli.app, ["validate", "--config", str(cluster_file)])
    assert result.exit_code == 0
    assert "Configuration valid: 1 master(s), 1 worker(s)" in result.stdout


def test_validate_reports_config_error(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text("nodes: []\n")
    result = runner.invoke(cli.app, ["validate", "--config", str(path)])
    assert result.exit_code == 1
    assert "resource_package is required" in result.output


def test_images_lists_k8s_images(cluster_file):
    result = runner.invoke(cli.app, ["images", "--config", str(cluster_file)])
    assert result.exit_code == 0
    assert "kube-apiserver" in result.stdout


def test_sync_images_requires_registry(cluster_file):
    result = runner.invoke(cli.app, ["sync-images", "--config", str(cluster_file)])
    assert result.exit_code == 1
    assert "No registry configured" in result.output


def test_sync_images_runs_engine(cluster_file, monkeypatch):
    cluster_file.write_text(cluster_file.read_text() + REGISTRY_YAML)

    class Engine:
        def run(self, images):
            return images[:2], images[2:]

    monkeypatch.setattr(images_command, "default_sync_engine", lambda spec: Engine())
    result = runner.invoke(cli.app, ["sync-images", "--config", str(cluster_file)])
    assert result.exit_code == 0
    assert "2 image(s) pushed" in result.stdout


def test_install_exits_non_zero_on_failure(cluster_file, monkeypatch):
    StubScheduler.results = failed_results()
    monkeypatch.setattr(install_command, "NodeScheduler", StubScheduler)

    result = runner.invoke(cli.app, ["install", "--config", str(cluster_file)])

    assert result.exit_code == 1
    assert "10.0.0.11" in result.stdout
    assert "skipped" in result.stdout


def test_install_dry_run_succeeds(cluster_file, monkeypatch):
    StubScheduler.results = [RunResult(0, "10.0.0.11", True), RunResult(1, "10.0.0.21", False)]
    monkeypatch.setattr(install_command, "NodeScheduler", StubScheduler)

    result = runner.invoke(cli.app, ["install", "--config", str(cluster_file), "--dry-run"])

    assert result.exit_code == 0
    assert StubScheduler.dry_run is True
    assert "Dry run" in result.stdout


def test_summary_table_and_exit_code():
    results = failed_results()
    table = build_summary_table(results)
    assert table.row_count == 2
    assert exit_code(results) == 1
    assert exit_code([RunResult(0, "10.0.0.11", True)]) == 0


def test_install_reports_registry_sync_counts(cluster_file, monkeypatch):
    state = RegistrySyncState()
    state.mark_done(["harbor.local:8080/kubeovn/kube-ovn:v1.15.0"], ["harbor.local:8080/google_containers/pause:3.10.1"] * 2)
    StubScheduler.results = [RunResult(0, "10.0.0.11", True), RunResult(1, "10.0.0.21", False)]
    monkeypatch.setattr(StubScheduler, "sync_state", state)
    monkeypatch.setattr(install_command, "NodeScheduler", StubScheduler)

    result = runner.invoke(cli.app, ["install", "--config", str(cluster_file)])

    assert result.exit_code == 0
    assert "Registry: 1 image(s) pushed, 2 already present" in result.stdout


def test_install_without_registry_sync_omits_counts(cluster_file, monkeypatch):
    StubScheduler.results = [RunResult(0, "10.0.0.11", True), RunResult(1, "10.0.0.21", False)]
    monkeypatch.setattr(install_command, "NodeScheduler", StubScheduler)

    result = runner.invoke(cli.app, ["install", "--config", str(cluster_file)])

    assert result.exit_code == 0
    assert "Registry:" not in result.stdout
