import pytest

from airgapctl.modules.cluster.config import ContainerRuntime, InstallMode
from airgapctl.modules.cluster.models import JoinArtifacts, RegistrySyncState
from airgapctl.modules.cluster.node import NodeRun, RunFacts, plan_groups
from airgapctl.modules.cluster.pipeline import StepOutcome
from airgapctl.modules.cluster.resources import file_sha256
from airgapctl.modules.errors import NodeRunError, UnsupportedOSError
from airgapctl.tests.fakes import UBUNTU_PROBE, FakeConnection, fail, make_ha_spec, make_spec

REGISTRY = {"endpoint": "harbor.local", "ip": "10.0.0.5", "port": 8080, "username": "admin", "password": "pw"}


def facts(**overrides):
    values = dict(
        install_mode=InstallMode.FULL,
        container_runtime=ContainerRuntime.CONTAINERD,
        is_master=False,
        is_primary_execution=False,
        ha_enabled=False,
        registry_enabled=False,
    )
    values.update(overrides)
    return RunFacts(**values)


def test_worker_full_install():
    assert plan_groups(facts()) == [
        "resources",
        "os_baseline",
        "common_tools",
        "containerd_runtime",
        "runtime_config",
        "offline_images",
        "kubernetes",
        "bootstrap",
    ]


def test_primary_master_with_registry_and_ha():
    groups = plan_groups(facts(
        is_master=True, is_primary_execution=True, ha_enabled=True, registry_enabled=True,
    ))
    assert groups == [
        "resources",
        "os_baseline",
        "common_tools",
        "containerd_runtime",
        "runtime_config",
        "helm",
        "load_balancer",
        "registry_mirror",
        "kubernetes",
        "registry_sync",
        "bootstrap",
        "addons",
    ]


def test_secondary_master_gets_load_balancer_but_no_addons():
    groups = plan_groups(facts(is_master=True, ha_enabled=True))
    assert "load_balancer" in groups
    assert "helm" not in groups
    assert "addons" not in groups


def test_docker_ce_runtime_replaces_containerd_runtime():
    groups = plan_groups(facts(container_runtime=ContainerRuntime.DOCKER_CE))
    assert "docker_ce_runtime" in groups
    assert "containerd_runtime" not in groups


def test_accelerator_group_only_with_devices():
    assert "accelerator" not in plan_groups(facts())
    assert "accelerator" in plan_groups(facts(has_gpu=True))
    assert "accelerator" in plan_groups(facts(has_npu=True))


def test_addons_only_skips_node_preparation():
    groups = plan_groups(facts(
        install_mode=InstallMode.ADDONS_ONLY, is_master=True, is_primary_execution=True, registry_enabled=True,
    ))
    assert groups == ["resources", "registry_sync", "addons"]


@pytest.mark.parametrize("mode", [InstallMode.INSTALL_ONLY, InstallMode.PRE_INIT])
def test_modes_without_bootstrap(mode):
    groups = plan_groups(facts(install_mode=mode, is_master=True, is_primary_execution=True))
    assert "bootstrap" not in groups
    assert "addons" not in groups
    assert "kubernetes" in groups


def node_connection(resource_package, extra=()):
    return FakeConnection(list(extra) + [
        ("os-release", UBUNTU_PROBE),
        (".extracted_success", file_sha256(resource_package)),
    ])


def test_node_run_builds_steps_from_plan(resource_package):
    spec = make_ha_spec(resource_package, registry=REGISTRY)
    conn = node_connection(resource_package)
    run = NodeRun(spec, 1, JoinArtifacts(), RegistrySyncState(), connect=lambda node, s: conn)
    run.conn = conn
    run.prepare()

    names = [step.name for step in run.build_steps()]

    assert run.installer.name == "Ubuntu/Debian"
    assert names[0] == "Distribute offline resources"
    assert "Configure Keepalived" in names
    assert "Configure containerd registry mirror" in names
    assert "Sync images to private registry" not in names
    assert "Install Helm" not in names
    assert names[-1] == "Initialize or join cluster"


def test_dry_run_node_changes_nothing(resource_package):
    spec = make_spec(resource_package)
    conn = node_connection(resource_package, [("test -f /etc/kubernetes", fail())])
    run = NodeRun(spec, 1, JoinArtifacts(), RegistrySyncState(), dry_run=True, connect=lambda node, s: conn)

    outcomes = dict(run.execute())

    assert outcomes["Distribute offline resources"] is StepOutcome.SKIPPED
    assert outcomes["Initialize or join cluster"] is StepOutcome.WOULD_EXECUTE
    assert conn.ran("cat >") == []
    assert conn.ran("kubeadm join") == []
    assert conn.closed


def test_unsupported_os_fails_the_node(resource_package):
    spec = make_spec(resource_package)
    conn = FakeConnection([("os-release", "Arch Linux|rolling|6.9.1|false|false")])
    run = NodeRun(spec, 0, JoinArtifacts(), RegistrySyncState(), connect=lambda node, s: conn)

    with pytest.raises(NodeRunError) as exc:
        run.execute()

    assert isinstance(exc.value.cause, UnsupportedOSError)
    assert str(exc.value).startswith("[10.0.0.11]")
    assert conn.closed


def test_worker_without_join_command_fails_at_bootstrap(resource_package):
    spec = make_spec(resource_package)
    conn = node_connection(resource_package, [("kubelet.conf", fail())])
    run = NodeRun(spec, 1, JoinArtifacts(), RegistrySyncState(), connect=lambda node, s: conn)

    with pytest.raises(NodeRunError, match="join command is required for worker nodes"):
        run.execute()
