import pytest

from airgapctl.modules.cluster.addons import AddonDeployer
from airgapctl.modules.cluster.config import InstallMode
from airgapctl.modules.errors import ProtocolError
from airgapctl.tests.fakes import FakeConnection, fail, make_spec

REGISTRY = {"endpoint": "harbor.local", "ip": "10.0.0.5", "port": 8080, "username": "admin", "password": "pw"}
ALL_ADDONS = {
    "kube_ovn": {"enabled": True},
    "multus_cni": {"enabled": True},
    "kube_prometheus": {"enabled": True},
    "hami": {"enabled": True},
}
NODES_OUTPUT = "master-1   10.0.0.11\nworker-1   10.0.0.21\n"


def deployer(conn, connect=None, **overrides):
    spec = make_spec(**overrides)
    return AddonDeployer(
        conn.run_command, spec, spec.nodes[0], spec.remote_tmp_dir, connect=connect,
    )


def step_names(d):
    return [s.name for s in d.steps()]


def test_full_mode_deploys_cni_only(conn):
    assert step_names(deployer(conn, addons=ALL_ADDONS)) == ["Deploy Kube-OVN CNI", "Deploy Multus CNI"]


def test_addons_only_deploys_everything(conn):
    names = step_names(deployer(conn, addons=ALL_ADDONS, install_mode=InstallMode.ADDONS_ONLY))
    assert names == [
        "Deploy Kube-OVN CNI",
        "Deploy Multus CNI",
        "Deploy kube-prometheus-stack",
        "Deploy HAMI",
        "Deploy HAMI-WebUI",
        "Deploy ascend-device-plugin",
    ]


def test_disabled_addons_produce_no_steps(conn):
    assert step_names(deployer(conn, install_mode=InstallMode.ADDONS_ONLY)) == []


def test_kube_ovn_values_rewritten_before_install(conn):
    d = deployer(conn, addons=ALL_ADDONS, registry=REGISTRY)
    d.deploy_kube_ovn()

    install = conn.ran("helm install kube-ovn")
    assert len(install) == 1
    assert "kube-ovn-v1.15.0.tgz" in install[0]
    rewrites = conn.ran("sed -i 's|docker\\.io")
    assert rewrites
    assert conn.commands.index(rewrites[0]) < conn.commands.index(install[0])


def test_values_untouched_without_registry(conn):
    deployer(conn, addons=ALL_ADDONS).deploy_kube_ovn()
    assert conn.ran("sed -i") == []


def test_missing_admin_conf_is_fatal():
    conn = FakeConnection([("admin.conf", fail())])
    with pytest.raises(ProtocolError, match="admin.conf"):
        deployer(conn, addons=ALL_ADDONS).deploy_multus_cni()


def test_helm_release_check():
    conn = FakeConnection([("helm -n monitoring list", "kube-prometheus-stack\n")])
    assert deployer(conn)._helm_release_exists("monitoring", "kube-prometheus-stack")
    assert not deployer(FakeConnection())._helm_release_exists("monitoring", "kube-prometheus-stack")


def test_hami_labels_accelerator_nodes_and_enables_ascend():
    remote = FakeConnection([("lspci", "true|true")])
    conn = FakeConnection([("kubectl get nodes", NODES_OUTPUT)])
    d = deployer(conn, connect=lambda node: remote, addons=ALL_ADDONS, install_mode=InstallMode.ADDONS_ONLY)

    d.deploy_hami()

    assert conn.ran("kubectl label node worker-1 gpu=on --overwrite")
    assert conn.ran("kubectl label node worker-1 ascend=on --overwrite")
    assert conn.ran("kubectl label node master-1") == []
    assert conn.ran("s/enabled: false/enabled: true/")
    assert conn.ran("helm install hami")
    assert remote.closed


def test_accelerator_probe_failure_is_not_fatal():
    remote = FakeConnection([("lspci", fail())])
    conn = FakeConnection([("kubectl get nodes", NODES_OUTPUT)])
    d = deployer(conn, connect=lambda node: remote, addons=ALL_ADDONS)

    assert d.label_accelerator_nodes() is False
    assert conn.ran("kubectl label node") == []


def test_ascend_plugin_check_without_ascend_nodes(conn):
    d = deployer(conn, addons=ALL_ADDONS)
    assert d.check_ascend_device_plugin() is True
