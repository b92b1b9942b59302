import pytest

from airgapctl.config import Config
from airgapctl.modules.cluster import constants
from airgapctl.modules.cluster.config import (
    ClusterSpec,
    ContainerRuntime,
    InstallMode,
    NodeSpec,
    apply_defaults_and_validate,
    load_cluster_spec,
)
from airgapctl.modules.errors import ConfigError
from airgapctl.tests.fakes import ha_nodes, make_ha_spec, make_spec

CLUSTER_YAML = """
user: root
resource_package: /opt/k8s/resources.tar.gz
install_mode: install-only
container_runtime: docker-ce
registry:
  endpoint: harbor.example.local
  ip: 10.0.0.5
  port: 8080
  username: admin
  password: Harbor12345
addons:
  kube_ovn:
    enabled: true
nodes:
  - ip: 10.0.0.11
    password: secret
    is_master: true
  - ip: 10.0.0.21
    password: secret
    unknown_field: ignored
"""


def test_load_cluster_spec(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text(CLUSTER_YAML)

    spec = apply_defaults_and_validate(load_cluster_spec(path))

    assert spec.install_mode is InstallMode.INSTALL_ONLY
    assert spec.container_runtime is ContainerRuntime.DOCKER_CE
    assert spec.registry.host == "harbor.example.local:8080"
    assert spec.registry.scheme == "http"
    assert spec.addons.kube_ovn.enabled
    assert spec.addons.kube_ovn.version == constants.KUBE_OVN_VERSIONS[0]
    assert [n.role for n in spec.nodes] == ["master", "worker"]


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_cluster_spec(tmp_path / "missing.yaml")


def test_load_rejects_non_mapping(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_cluster_spec(path)


def test_load_rejects_bad_install_mode(tmp_path):
    path = tmp_path / "cluster.yaml"
    path.write_text("install_mode: everything\nnodes: []\n")
    with pytest.raises(ConfigError, match="invalid cluster config"):
        load_cluster_spec(path)


def test_defaults_are_filled():
    spec = make_spec()
    assert spec.versions.k8s == constants.K8S_VERSIONS[0]
    assert spec.versions.containerd == constants.CONTAINERD_VERSIONS[0]
    assert spec.versions.docker_ce == constants.DOCKER_CE_VERSIONS[0]
    assert spec.command_timeout_seconds == Config.COMMAND_TIMEOUT


def test_unsupported_version_is_rejected():
    with pytest.raises(ConfigError, match="Kubernetes version 1.20.0 is not supported"):
        make_spec(versions={"k8s": "1.20.0"})


def test_resource_package_required():
    with pytest.raises(ConfigError, match="resource_package"):
        make_spec(resource_package="")


def test_node_needs_credentials():
    nodes = [NodeSpec(ip="10.0.0.11", is_master=True)]
    with pytest.raises(ConfigError, match="password or ssh_key_path"):
        make_spec(nodes=nodes)


def test_global_ssh_key_is_enough():
    nodes = [NodeSpec(ip="10.0.0.11", is_master=True)]
    spec = make_spec(nodes=nodes, ssh_key_path="~/.ssh/id_rsa")
    assert spec.nodes[0].ip == "10.0.0.11"


def test_duplicate_ips_rejected():
    nodes = [
        NodeSpec(ip="10.0.0.11", password="x", is_master=True),
        NodeSpec(ip="10.0.0.11", password="x"),
    ]
    with pytest.raises(ConfigError, match="duplicate"):
        make_spec(nodes=nodes)


def test_primary_flag_cleared_on_workers():
    nodes = [
        NodeSpec(ip="10.0.0.11", password="x", is_master=True),
        NodeSpec(ip="10.0.0.21", password="x", is_primary_master=True),
    ]
    spec = make_spec(nodes=nodes)
    assert spec.nodes[1].is_primary_master is False


def test_registry_requires_credentials():
    with pytest.raises(ConfigError, match="username and password"):
        make_spec(registry={"endpoint": "harbor.local", "ip": "10.0.0.5", "port": 80})


def test_workers_only_need_join_command():
    nodes = [NodeSpec(ip="10.0.0.21", password="x")]
    with pytest.raises(ConfigError, match="join_command"):
        make_spec(nodes=nodes)
    spec = make_spec(nodes=nodes, join_command="kubeadm join 10.0.0.1:6443 --token t")
    assert spec.masters() == []


def test_non_ha_allows_single_master_only():
    nodes = [
        NodeSpec(ip="10.0.0.11", password="x", is_master=True),
        NodeSpec(ip="10.0.0.12", password="x", is_master=True),
    ]
    with pytest.raises(ConfigError, match="without HA"):
        make_spec(nodes=nodes)


def test_ha_valid():
    spec = make_ha_spec()
    assert spec.ha.vip_host == "10.0.0.100"
    assert len(spec.masters()) == 3
    assert spec.is_primary_execution_node(spec.nodes[0])
    assert not spec.is_primary_execution_node(spec.nodes[1])


def test_ha_requires_three_masters():
    nodes = ha_nodes()
    del nodes[2]
    with pytest.raises(ConfigError, match="exactly 3 master"):
        make_spec(nodes=nodes, ha={"enabled": True, "virtual_ip": "10.0.0.100"})


def test_ha_requires_single_primary():
    nodes = ha_nodes()
    nodes[1].is_primary_master = True
    with pytest.raises(ConfigError, match="exactly 1 primary"):
        make_spec(nodes=nodes, ha={"enabled": True, "virtual_ip": "10.0.0.100"})


def test_ha_requires_vip():
    with pytest.raises(ConfigError, match="virtual_ip"):
        make_ha_spec(ha={"enabled": True, "virtual_ip": ""})


def test_ha_requires_interface_on_masters():
    nodes = ha_nodes()
    nodes[2].interface = ""
    with pytest.raises(ConfigError, match="interface"):
        make_spec(nodes=nodes, ha={"enabled": True, "virtual_ip": "10.0.0.100"})


def test_image_repository_follows_registry():
    assert make_spec().image_repository() == constants.DEFAULT_K8S_IMAGE_REPOSITORY
    spec = make_spec(registry={
        "endpoint": "harbor.local", "ip": "10.0.0.5", "port": 8080,
        "username": "admin", "password": "pw",
    })
    assert spec.image_repository() == "harbor.local:8080/google_containers"


def test_install_mode_flags():
    assert InstallMode.FULL.bootstraps_cluster and InstallMode.FULL.deploys_addons
    assert not InstallMode.ADDONS_ONLY.prepares_nodes
    assert InstallMode.ADDONS_ONLY.deploys_addons
    assert not InstallMode.INSTALL_ONLY.bootstraps_cluster
    assert not InstallMode.PRE_INIT.deploys_addons


def test_spec_without_validation_keeps_values():
    spec = ClusterSpec(nodes=[NodeSpec(ip="10.0.0.1")])
    assert spec.resource_package == ""
    assert spec.remote_tmp_dir == Config.REMOTE_TMP_DIR
