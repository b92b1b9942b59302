"""Version pins, well-known paths and chart names for offline installs."""

# The first entry of each list is the default.
CONTAINERD_VERSIONS = ["2.2.1"]
RUNC_VERSIONS = ["1.3.4"]
NERDCTL_VERSIONS = ["2.2.1"]
DOCKER_CE_VERSIONS = ["29.2.0"]
K8S_VERSIONS = ["1.35.0"]

KUBE_OVN_VERSIONS = ["1.15.0"]
MULTUS_CNI_VERSIONS = ["snapshot-thick"]
HAMI_VERSIONS = ["2.7.1"]
KUBE_PROMETHEUS_VERSIONS = ["80.4.1"]

DEFAULT_K8S_IMAGE_REGISTRY = "registry.aliyuncs.com"
DEFAULT_K8S_IMAGE_REPOSITORY = f"{DEFAULT_K8S_IMAGE_REGISTRY}/google_containers"
DEFAULT_PAUSE_IMAGE = "pause:3.10.1"
HAMI_WEBUI_VERSION = "1.0.5"
DEFAULT_MULTUS_IMAGE = "k8snetworkplumbingwg/multus-cni:snapshot-thick"
UPSTREAM_MULTUS_IMAGE = "ghcr.io/k8snetworkplumbingwg/multus-cni:snapshot-thick"

# Remote files
RESOURCE_ARCHIVE = "resources.tar.gz"
EXTRACTED_MARKER = ".extracted_success"
ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
CONTAINERD_CONFIG = "/etc/containerd/config.toml"
LB_SYSCTL_CONF = "/etc/sysctl.d/99-k8s-lb.conf"
HAPROXY_CONF = "/etc/haproxy/haproxy.cfg"
KEEPALIVED_CONF = "/etc/keepalived/keepalived.conf"
KEEPALIVED_CHECK_SCRIPT = "/etc/keepalived/check_haproxy.sh"
KUBE_OVN_CNI_CONF = "/etc/cni/net.d/01-kube-ovn.conflist"
MULTUS_CNI_CONF = "/etc/cni/net.d/00-multus.conf"

# HA control plane
HA_APISERVER_PORT = 16443
APISERVER_PORT = 6443
VRRP_ROUTER_ID = 51
PRIMARY_PRIORITY = 100
BACKUP_PRIORITY = 90


def chart_archive(name: str, version: str) -> str:
    """File name of a packaged Helm chart inside the resource bundle."""
    return f"{name}-{version}.tgz"
