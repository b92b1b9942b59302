"""HAProxy and Keepalived for the HA control plane.

Every master runs HAProxy on :16443 balancing over all apiservers on :6443,
and Keepalived floats the VIP between masters over unicast VRRP. The VRRP
health check follows HAProxy's systemd state.
"""
import logging
from typing import Callable, List, Optional

from airgapctl.modules.errors import CommandError, ConfigError
from . import constants
from .config import ClusterSpec, NodeSpec
from .installer.base import heredoc

logger = logging.getLogger("airgapctl.cluster.loadbalancer")

VRRP_AUTH_PASS = "123456"

CHECK_HAPROXY_SCRIPT = """#!/usr/bin/env bash
set -euo pipefail
systemctl is-active --quiet haproxy
"""


def render_haproxy_config(master_ips: List[str]) -> str:
    """HAProxy config fronting every apiserver."""
    if not master_ips:
        raise ConfigError("no master nodes found for haproxy config")
    servers = "\n".join(
        f"  server cp{i} {ip}:{constants.APISERVER_PORT} check"
        for i, ip in enumerate(master_ips, start=1)
    )
    return f"""global
  daemon
  maxconn 20000

defaults
  mode tcp
  option tcplog
  timeout connect 5s
  timeout client  1m
  timeout server  1m

# VIP entry point; 16443 avoids clashing with the local apiserver on 6443
frontend k8s_api
  bind *:{constants.HA_APISERVER_PORT}
  mode tcp
  option tcplog
  default_backend k8s_api_backend

backend k8s_api_backend
  balance roundrobin
  option tcp-check
  default-server inter 2s fall 3 rise 2
{servers}
"""


def render_keepalived_config(spec: ClusterSpec, node: NodeSpec) -> str:
    """Keepalived config for one master.

    router_id comes from the node's position in the node list; the primary
    master starts as MASTER with the higher priority.
    """
    router_id: Optional[str] = None
    peers = []
    for idx, other in enumerate(spec.nodes):
        if not other.is_master:
            continue
        if other.ip == node.ip:
            router_id = f"K8S_CP_{idx + 1}"
            continue
        peers.append(other.ip)
    if router_id is None:
        raise ConfigError(f"failed to determine router_id for keepalived on {node.ip}")

    if node.is_primary_master:
        state, priority = "MASTER", constants.PRIMARY_PRIORITY
    else:
        state, priority = "BACKUP", constants.BACKUP_PRIORITY
    peer_lines = "\n".join(f"    {ip}" for ip in peers)

    return f"""global_defs {{
  router_id {router_id}
}}

vrrp_script chk_haproxy {{
  script "{constants.KEEPALIVED_CHECK_SCRIPT}"
  interval 2
  fall 2
  rise 2
}}

vrrp_instance VI_1 {{
  state {state}
  interface {node.interface}
  virtual_router_id {constants.VRRP_ROUTER_ID}
  priority {priority}
  advert_int 1

  authentication {{
    auth_type PASS
    auth_pass {VRRP_AUTH_PASS}
  }}

  unicast_src_ip {node.ip}
  unicast_peer {{
{peer_lines}
  }}

  virtual_ipaddress {{
    {spec.ha.virtual_ip}
  }}

  track_script {{
    chk_haproxy
  }}
}}
"""


class LoadBalancerSetup:
    """Check/act pairs for the load balancer pieces of an HA master."""

    def __init__(self, run: Callable[[str], str], spec: ClusterSpec, node: NodeSpec):
        self.run = run
        self.spec = spec
        self.node = node

    def _read(self, path: str) -> Optional[str]:
        try:
            return self.run(f"cat {path}")
        except CommandError:
            return None

    def check_sysctl(self) -> bool:
        out = self._read(constants.LB_SYSCTL_CONF)
        return out is not None and "net.ipv4.ip_nonlocal_bind" in out

    def configure_sysctl(self) -> None:
        # HAProxy binds the VIP before Keepalived has assigned it
        self.run(heredoc(constants.LB_SYSCTL_CONF, "net.ipv4.ip_nonlocal_bind = 1"))
        self.run("sysctl --system")

    def check_haproxy_config(self) -> bool:
        out = self._read(constants.HAPROXY_CONF)
        return out is not None and "frontend k8s_api" in out and "backend k8s_api_backend" in out

    def configure_haproxy(self) -> None:
        config = render_haproxy_config(self.spec.master_ips())
        self.run("mkdir -p /etc/haproxy")
        self.run(f"cp {constants.HAPROXY_CONF} {constants.HAPROXY_CONF}.bak.$(date +%F) || true")
        self.run(heredoc(constants.HAPROXY_CONF, config))
        self.run(f"haproxy -c -f {constants.HAPROXY_CONF}")
        self.run("systemctl enable --now haproxy")
        logger.info(f"[{self.node.ip}] HAProxy listening on :{constants.HA_APISERVER_PORT}")

    def check_keepalived_config(self) -> bool:
        out = self._read(constants.KEEPALIVED_CONF)
        return out is not None and "vrrp_instance" in out and self.spec.ha.virtual_ip in out

    def configure_keepalived(self) -> None:
        config = render_keepalived_config(self.spec, self.node)
        self.run("mkdir -p /etc/keepalived")
        self.run(heredoc(constants.KEEPALIVED_CHECK_SCRIPT, CHECK_HAPROXY_SCRIPT))
        self.run(f"chmod a+x {constants.KEEPALIVED_CHECK_SCRIPT}")
        self.run(heredoc(constants.KEEPALIVED_CONF, config))
        self.run("systemctl enable --now keepalived")
        logger.info(f"[{self.node.ip}] Keepalived configured for VIP {self.spec.ha.virtual_ip}")
