"""Client configuration used to reach a cluster's apiservers."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import urlsplit

from kubegw.flowcontrol import TokenBucketRateLimiter
from kubegw.spec import UpstreamCluster

USER_AGENT_NAME = "kube-gateway"


class _AlwaysAccept:
    """A rate limiter that never limits."""

    def try_accept(self) -> bool:
        return True


@dataclass
class TLSClientConfig:
    """TLS settings for connections to an apiserver."""

    server_name: str = ""
    key_data: bytes = b""
    cert_data: bytes = b""
    ca_data: bytes = b""
    insecure: bool = False
    next_protos: List[str] = field(default_factory=list)


@dataclass
class RESTConfig:
    """How to connect and authenticate to one apiserver."""

    host: str = ""
    bearer_token: str = ""
    user_agent: str = ""
    timeout: float = 0.0
    dial_timeout: float = 0.0
    dial_keep_alive: float = 0.0
    rate_limiter: Any = field(default_factory=_AlwaysAccept)
    tls_client_config: Optional[TLSClientConfig] = None


def _default_user_agent() -> str:
    system = platform.system().lower() or "unknown"
    machine = platform.machine().lower() or "unknown"
    return f"kubegw ({system}/{machine})"


def cal_qps(qps: int, qps_divisor: int) -> float:
    """Divide ``qps`` by the divisor when the divisor is greater than one."""
    result = float(qps)
    if qps_divisor > 1:
        result /= float(qps_divisor)
    return result


def new_rest_config() -> RESTConfig:
    """A config with the gateway's default timeouts, user agent and no rate limit."""
    return RESTConfig(
        timeout=5.0,
        dial_timeout=5.0,
        dial_keep_alive=30.0,
        rate_limiter=_AlwaysAccept(),
        user_agent=f"{_default_user_agent()}/{USER_AGENT_NAME}",
    )


def build_cluster_rest_config(cluster: UpstreamCluster) -> RESTConfig:
    """Build the client config for a cluster; the host is set per endpoint later."""
    scheme = "https"
    if cluster.spec.servers:
        endpoint = cluster.spec.servers[0].endpoint
        try:
            scheme = urlsplit(endpoint).scheme
        except ValueError as exc:
            raise ValueError(f"failed to parse endpoint={endpoint!r}, err: {exc}") from exc

    client = cluster.spec.client_config
    cfg = new_rest_config()
    cfg.bearer_token = client.bearer_token.decode()

    if client.qps > 0:
        qps = cal_qps(client.qps, client.qps_divisor)
        cfg.rate_limiter = TokenBucketRateLimiter(qps, int(client.burst))

    if scheme == "https":
        cfg.tls_client_config = TLSClientConfig(
            server_name=cluster.name,
            key_data=client.key_data,
            cert_data=client.cert_data,
            ca_data=client.ca_data,
            insecure=client.insecure,
        )
    return cfg