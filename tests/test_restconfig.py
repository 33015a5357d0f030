import pytest

from kubegw.flowcontrol import TokenBucketRateLimiter
from kubegw.restconfig import (
    RESTConfig,
    build_cluster_rest_config,
    cal_qps,
    new_rest_config,
)
from kubegw.spec import (
    ClientConfig,
    UpstreamCluster,
    UpstreamClusterServer,
    UpstreamClusterSpec,
)


@pytest.mark.parametrize(
    "qps, divisor, want",
    [(1, 0, 1.0), (1, -1, 1.0), (1, 1, 1.0), (1, 10, 0.1)],
    ids=["divisor=0", "divisor=-1", "divisor=1", "divisor=10"],
)
def test_cal_qps(qps, divisor, want):
    assert cal_qps(qps, divisor) == pytest.approx(want)


def _cluster(endpoint=None, **client):
    servers = [UpstreamClusterServer(endpoint=endpoint)] if endpoint is not None else []
    return UpstreamCluster(
        name="testing.cluster",
        spec=UpstreamClusterSpec(servers=servers, client_config=ClientConfig(**client)),
    )


def test_new_rest_config_defaults():
    cfg = new_rest_config()
    assert cfg.timeout == 5.0
    assert cfg.dial_timeout == 5.0
    assert cfg.dial_keep_alive == 30.0
    assert cfg.user_agent.endswith("/kube-gateway")
    assert all(cfg.rate_limiter.try_accept() for _ in range(100))


def test_https_endpoint_gets_tls_config():
    cfg = build_cluster_rest_config(
        _cluster("https://127.0.0.1:443", insecure=True, bearer_token=b"token", qps=10, burst=20)
    )
    assert cfg.bearer_token == "token"
    assert cfg.tls_client_config is not None
    assert cfg.tls_client_config.server_name == "testing.cluster"
    assert cfg.tls_client_config.insecure is True
    assert isinstance(cfg.rate_limiter, TokenBucketRateLimiter)
    assert cfg.rate_limiter.qps == 10.0
    assert cfg.rate_limiter.burst == 20


def test_qps_divisor_applies_to_rate_limiter():
    cfg = build_cluster_rest_config(_cluster("https://h:443", qps=10, qps_divisor=10, burst=1))
    assert cfg.rate_limiter.qps == pytest.approx(1.0)


def test_http_endpoint_has_no_tls():
    cfg = build_cluster_rest_config(_cluster("http://127.0.0.1:8080"))
    assert cfg.tls_client_config is None


def test_no_servers_defaults_to_https():
    cfg = build_cluster_rest_config(_cluster(None, ca_data=b"ca"))
    assert cfg.tls_client_config is not None
    assert cfg.tls_client_config.ca_data == b"ca"


def test_zero_qps_is_unlimited():
    cfg = build_cluster_rest_config(_cluster("https://h:443"))
    assert not isinstance(cfg.rate_limiter, TokenBucketRateLimiter)
    assert all(cfg.rate_limiter.try_accept() for _ in range(50))


def test_invalid_endpoint_raises():
    with pytest.raises(ValueError, match="failed to parse endpoint"):
        build_cluster_rest_config(_cluster("http://[::1"))


def test_rest_config_is_independent_per_call():
    a = build_cluster_rest_config(_cluster("https://h:443"))
    b = build_cluster_rest_config(_cluster("https://h:443"))
    a.host = "https://other"
    assert b.host == ""
    assert isinstance(a, RESTConfig)