import time

import pytest

from kubegw.clusterinfo import ClusterInfo, NoReadyEndpointsError
from kubegw.manager import ClusterNotFoundError, Manager
from kubegw.restconfig import RESTConfig, build_cluster_rest_config
from kubegw.spec import (
    ClientConfig,
    DispatchPolicy,
    UpstreamCluster,
    UpstreamClusterServer,
    UpstreamClusterSpec,
)

ENDPOINT = "https://127.0.0.1:443"


class FakeClient:
    def __init__(self, config):
        self.config = config
        self.closed = False

    def close(self):
        self.closed = True


def upstream_cluster(name="testing.cluster"):
    return UpstreamCluster(
        name=name,
        spec=UpstreamClusterSpec(
            servers=[UpstreamClusterServer(endpoint=ENDPOINT)],
            client_config=ClientConfig(insecure=True, bearer_token=b"token", qps=10, burst=20),
            dispatch_policies=[DispatchPolicy()],
        ),
    )


def fake_cluster_info(cluster, health_check):
    info = ClusterInfo(
        cluster.name,
        build_cluster_rest_config(cluster),
        health_check=health_check,
        client_factory=FakeClient,
    )
    info.sync(cluster)
    return info


def always_ready(endpoint):
    if not endpoint.is_ready():
        endpoint.update_status(True, "", "")
    return False


def wait_ready(cluster, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        info = cluster.endpoints.load(ENDPOINT)
        if info is not None and info.is_ready():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def manager():
    m = Manager()
    yield m
    m.delete_all()


def test_client_for_unknown_cluster(manager):
    with pytest.raises(ClusterNotFoundError) as excinfo:
        manager.client_for("not-found")
    assert excinfo.value.name == "not-found"
    assert str(excinfo.value) == 'cluster "not-found": cluster not found'


def test_client_for_not_ready_cluster(manager):
    cluster = fake_cluster_info(upstream_cluster("testing.notReadyCluster"), None)
    manager.add(cluster)
    with pytest.raises(NoReadyEndpointsError):
        manager.client_for("testing.notReadyCluster")
    assert manager.get("testing.notReadyCluster") is cluster


def test_client_for_ready_cluster(manager):
    cluster = fake_cluster_info(upstream_cluster(), always_ready)
    manager.add(cluster)
    assert wait_ready(cluster)
    got_cluster, client = manager.client_for("testing.cluster")
    assert got_cluster is cluster
    assert isinstance(client, FakeClient)
    assert client.config.host == ENDPOINT


def test_names_are_case_insensitive(manager):
    cluster = ClusterInfo("Mixed.Case", RESTConfig(), client_factory=FakeClient)
    cluster.cluster = "Mixed.Case"
    manager.add(cluster)
    assert cluster.cluster == "mixed.case"
    assert manager.get("MIXED.case") is cluster
    assert "mixed.CASE" in manager
    assert list(manager) == ["mixed.case"]


def test_add_none_is_ignored(manager):
    manager.add(None)
    assert len(manager) == 0


def test_delete_stops_cluster(manager):
    cluster = ClusterInfo("a", RESTConfig(), client_factory=FakeClient)
    cluster.sync_endpoints([UpstreamClusterServer(endpoint=ENDPOINT)])
    manager.add(cluster)
    manager.delete("A")
    assert manager.get("a") is None
    assert cluster.stopped
    assert cluster.endpoints.load(ENDPOINT).stopped


def test_delete_unknown_is_noop(manager):
    cluster = ClusterInfo("a", RESTConfig(), client_factory=FakeClient)
    manager.add(cluster)
    manager.delete("b")
    assert manager.get("a") is cluster
    assert not cluster.stopped


def test_delete_all(manager):
    first = ClusterInfo("a", RESTConfig(), client_factory=FakeClient)
    second = ClusterInfo("b", RESTConfig(), client_factory=FakeClient)
    manager.add(first)
    manager.add(second)
    manager.delete_all()
    assert len(manager) == 0
    assert first.stopped and second.stopped