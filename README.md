# kubegw

Building blocks for a gateway that sits in front of several Kubernetes API
server clusters. The package keeps the runtime state of every upstream
cluster: its API server endpoints and their health, the serving TLS material
for its clients, its feature gates and its flow controls. It picks a ready
endpoint in round-robin order whenever one is asked for.

## Modules

- `kubegw.spec` – dataclasses describing an upstream cluster:
  `UpstreamCluster` (name, annotations, spec), `UpstreamClusterSpec`,
  `UpstreamClusterServer`, `ClientConfig`, `SecureServing`, `FlowControl`,
  `FlowControlSchema` and its three limiter kinds, `DispatchPolicy`,
  `LoggingConfig`, and the enums `LogMode` and `FlowControlSchemaType`.
- `kubegw.manager` – `Manager`, a thread-safe registry of `ClusterInfo`
  objects keyed by lower-cased cluster name, with `add`, `get`, `delete`,
  `delete_all` and `client_for`. `client_for(name)` returns
  `(cluster, client)` for a ready endpoint. It raises `ClusterNotFoundError`
  for an unknown name and `NoReadyEndpointsError` when no endpoint is ready.
- `kubegw.clusterinfo` – `ClusterInfo` and `create_cluster_info(cluster,
  health_check)`. `ClusterInfo.sync(cluster)` applies a changed description.
  It creates, resizes or deletes flow controls, reloads serving certificates
  and client CAs, adds and removes endpoints or toggles their `disabled`
  flag, applies the feature-gate annotation, and stores the dispatch policies
  and logging config. Further members:
  - `pick_one()` returns a ready `EndpointInfo`, chosen round-robin.
  - `get_flow_schema(name)` returns the named flow control, or the exempt
    default.
  - `load_tls_config()` and `load_verify_options()` return `None` when
    nothing is configured.
  - `feature_enabled(key)`.
  - `stop()`.
  - `is_log_enabled(upstream, policy)` combines two `LogMode` values. "off"
    at either level wins, and otherwise "on" at either level enables logging.
- `kubegw.endpoint` – `EndpointStatus`, `EndpointInfo` (`set_disabled`,
  `update_status`, `is_ready`, `unready_reason`, `stop`) and the thread-safe
  `EndpointInfoMap`.
- `kubegw.health` – `gateway_health_check(endpoint)` sends `GET /healthz`
  through the endpoint's HTTP client with a 5 second timeout. It marks the
  endpoint healthy on status 200. Otherwise it marks it unhealthy with a
  reason such as `Timeout`, `Failure`, `NotReady` or the reason from an API
  `Status` body. It always returns `False`, so that probing continues.
- `kubegw.flowcontrol` – `new_flow_control(schema)` returns one of two
  controllers:
  - `MaxInflightFlowControl`, a bounded in-flight count, unlimited for exempt
    schemas;
  - `TokenBucketFlowControl`, rate limited.

  Both provide `try_acquire()`, `release()` and `resize(n, burst)`. The
  module also has `FlowControls`, a named registry, `TokenBucketRateLimiter`
  and `guess_flow_control_schema_type(schema)`.
- `kubegw.features` – `FeatureGate` (`add`, `set("Name=true,...")`,
  `enabled`, `known_features`, `deep_copy`), `FeatureSpec`, `PreRelease`, the
  features `CloseConnectionWhenIdle` and `DenyAllRequests`, and
  `is_default(gate)`.
- `kubegw.restconfig` – `build_cluster_rest_config(cluster)` derives a
  `RESTConfig`: bearer token, a token-bucket rate limit when `qps > 0`, and
  `TLSClientConfig` for `https` endpoints. `cal_qps(qps, qps_divisor)`
  divides only when the divisor is greater than one. `new_rest_config()`
  returns the defaults: 5 s timeout, 30 s keep-alive and no rate limit.
- `kubegw.servingtls` – `SecureServingConfig`, `ServingTLSConfig` and
  `VerifyOptions`. These parse and validate PEM client CAs and serving key
  pairs with `cryptography`. Invalid data raises `ValueError`.
- `kubegw.secure_serving` – `SecureServingOptions`:
  - `validate()` returns a list of `ValueError`s. It checks that reuse-port
    has a loopback client token, that extra ports are within range and not
    duplicated, and that the secure port is within range.
  - `add_arguments(parser)` registers `--bind-address`, `--secure-port`,
    `--cert-dir`, `--tls-cert-file`, `--tls-private-key-file`,
    `--other-secure-ports`, `--enable-reuse-port` and
    `--loopback-client-token` on an `argparse` parser.

  `create_reuse_port_listener(network, addr)` opens a listening socket with
  `SO_REUSEADDR` and, where available, `SO_REUSEPORT`. It returns the socket
  and its port.

## Clients and health checks

Each endpoint gets `httpx.Client` instances built from the cluster's
`RESTConfig`:
- a proxy client;
- an HTTP/1.1 client for upgrades;
- a clientset used for probes.

These clients are bound to the endpoint's URL and carry the bearer token and
TLS settings. A different factory can be passed to `ClusterInfo` as
`client_factory`.

When a health check function is given, every endpoint is probed in a
background daemon thread. The probe runs every `health_check_interval`
seconds (5 by default). It ends when the check returns `True` or when the
endpoint or cluster is stopped. `Manager.delete` and `Manager.delete_all`
stop the clusters they remove.

## Example

```python
from kubegw.clusterinfo import NoReadyEndpointsError, create_cluster_info
from kubegw.health import gateway_health_check
from kubegw.manager import ClusterNotFoundError, Manager
from kubegw.spec import ClientConfig, UpstreamCluster, UpstreamClusterServer, UpstreamClusterSpec

cluster = UpstreamCluster(
    name="my.cluster",
    spec=UpstreamClusterSpec(
        servers=[UpstreamClusterServer(endpoint="https://127.0.0.1:6443")],
        client_config=ClientConfig(bearer_token=b"token", insecure=True, qps=10, burst=20),
    ),
)

manager = Manager()
manager.add(create_cluster_info(cluster, gateway_health_check))

try:
    info, client = manager.client_for("My.Cluster")   # names are case-insensitive
except ClusterNotFoundError:
    ...
except NoReadyEndpointsError as exc:
    print(exc.reasons)                               # why each endpoint is not ready

manager.delete("my.cluster")                         # stops its health checks
```

## What this package does not do

It does not serve or forward API requests itself. It has no HTTP server and
no request proxying. It does not watch `UpstreamCluster` resources, so
`ClusterInfo.sync` must be called with each new description. It has no
authentication or authorization webhooks.

Dispatch policies are stored on a cluster as given, but the package does not
match requests against their rules. `EndpointPicker` has to be built by the
caller with the upstreams and flow control to use.

There is no command-line program.

## Tests

The test suite uses pytest. Install it with the `test` extra and run `pytest`.