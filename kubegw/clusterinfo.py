"""Runtime state of one upstream cluster: endpoints, flow controls and TLS."""

from __future__ import annotations

import copy
import dataclasses
import logging
import ssl
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from kubegw.endpoint import EndpointInfo, EndpointInfoMap, EndpointStatus
from kubegw.features import (
    DEFAULT_MUTABLE_FEATURE_GATE,
    FEATURE_GATE_ANNOTATION_KEY,
    is_default,
)
from kubegw.flowcontrol import (
    DEFAULT_FLOW_CONTROL,
    FlowController,
    FlowControls,
    guess_flow_control_schema_type,
    new_flow_control,
)
from kubegw.restconfig import RESTConfig, TLSClientConfig, build_cluster_rest_config
from kubegw.servingtls import SecureServingConfig, ServingTLSConfig, VerifyOptions
from kubegw.spec import (
    DispatchPolicy,
    FlowControl,
    FlowControlSchema,
    FlowControlSchemaType,
    LoggingConfig,
    LogMode,
    SecureServing,
    UpstreamCluster,
    UpstreamClusterServer,
)

logger = logging.getLogger(__name__)

EndpointHealthCheck = Callable[[EndpointInfo], bool]
ClientFactory = Callable[[RESTConfig], Any]

DEFAULT_HEALTH_CHECK_INTERVAL = 5.0


class NoReadyEndpointsError(Exception):
    """Raised when no endpoint of a cluster can serve a request."""

    def __init__(self, reasons: Iterable[str] = ()) -> None:
        self.reasons = [reason for reason in reasons if reason]
        detail = " ".join(self.reasons)
        super().__init__(f"{detail}: no ready endpoints" if detail else "no ready endpoints")


def _ssl_context(tls: TLSClientConfig) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if tls.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif tls.ca_data:
        context.load_verify_locations(cadata=tls.ca_data.decode("ascii"))
    if tls.cert_data and tls.key_data:
        with tempfile.TemporaryDirectory() as directory:
            cert_path = Path(directory) / "client.crt"
            key_path = Path(directory) / "client.key"
            cert_path.write_bytes(tls.cert_data)
            key_path.write_bytes(tls.key_data)
            context.load_cert_chain(str(cert_path), str(key_path))
    if tls.next_protos:
        context.set_alpn_protocols(list(tls.next_protos))
    return context


def _default_client_factory(config: RESTConfig) -> httpx.Client:
    """An HTTP client bound to the config's host with its credentials."""
    headers = {"User-Agent": config.user_agent}
    if config.bearer_token:
        headers["Authorization"] = f"Bearer {config.bearer_token}"
    verify: Any = True
    if config.tls_client_config is not None:
        verify = _ssl_context(config.tls_client_config)
    return httpx.Client(
        base_url=config.host,
        headers=headers,
        timeout=httpx.Timeout(config.timeout, connect=config.dial_timeout or None),
        verify=verify,
    )


def _close_quietly(client: Any) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        try:
            close()
        except Exception:  # noqa: BLE001 - closing must never break a sync
            logger.debug("failed to close client", exc_info=True)


def is_log_enabled(upstream: LogMode, policy: LogMode) -> bool:
    """Off at either level wins; otherwise on at either level enables logging."""
    if upstream == LogMode.OFF or policy == LogMode.OFF:
        return False
    return upstream == LogMode.ON or policy == LogMode.ON


@dataclass
class EndpointPicker:
    """Chooses a ready endpoint among the allowed upstreams of a cluster."""

    cluster: "ClusterInfo"
    upstreams: List[str] = field(default_factory=list)
    strategy: str = ""
    flow_control: FlowController = DEFAULT_FLOW_CONTROL
    enable_log: bool = False

    def pop(self) -> EndpointInfo:
        """Return the next ready endpoint, round robin; raise NoReadyEndpointsError."""
        if not self.upstreams:
            raise NoReadyEndpointsError()
        ready: List[EndpointInfo] = []
        reasons: List[str] = []
        for name in self.upstreams:
            info = self.cluster.endpoints.load(name)
            if info is None:
                continue
            if info.is_ready():
                ready.append(info)
            else:
                reasons.append(info.unready_reason())
        if not ready:
            raise NoReadyEndpointsError(reasons)
        if len(ready) == 1:
            return ready[0]
        key = tuple(info.endpoint for info in ready)
        return ready[self.cluster._next_index(key) % len(ready)]


class ClusterInfo:
    """An upstream cluster with its endpoints and the config currently applied."""

    def __init__(
        self,
        cluster_name: str,
        rest_config: RESTConfig,
        health_check: Optional[EndpointHealthCheck] = None,
        *,
        health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.cluster = cluster_name.lower()
        self.endpoints = EndpointInfoMap()
        self.flow_controls = FlowControls()
        self.default_flow_control: FlowController = DEFAULT_FLOW_CONTROL
        self.feature_gate = DEFAULT_MUTABLE_FEATURE_GATE.deep_copy()
        self.health_check_interval = health_check_interval
        self.stop_event = threading.Event()
        self._rest_config = rest_config
        self._health_check = health_check
        self._client_factory = client_factory or _default_client_factory
        self._flow_control_spec = FlowControl()
        self._secure_serving = SecureServingConfig()
        self._dispatch_policies: List[DispatchPolicy] = []
        self._logging = LoggingConfig()
        self._loadbalancer: Dict[Tuple[str, ...], int] = {}
        self._lb_lock = threading.Lock()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    @property
    def rest_config(self) -> RESTConfig:
        return self._rest_config

    @property
    def flow_control_spec(self) -> FlowControl:
        return self._flow_control_spec

    @property
    def dispatch_policies(self) -> List[DispatchPolicy]:
        return self._dispatch_policies

    @property
    def logging_config(self) -> LoggingConfig:
        return self._logging

    def _next_index(self, key: Tuple[str, ...]) -> int:
        with self._lb_lock:
            value = self._loadbalancer.get(key, 0) + 1
            self._loadbalancer[key] = value
            return value

    def sync(self, cluster: UpstreamCluster) -> None:
        """Bring the runtime state in line with the cluster spec; raises on bad config."""
        if self.cluster != cluster.name.lower():
            logger.debug(
                "[cluster info] skip syncing cluster because input cluster name is "
                "mismatching, %s != %s",
                self.cluster,
                cluster.name,
            )
            return
        logger.debug("[cluster info] syncing cluster info, name=%r", self.cluster)
        self.sync_flow_control(cluster.spec.flow_control)
        self.sync_secure_serving(cluster.spec.secure_serving)
        self.sync_endpoints(cluster.spec.servers)
        self.sync_feature_gate(cluster.annotations)
        self._dispatch_policies = list(cluster.spec.dispatch_policies)
        self._logging = copy.deepcopy(cluster.spec.logging)

    def sync_endpoints(self, servers: Iterable[UpstreamClusterServer]) -> None:
        """Add, update and remove endpoints so they match ``servers``."""
        servers = list(servers)
        current = dict.fromkeys(self.all_endpoints())
        wanted = dict.fromkeys(server.endpoint for server in servers)
        deleted = [name for name in current if name not in wanted]
        added = [name for name in wanted if name not in current]

        if added or deleted:
            with self._lb_lock:
                self._loadbalancer = {}

        for name in deleted:
            info = self.endpoints.load_and_delete(name)
            if info is None:
                continue
            logger.info(
                "[cluster info] endpoint=%r is deleted from cluster %r",
                info.endpoint,
                self.cluster,
            )
            self._stop_endpoint(info)

        disabled = {server.endpoint for server in servers if server.disabled}
        for name in wanted:
            self._add_or_update_endpoint(name, name in disabled)

    def sync_flow_control(self, flow_control: FlowControl) -> None:
        """Create, resize or delete flow controls to match the new spec."""
        old = self._flow_control_spec
        if old == flow_control:
            return
        old_schemas: Dict[str, FlowControlSchema] = {s.name: s for s in old.schemas}
        new_names = set()
        for schema in flow_control.schemas:
            new_names.add(schema.name)
            old_type = guess_flow_control_schema_type(
                old_schemas.get(schema.name, FlowControlSchema())
            )
            new_type = guess_flow_control_schema_type(schema)
            existing = self.flow_controls.load(schema.name)
            if existing is None or old_type != new_type:
                created = new_flow_control(schema)
                self.flow_controls.store(schema.name, created)
                logger.info(
                    "[cluster info] cluster=%r ensure flowcontrol schema %s",
                    self.cluster,
                    created,
                )
                continue
            resized = False
            if new_type is FlowControlSchemaType.MAX_REQUESTS_INFLIGHT:
                resized = existing.resize(schema.max_requests_inflight.max, 0)
            elif new_type is FlowControlSchemaType.TOKEN_BUCKET:
                resized = existing.resize(schema.token_bucket.qps, schema.token_bucket.burst)
            if resized:
                logger.info(
                    "[cluster info] cluster=%r resize flowcontrol schema=%r",
                    self.cluster,
                    str(existing),
                )

        for name in old_schemas:
            if name not in new_names:
                logger.info(
                    "[cluster info] cluster=%r delete flowcontrol schema=%r", self.cluster, name
                )
                self.flow_controls.delete(name)
        self._flow_control_spec = copy.deepcopy(flow_control)

    def sync_secure_serving(self, secure_serving: SecureServing) -> None:
        """Apply new serving TLS data; raises ValueError on invalid PEM."""
        self._secure_serving = self._secure_serving.updated(secure_serving)

    def sync_feature_gate(self, annotations: Mapping[str, str]) -> None:
        """Apply the feature gate annotation, or reset to defaults when it is absent."""
        value = annotations.get(FEATURE_GATE_ANNOTATION_KEY, "")
        if not value:
            if not is_default(self.feature_gate):
                self.feature_gate = DEFAULT_MUTABLE_FEATURE_GATE.deep_copy()
            return
        self.feature_gate.set(value)

    def load_tls_config(self) -> Optional[ServingTLSConfig]:
        """Serving TLS config for this cluster, or None when nothing is configured."""
        return self._secure_serving.tls_config()

    def load_verify_options(self) -> Optional[VerifyOptions]:
        """Options to verify client certificates, or None without a client CA."""
        return self._secure_serving.verify_options

    def all_endpoints(self) -> List[str]:
        return self.endpoints.names()

    def stop(self) -> None:
        """Stop all work on this cluster and its endpoints."""
        self.stop_event.set()
        for _, info in self.endpoints:
            info.stop()

    def pick_one(self) -> EndpointInfo:
        """Pick any ready endpoint of the cluster."""
        return EndpointPicker(cluster=self, upstreams=self.all_endpoints()).pop()

    def get_flow_schema(self, name: str) -> FlowController:
        """The named flow control, or the default one."""
        if not name:
            return self.default_flow_control
        found = self.flow_controls.load(name)
        return found if found is not None else self.default_flow_control

    def feature_enabled(self, key: str) -> bool:
        return self.feature_gate.enabled(key)

    def _stop_endpoint(self, info: EndpointInfo) -> None:
        info.stop()
        clients = (info.proxy_transport, info.upgrade_transport, info.clientset)
        for client in {id(c): c for c in clients}.values():
            _close_quietly(client)

    def _add_or_update_endpoint(self, endpoint: str, disabled: bool) -> None:
        existing = self.endpoints.load(endpoint)
        if existing is not None:
            existing.set_disabled(disabled)
            return

        proxy_config = dataclasses.replace(self._rest_config, host=endpoint)
        if proxy_config.tls_client_config is not None:
            proxy_config.tls_client_config = dataclasses.replace(
                proxy_config.tls_client_config,
                next_protos=list(proxy_config.tls_client_config.next_protos),
            )
        upgrade_config = dataclasses.replace(proxy_config)
        if upgrade_config.tls_client_config is not None:
            upgrade_config.tls_client_config = dataclasses.replace(
                upgrade_config.tls_client_config, next_protos=["http/1.1"]
            )

        try:
            proxy_transport = self._client_factory(proxy_config)
            upgrade_transport = self._client_factory(upgrade_config)
            clientset = self._client_factory(proxy_config)
        except Exception:
            logger.exception(
                "failed to create clients for <cluster:%s,endpoint:%s>", self.cluster, endpoint
            )
            raise

        info = EndpointInfo(
            cluster=self.cluster,
            endpoint=endpoint,
            status=EndpointStatus(disabled=disabled, healthy=False),
            proxy_config=proxy_config,
            upgrade_config=upgrade_config,
            proxy_transport=proxy_transport,
            upgrade_transport=upgrade_transport,
            clientset=clientset,
        )
        if self.stopped:
            info.stop()
        logger.info(
            "[cluster info] new endpoint added, cluster=%r, endpoint=%r", self.cluster, endpoint
        )
        self.endpoints.store(endpoint, info)

        if self._health_check is not None:
            thread = threading.Thread(
                target=self._run_health_check,
                args=(info,),
                name=f"health-{self.cluster}-{endpoint}",
                daemon=True,
            )
            thread.start()

    def _run_health_check(self, info: EndpointInfo) -> None:
        check = self._health_check
        logger.debug(
            "[endpoint info] start health checking for cluster=%r, endpoint=%r",
            self.cluster,
            info.endpoint,
        )
        try:
            while not info.stopped:
                try:
                    if check(info):
                        return
                except Exception:  # noqa: BLE001 - keep checking after a failed probe
                    logger.exception("health check failed for endpoint=%r", info.endpoint)
                if info.stop_event.wait(self.health_check_interval):
                    return
        finally:
            logger.debug(
                "[endpoint info] stop health checking for cluster=%r, endpoint=%r",
                self.cluster,
                info.endpoint,
            )


def create_cluster_info(
    cluster: UpstreamCluster,
    health_check: Optional[EndpointHealthCheck],
) -> ClusterInfo:
    """Build the client config for a cluster and sync its spec into a new ClusterInfo."""
    rest_config = build_cluster_rest_config(cluster)
    logger.info("create valid rest config for cluster: %s", cluster.name)
    info = ClusterInfo(cluster.name, rest_config, health_check)
    try:
        info.sync(cluster)
    except Exception:
        info.stop()
        raise
    return info