"""Declarative description of the upstream clusters served by the gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LogMode(str, Enum):
    """Whether request logging is switched on, off, or left to the other level."""

    UNSET = ""
    ON = "on"
    OFF = "off"


class FlowControlSchemaType(str, Enum):
    """The kind of limiter a flow control schema describes."""

    EXEMPT = "Exempt"
    MAX_REQUESTS_INFLIGHT = "MaxRequestsInflight"
    TOKEN_BUCKET = "TokenBucket"


@dataclass
class ExemptFlowControlSchema:
    """A schema that never limits requests."""


@dataclass
class MaxRequestsInflightFlowControlSchema:
    """Limits the number of requests being served at the same time."""

    max: int = 0


@dataclass
class TokenBucketFlowControlSchema:
    """Limits the request rate with a token bucket."""

    qps: int = 0
    burst: int = 0


@dataclass
class FlowControlSchema:
    """A named flow control; at most one of the limiter fields is expected."""

    name: str = ""
    exempt: Optional[ExemptFlowControlSchema] = None
    max_requests_inflight: Optional[MaxRequestsInflightFlowControlSchema] = None
    token_bucket: Optional[TokenBucketFlowControlSchema] = None


@dataclass
class FlowControl:
    """All flow control schemas of a cluster."""

    schemas: List[FlowControlSchema] = field(default_factory=list)


@dataclass
class SecureServing:
    """PEM data used when serving clients of one cluster."""

    key_data: bytes = b""
    cert_data: bytes = b""
    client_ca_data: bytes = b""


@dataclass
class ClientConfig:
    """How the gateway talks to the cluster's apiservers."""

    bearer_token: bytes = b""
    key_data: bytes = b""
    cert_data: bytes = b""
    ca_data: bytes = b""
    insecure: bool = False
    qps: int = 0
    qps_divisor: int = 0
    burst: int = 0


@dataclass
class LoggingConfig:
    """Cluster wide request logging."""

    mode: LogMode = LogMode.UNSET


@dataclass
class UpstreamClusterServer:
    """One apiserver endpoint of a cluster."""

    endpoint: str = ""
    disabled: Optional[bool] = None


@dataclass
class DispatchPolicy:
    """Routes matching requests to a subset of endpoints under a flow control."""

    rules: List[Any] = field(default_factory=list)
    strategy: str = ""
    upstream_subset: List[str] = field(default_factory=list)
    flow_control_schema_name: str = ""
    log_mode: LogMode = LogMode.UNSET


@dataclass
class UpstreamClusterSpec:
    """Desired state of an upstream cluster."""

    servers: List[UpstreamClusterServer] = field(default_factory=list)
    client_config: ClientConfig = field(default_factory=ClientConfig)
    secure_serving: SecureServing = field(default_factory=SecureServing)
    flow_control: FlowControl = field(default_factory=FlowControl)
    dispatch_policies: List[DispatchPolicy] = field(default_factory=list)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass
class UpstreamCluster:
    """A named upstream cluster with its annotations and spec."""

    name: str = ""
    annotations: Dict[str, str] = field(default_factory=dict)
    spec: UpstreamClusterSpec = field(default_factory=UpstreamClusterSpec)