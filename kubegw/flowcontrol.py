"""Flow controls that bound requests sent to a cluster."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from kubegw.spec import (
    ExemptFlowControlSchema,
    FlowControlSchema,
    FlowControlSchemaType,
)

Clock = Callable[[], float]


class TokenBucketRateLimiter:
    """A token bucket that starts full and refills at ``qps`` tokens per second."""

    def __init__(self, qps: float, burst: int, clock: Clock = time.monotonic) -> None:
        self.qps = float(qps)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._last = clock()
        self._lock = threading.Lock()

    def try_accept(self) -> bool:
        """Take a token if one is available now."""
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.qps)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


class FlowController(ABC):
    """Common interface of all flow controls."""

    name: str
    schema_type: FlowControlSchemaType

    @abstractmethod
    def try_acquire(self) -> bool:
        """Return True if a token was taken immediately."""

    @abstractmethod
    def release(self) -> None:
        """Give a token back."""

    @abstractmethod
    def resize(self, n: int, burst: int) -> bool:
        """Change the capacity; return True if anything changed."""


class MaxInflightFlowControl(FlowController):
    """Bounds the number of requests in flight; unlimited for exempt schemas."""

    def __init__(
        self,
        name: str,
        size: int,
        *,
        schema_type: FlowControlSchemaType = FlowControlSchemaType.MAX_REQUESTS_INFLIGHT,
        unlimited: bool = False,
    ) -> None:
        self.name = name
        self.schema_type = schema_type
        self.max = size
        self.unlimited = unlimited
        self._inflight = 0
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        if self.unlimited:
            return True
        with self._lock:
            if self._inflight < self.max:
                self._inflight += 1
                return True
            return False

    def release(self) -> None:
        if self.unlimited:
            return
        with self._lock:
            if self._inflight > 0:
                self._inflight -= 1

    def resize(self, n: int, burst: int) -> bool:
        with self._lock:
            if self.max == n:
                return False
            self.max = n
            return True

    def __str__(self) -> str:
        return f"name={self.name},type={self.schema_type.value},size={self.max}"


class TokenBucketFlowControl(FlowController):
    """Bounds the request rate with a token bucket."""

    def __init__(self, name: str, qps: int, burst: int, clock: Clock = time.monotonic) -> None:
        self.name = name
        self.schema_type = FlowControlSchemaType.TOKEN_BUCKET
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._limiter = TokenBucketRateLimiter(qps, burst, clock)

    def try_acquire(self) -> bool:
        return self._limiter.try_accept()

    def release(self) -> None:
        """Tokens are not returned to a rate limiter."""

    def resize(self, n: int, burst: int) -> bool:
        if self.qps == n and self.burst == burst:
            return False
        self._limiter = TokenBucketRateLimiter(n, burst, self._clock)
        self.qps = n
        self.burst = burst
        return True

    def __str__(self) -> str:
        return (
            f"name={self.name},type={self.schema_type.value},"
            f"qps={self.qps},burst={self.burst}"
        )


class FlowControls:
    """A thread-safe registry of flow controls by name."""

    def __init__(self) -> None:
        self._data: Dict[str, FlowController] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> Optional[FlowController]:
        with self._lock:
            return self._data.get(name)

    def store(self, name: str, flow_control: FlowController) -> None:
        with self._lock:
            self._data[name] = flow_control

    def delete(self, name: str) -> None:
        with self._lock:
            self._data.pop(name, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def guess_flow_control_schema_type(schema: FlowControlSchema) -> FlowControlSchemaType:
    """Work out the schema type from the first limiter field that is set."""
    if schema.exempt is not None:
        return FlowControlSchemaType.EXEMPT
    if schema.max_requests_inflight is not None:
        return FlowControlSchemaType.MAX_REQUESTS_INFLIGHT
    if schema.token_bucket is not None:
        return FlowControlSchemaType.TOKEN_BUCKET
    return FlowControlSchemaType.EXEMPT


def new_flow_control(schema: FlowControlSchema) -> FlowController:
    """Build the flow control a schema describes."""
    typ = guess_flow_control_schema_type(schema)
    if typ is FlowControlSchemaType.MAX_REQUESTS_INFLIGHT:
        return MaxInflightFlowControl(schema.name, schema.max_requests_inflight.max)
    if typ is FlowControlSchemaType.TOKEN_BUCKET:
        return TokenBucketFlowControl(
            schema.name, schema.token_bucket.qps, schema.token_bucket.burst
        )
    return MaxInflightFlowControl(schema.name, 0, schema_type=typ, unlimited=True)


DEFAULT_FLOW_CONTROL = new_flow_control(
    FlowControlSchema(name="system-default", exempt=ExemptFlowControlSchema())
)