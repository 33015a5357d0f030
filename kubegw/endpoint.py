"""Per-endpoint state of an upstream cluster."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


@dataclass
class EndpointStatus:
    """Health and administrative state of one endpoint."""

    healthy: bool = False
    reason: str = ""
    message: str = ""
    disabled: bool = False

    def is_ready(self) -> bool:
        """An endpoint is ready when it is enabled and healthy."""
        return not self.disabled and self.healthy


@dataclass(eq=False)
class EndpointInfo:
    """One apiserver endpoint together with the clients used to reach it."""

    cluster: str = ""
    endpoint: str = ""
    status: EndpointStatus = field(default_factory=EndpointStatus)
    proxy_config: Any = None
    upgrade_config: Any = None
    proxy_transport: Any = None
    upgrade_transport: Any = None
    clientset: Any = None
    stop_event: threading.Event = field(default_factory=threading.Event, repr=False)
    status_changes: int = field(default=0, repr=False)
    last_status_change: Optional[float] = field(default=None, repr=False)

    @property
    def stopped(self) -> bool:
        """True once the endpoint has been stopped."""
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Stop all work tied to this endpoint."""
        self.stop_event.set()

    def set_disabled(self, disabled: bool) -> None:
        """Enable or disable the endpoint."""
        if self.status.disabled != disabled:
            self.status.disabled = disabled
            self._record_status_change()

    def update_status(self, healthy: bool, reason: str, message: str) -> None:
        """Record the outcome of a health check; reason and message change with health."""
        if not healthy:
            logger.debug(
                "unhealthy upstream, cluster=%s, endpoint=%s, reason=%s",
                _quote(self.cluster),
                _quote(self.endpoint),
                _quote(reason),
            )
        if self.status.healthy != healthy:
            self.status.healthy = healthy
            self.status.reason = reason
            self.status.message = message
            self._record_status_change()

    def _record_status_change(self) -> None:
        """Count the transition, stamp its time and log the new status."""
        self.status_changes += 1
        self.last_status_change = time.monotonic()
        logger.info(
            "[endpoint info] endpoint status changed, cluster=%s, endpoint=%s, "
            "disabled=%s, healthy=%s, reason=%s, message=%s",
            _quote(self.cluster),
            _quote(self.endpoint),
            str(self.status.disabled).lower(),
            str(self.status.healthy).lower(),
            _quote(self.status.reason),
            _quote(self.status.message),
        )

    def is_ready(self) -> bool:
        return self.status.is_ready()

    def unready_reason(self) -> str:
        """Explain why the endpoint is not ready, or return an empty string."""
        if self.status.disabled:
            return f"endpoint={_quote(self.endpoint)} is disabled."
        if not self.status.healthy:
            return (
                f"endpoint={_quote(self.endpoint)} is unhealthy, "
                f"reason={_quote(self.status.reason)}, "
                f"message={_quote(self.status.message)}."
            )
        return ""


class EndpointInfoMap:
    """A thread-safe mapping of endpoint address to its info."""

    def __init__(self) -> None:
        self._data: Dict[str, EndpointInfo] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> Optional[EndpointInfo]:
        with self._lock:
            return self._data.get(name)

    def load_and_delete(self, name: str) -> Optional[EndpointInfo]:
        with self._lock:
            return self._data.pop(name, None)

    def store(self, name: str, info: EndpointInfo) -> None:
        with self._lock:
            self._data[name] = info

    def load_or_store(self, name: str, info: EndpointInfo) -> Tuple[EndpointInfo, bool]:
        """Return the existing info and True, or store ``info`` and return it with False."""
        with self._lock:
            existing = self._data.get(name)
            if existing is not None:
                return existing, True
            self._data[name] = info
            return info, False

    def names(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def __iter__(self) -> Iterator[Tuple[str, EndpointInfo]]:
        """Iterate over a snapshot of ``(name, info)`` pairs."""
        with self._lock:
            items = list(self._data.items())
        return iter(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)