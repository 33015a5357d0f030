"""Registry of the upstream clusters known to the gateway."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterator, Optional, Tuple

from kubegw.clusterinfo import ClusterInfo

logger = logging.getLogger(__name__)


class ClusterNotFoundError(LookupError):
    """Raised when no cluster with the requested name is registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"cluster {json.dumps(name)}: cluster not found")


class Manager:
    """A thread-safe, case-insensitive mapping of cluster name to ClusterInfo."""

    def __init__(self) -> None:
        self._clusters: Dict[str, ClusterInfo] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[ClusterInfo]:
        """The cluster with this name, or None."""
        with self._lock:
            return self._clusters.get(name.lower())

    def add(self, cluster: Optional[ClusterInfo]) -> None:
        """Register a cluster under its lower-cased name; None is ignored."""
        if cluster is None:
            return
        cluster.cluster = cluster.cluster.lower()
        logger.debug("[cluster manager] new cluster info is added, cluster=%r", cluster.cluster)
        with self._lock:
            self._clusters[cluster.cluster] = cluster

    def delete(self, name: str) -> None:
        """Remove a cluster and stop all work on it."""
        with self._lock:
            cluster = self._clusters.pop(name.lower(), None)
        if cluster is None:
            return
        cluster.stop()
        logger.debug("[cluster manager] cluster info is deleted, cluster=%r", cluster.cluster)

    def delete_all(self) -> None:
        """Stop and remove every cluster."""
        logger.debug("[cluster manager] delete all cluster info")
        with self._lock:
            clusters = list(self._clusters.values())
            self._clusters = {}
        for cluster in clusters:
            cluster.stop()

    def client_for(self, name: str) -> Tuple[ClusterInfo, Any]:
        """The cluster and the client of one of its ready endpoints.

        Raises ClusterNotFoundError for an unknown cluster and
        NoReadyEndpointsError when no endpoint is ready.
        """
        cluster = self.get(name)
        if cluster is None:
            raise ClusterNotFoundError(name)
        endpoint = cluster.pick_one()
        return cluster, endpoint.clientset

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._clusters)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            names = list(self._clusters)
        return iter(names)