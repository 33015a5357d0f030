"""Upstream cluster state, endpoint picking, health checks and flow control for a Kubernetes API gateway."""

__version__ = "0.1.0"