"""Feature gates that can be switched per cluster."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping

CLOSE_CONNECTION_WHEN_IDLE = "CloseConnectionWhenIdle"
DENY_ALL_REQUESTS = "DenyAllRequests"
FEATURE_GATE_ANNOTATION_KEY = "proxy.kubegateway.io/feature-gates"

ALL_ALPHA = "AllAlpha"
ALL_BETA = "AllBeta"


class PreRelease(str, Enum):
    """Maturity stage of a feature."""

    ALPHA = "ALPHA"
    BETA = "BETA"
    GA = ""
    DEPRECATED = "DEPRECATED"


@dataclass(frozen=True)
class FeatureSpec:
    """Default value and maturity of a feature."""

    default: bool = False
    pre_release: PreRelease = PreRelease.GA
    lock_to_default: bool = False


_SPECIAL_STAGES = {ALL_ALPHA: PreRelease.ALPHA, ALL_BETA: PreRelease.BETA}

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid syntax: {text!r}")


def _describe(name: str, spec: FeatureSpec) -> str:
    default = "true" if spec.default else "false"
    return f"{name}=true|false ({spec.pre_release.value} - default={default})"


class FeatureGate:
    """A set of known features with their current on/off state."""

    def __init__(self) -> None:
        self._known: Dict[str, FeatureSpec] = {
            ALL_ALPHA: FeatureSpec(default=False, pre_release=PreRelease.ALPHA),
            ALL_BETA: FeatureSpec(default=False, pre_release=PreRelease.BETA),
        }
        self._enabled: Dict[str, bool] = {}
        self._lock = threading.Lock()

    def add(self, specs: Mapping[str, FeatureSpec]) -> None:
        """Register features; re-adding one with the same spec is allowed."""
        with self._lock:
            known = dict(self._known)
            for name, spec in specs.items():
                existing = known.get(name)
                if existing is not None:
                    if existing == spec:
                        continue
                    raise ValueError(
                        f"feature gate {name!r} with different spec already exists: {existing}"
                    )
                known[name] = spec
            self._known = known

    def set(self, value: str) -> None:
        """Apply a comma separated list of ``Name=bool`` pairs."""
        wanted: Dict[str, bool] = {}
        for item in value.split(","):
            if not item:
                continue
            key, sep, raw = item.partition("=")
            key = key.strip()
            if not sep:
                raise ValueError(f"missing bool value for {key}")
            raw = raw.strip()
            try:
                wanted[key] = _parse_bool(raw)
            except ValueError as exc:
                raise ValueError(f"invalid value of {key}={raw}, err: {exc}") from exc
        self._set_from_map(wanted)

    def _set_from_map(self, wanted: Mapping[str, bool]) -> None:
        with self._lock:
            enabled = dict(self._enabled)
            for key, value in wanted.items():
                spec = self._known.get(key)
                if spec is None:
                    raise ValueError(f"unrecognized feature gate: {key}")
                if spec.lock_to_default and spec.default != value:
                    raise ValueError(
                        f"cannot set feature gate {key} to {value}, "
                        f"feature is locked to {spec.default}"
                    )
                enabled[key] = value
                stage = _SPECIAL_STAGES.get(key)
                if stage is not None:
                    for name, other in self._known.items():
                        if other.pre_release is stage and name not in enabled:
                            enabled[name] = value
            self._enabled = enabled

    def enabled(self, key: str) -> bool:
        """Current value of a feature; unknown features are off."""
        with self._lock:
            if key in self._enabled:
                return self._enabled[key]
            spec = self._known.get(key)
            return spec.default if spec is not None else False

    def known_features(self) -> List[str]:
        """Sorted descriptions of every feature that is neither GA nor deprecated."""
        with self._lock:
            return sorted(
                _describe(name, spec)
                for name, spec in self._known.items()
                if spec.pre_release not in (PreRelease.GA, PreRelease.DEPRECATED)
            )

    def deep_copy(self) -> "FeatureGate":
        """An independent gate with the same features and state."""
        copy = FeatureGate()
        with self._lock:
            copy._known = dict(self._known)
            copy._enabled = dict(self._enabled)
        return copy


_DEFAULT_FEATURE_SPECS = {
    CLOSE_CONNECTION_WHEN_IDLE: FeatureSpec(default=False, pre_release=PreRelease.ALPHA),
    DENY_ALL_REQUESTS: FeatureSpec(default=False, pre_release=PreRelease.ALPHA),
}

DEFAULT_MUTABLE_FEATURE_GATE = FeatureGate()
DEFAULT_MUTABLE_FEATURE_GATE.add(_DEFAULT_FEATURE_SPECS)
DEFAULT_FEATURE_GATE = DEFAULT_MUTABLE_FEATURE_GATE

_DEFAULT_KNOWN_FEATURES = tuple(DEFAULT_MUTABLE_FEATURE_GATE.known_features())


def is_default(gate: FeatureGate) -> bool:
    """True if the gate knows the default features with the default values."""
    features = gate.known_features()
    if len(features) != len(_DEFAULT_KNOWN_FEATURES):
        return False
    for expected, actual in zip(_DEFAULT_KNOWN_FEATURES, features):
        if expected != actual:
            return False
        key = expected.split("=", 1)[0]
        if DEFAULT_FEATURE_GATE.enabled(key) != gate.enabled(key):
            return False
    return True