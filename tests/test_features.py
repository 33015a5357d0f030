import pytest

from kubegw.features import (
    DEFAULT_FEATURE_GATE,
    DENY_ALL_REQUESTS,
    CLOSE_CONNECTION_WHEN_IDLE,
    FeatureGate,
    FeatureSpec,
    PreRelease,
    is_default,
)


def _changed_value():
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    gate.set("DenyAllRequests=true")
    return gate


def _changed_keys():
    gate = FeatureGate()
    gate.add(
        {
            "Test1": FeatureSpec(default=False, pre_release=PreRelease.ALPHA),
            "Test2": FeatureSpec(default=False, pre_release=PreRelease.ALPHA),
        }
    )
    return gate


@pytest.mark.parametrize(
    "make_gate, want",
    [
        (lambda: DEFAULT_FEATURE_GATE.deep_copy(), True),
        (FeatureGate, False),
        (_changed_value, False),
        (_changed_keys, False),
    ],
    ids=["deepcopy", "empty", "feature value changed", "feature key changed"],
)
def test_is_default(make_gate, want):
    assert is_default(make_gate()) is want


def test_known_features_describe_default_features():
    features = DEFAULT_FEATURE_GATE.known_features()
    assert "DenyAllRequests=true|false (ALPHA - default=false)" in features
    assert features == sorted(features)


def test_set_enables_feature_on_copy_only():
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    assert gate.enabled(DENY_ALL_REQUESTS) is False
    gate.set("DenyAllRequests=true")
    assert gate.enabled(DENY_ALL_REQUESTS) is True
    assert DEFAULT_FEATURE_GATE.enabled(DENY_ALL_REQUESTS) is False


def test_set_several_with_spaces():
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    gate.set(" DenyAllRequests = true ,CloseConnectionWhenIdle=1,")
    assert gate.enabled(DENY_ALL_REQUESTS) is True
    assert gate.enabled(CLOSE_CONNECTION_WHEN_IDLE) is True


@pytest.mark.parametrize(
    "value",
    ["Unknown=true", "DenyAllRequests", "DenyAllRequests=maybe"],
)
def test_set_rejects_bad_input(value):
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    with pytest.raises(ValueError):
        gate.set(value)
    assert gate.enabled(DENY_ALL_REQUESTS) is False


def test_failed_set_leaves_gate_unchanged():
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    with pytest.raises(ValueError):
        gate.set("DenyAllRequests=true,Unknown=true")
    assert gate.enabled(DENY_ALL_REQUESTS) is False


def test_all_alpha_enables_unset_alpha_features():
    gate = DEFAULT_FEATURE_GATE.deep_copy()
    gate.set("CloseConnectionWhenIdle=false")
    gate.set("AllAlpha=true")
    assert gate.enabled(DENY_ALL_REQUESTS) is True
    assert gate.enabled(CLOSE_CONNECTION_WHEN_IDLE) is False


def test_locked_feature_cannot_change():
    gate = FeatureGate()
    gate.add({"Locked": FeatureSpec(default=True, pre_release=PreRelease.GA, lock_to_default=True)})
    with pytest.raises(ValueError):
        gate.set("Locked=false")
    gate.set("Locked=true")
    assert gate.enabled("Locked") is True


def test_add_same_spec_twice_and_conflict():
    gate = FeatureGate()
    spec = FeatureSpec(default=True, pre_release=PreRelease.BETA)
    gate.add({"Feature": spec})
    gate.add({"Feature": spec})
    assert gate.enabled("Feature") is True
    with pytest.raises(ValueError):
        gate.add({"Feature": FeatureSpec(default=False, pre_release=PreRelease.BETA)})


def test_unknown_feature_is_disabled():
    assert DEFAULT_FEATURE_GATE.enabled("NoSuchFeature") is False


def test_ga_and_deprecated_features_not_listed():
    gate = FeatureGate()
    before = gate.known_features()
    gate.add(
        {
            "Stable": FeatureSpec(default=True, pre_release=PreRelease.GA),
            "Old": FeatureSpec(default=False, pre_release=PreRelease.DEPRECATED),
        }
    )
    assert gate.known_features() == before
    assert gate.enabled("Stable") is True