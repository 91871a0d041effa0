"""Tests for the runtime debug toggles."""
import pytest

from thought_server.config import DebugConfig
from thought_server.core import DebugControl, InputValidationError


def test_seeded_from_config():
    control = DebugControl(DebugConfig(performance_monitoring=True))
    assert control.state == {
        "error_capture": True,
        "metric_tracking": True,
        "performance_monitoring": True,
        "tool_debug": False,
    }


def test_set_feature_by_alias():
    control = DebugControl(DebugConfig())

    state = control.set_feature("metricTracking", False)
    assert not state["metric_tracking"]
    assert not control.metric_tracking

    control.set_feature("mcpDebug", True)
    assert control.tool_debug


def test_unknown_feature():
    control = DebugControl(DebugConfig())
    with pytest.raises(InputValidationError, match="Unknown debug feature"):
        control.set_feature("verbose", True)


def test_subscribers_are_notified():
    """Test change callbacks and unsubscribing."""
    control = DebugControl(DebugConfig())
    seen = []
    unsubscribe = control.subscribe(seen.append)

    control.set_feature("error_capture", False)
    unsubscribe()
    control.set_feature("error_capture", True)

    assert len(seen) == 1
    assert seen[0]["error_capture"] is False


def test_state_is_a_copy():
    control = DebugControl(DebugConfig())
    control.state["error_capture"] = False
    assert control.error_capture
