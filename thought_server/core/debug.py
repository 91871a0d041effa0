"""Runtime debug toggles."""
from typing import Callable, Dict, List

from ..config import DebugConfig
from ..utils.logging import get_logger
from .errors import InputValidationError

logger = get_logger(__name__)

FEATURES = ("error_capture", "metric_tracking", "performance_monitoring", "tool_debug")

# Names used by tool-calling clients
FEATURE_ALIASES = {
    "errorCapture": "error_capture",
    "metricTracking": "metric_tracking",
    "performanceMonitoring": "performance_monitoring",
    "toolDebug": "tool_debug",
    "mcpDebug": "tool_debug",
}

DebugCallback = Callable[[Dict[str, bool]], None]


class DebugControl:
    """Mutable debug state seeded from config; machines read it per call."""

    def __init__(self, config: DebugConfig):
        self._state: Dict[str, bool] = {name: getattr(config, name) for name in FEATURES}
        self._callbacks: List[DebugCallback] = []

    @property
    def state(self) -> Dict[str, bool]:
        return dict(self._state)

    @property
    def error_capture(self) -> bool:
        return self._state["error_capture"]

    @property
    def metric_tracking(self) -> bool:
        return self._state["metric_tracking"]

    @property
    def performance_monitoring(self) -> bool:
        return self._state["performance_monitoring"]

    @property
    def tool_debug(self) -> bool:
        return self._state["tool_debug"]

    def set_feature(self, feature: str, enabled: bool) -> Dict[str, bool]:
        """Toggle one feature and notify subscribers. Returns the new state."""
        name = FEATURE_ALIASES.get(feature, feature)
        if name not in self._state:
            raise InputValidationError(
                f"Unknown debug feature '{feature}'. Valid features are: {', '.join(FEATURES)}"
            )
        self._state[name] = bool(enabled)
        logger.info("debug_feature_set", feature=name, enabled=bool(enabled))

        snapshot = self.state
        for callback in list(self._callbacks):
            callback(snapshot)
        return snapshot

    def subscribe(self, callback: DebugCallback) -> Callable[[], None]:
        """Register a change callback; returns a function that removes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe
