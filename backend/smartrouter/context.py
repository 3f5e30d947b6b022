from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from smartrouter.config import OperationMode, Settings
from smartrouter.core.state import RouterState
from smartrouter.observability.logger import get_logger
from smartrouter.quota.models import ThresholdAlert


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RouterContext:
    """Everything a component needs, passed explicitly to its constructor.

    Holds the settings, the live router state, the clock and the alert
    listeners. Tests swap the clock for a fixed one.
    """

    settings: Settings
    state: RouterState = field(default_factory=RouterState)
    clock: Callable[[], datetime] = utc_now
    alert_listeners: list[Callable[[ThresholdAlert], None]] = field(default_factory=list)
    on_state_change: Callable[[], None] | None = None
    mode: OperationMode | None = None

    def __post_init__(self):
        if self.mode is None:
            self.mode = self.settings.mode
        self._log = get_logger("context")

    def now(self) -> datetime:
        return self.clock()

    def get_logger(self, name: str):
        return get_logger(name)

    def emit_alert(self, alert: ThresholdAlert):
        for listener in list(self.alert_listeners):
            try:
                listener(alert)
            except Exception as e:
                # Alerting is a side channel, never a failure of the caller
                self._log.warning("alert_listener_failed", provider=alert.provider, error=str(e))

    def state_changed(self):
        self.state.last_updated = self.now()
        if self.on_state_change:
            self.on_state_change()
