class SmartRouterError(Exception):
    """Base class for all router errors."""


class ConfigError(SmartRouterError):
    """Malformed recurrence rule, date or provider setting."""


class TargetNotFound(SmartRouterError):
    """A job or agent referenced by an action no longer exists."""

    def __init__(self, kind: str, target_id: str):
        self.kind = kind
        self.target_id = target_id
        super().__init__(f"{kind} not found: {target_id}")


class UnsupportedOperation(SmartRouterError):
    """The action cannot be executed live."""


class StoreIOError(SmartRouterError):
    """Reading or writing an external store failed."""
