class BotError(Exception):
    """Base class for bot engine errors."""


class InboundValidationError(BotError):
    """Malformed payload, identity or admin input. Raised before any state change."""

    def __init__(self, code: str, detail: str | None = None):
        self.code = code
        super().__init__(detail or code)


class StoreUnavailable(BotError):
    """Persistence fault. Fatal for the event being processed."""


class GatewaySendFailure(BotError):
    """Outbound delivery failed. Always recorded on the ledger, never propagated."""


class InvalidTransitionError(BotError):
    """A state write that the conversation state machine does not allow."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition: {current} -> {target}")
