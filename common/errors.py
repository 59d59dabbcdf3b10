"""Exception hierarchy for the trading assistant.

Validation and aggregate failures travel to the HTTP boundary; provider and
background persistence failures are absorbed and logged where they happen.
"""


class TradingAssistantError(Exception):
    """Base exception for all application errors."""


class ValidationError(TradingAssistantError, ValueError):
    """Malformed input at a boundary. Carries the field name and the offending value."""

    def __init__(self, field: str, value, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value!r}. {message}")


class ProviderFailure(TradingAssistantError):
    """One adapter failed (transport, timeout, parse or range)."""

    def __init__(self, provider: str, kind: str, message: str):
        self.provider = provider
        self.kind = kind
        super().__init__(f"{provider} {kind}: {message}")


class AggregateFailure(TradingAssistantError):
    """Every provider failed for a single analysis request."""


class PersistenceFailure(TradingAssistantError):
    """The session/trade store could not be read or written."""


class SessionNotFound(PersistenceFailure):
    """No analysis session with the requested id."""


class TradeRejected(TradingAssistantError):
    """The paper account refused to open a position (limits, balance, HOLD)."""


class PositionNotFound(TradingAssistantError):
    """No open position with the requested id."""


class InvariantViolation(TradingAssistantError):
    """Computed numeric state broke an ordering or sign invariant."""
