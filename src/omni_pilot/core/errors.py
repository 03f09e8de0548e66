"""
errors.py - Error taxonomy for the pilot runtime

Every failure the loop can observe maps onto one of these classes. The class
decides what happens next:

    NetworkError / RateLimitedError   retried with backoff
    AuthError / QuotaError / RequestError   fatal, surfaced immediately
    DecodeError                        fed back to the model, run continues
    UnknownActionError                 fatal (the model named no known action)
    ExecutionError                     retried to a consecutive budget, then fatal
    ConfirmationDenied / TimedOut      the action did not happen, run continues
    EffectNotObservedWarning           logged and tolerated
"""

from __future__ import annotations


class PilotError(Exception):
    """Base class for all runtime errors."""

    #: Fatal errors move the run to ``Error``; everything else is absorbed.
    fatal: bool = False


class ConfigError(PilotError):
    """Configuration is missing or invalid."""

    fatal = True


class AgentBusyError(PilotError):
    """A run is already executing device input."""


class RunStopped(PilotError):
    """Stop or kill switch observed at a suspension point."""


# =============================================================================
# Provider errors
# =============================================================================


class ProviderError(PilotError):
    """A model backend failed to produce a response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(ProviderError):
    """Connection failure, timeout, or a stream cut before its end marker."""


class RateLimitedError(ProviderError):
    """The backend asked us to slow down."""

    def __init__(
        self, message: str, wait_seconds: float = 30.0, status_code: int | None = 429
    ) -> None:
        super().__init__(message, status_code)
        self.wait_seconds = wait_seconds


class AuthError(ProviderError):
    """Credentials rejected."""

    fatal = True


class QuotaError(ProviderError):
    """Account quota or billing limit exhausted."""

    fatal = True


class RequestError(ProviderError):
    """The backend rejected the request as malformed."""

    fatal = True


# =============================================================================
# Decode errors
# =============================================================================


class DecodeError(PilotError):
    """The model response could not be turned into an action.

    ``feedback`` is what the model reads on its next turn.
    """

    def __init__(self, message: str, raw: str = "", feedback: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw
        self.feedback = feedback or (
            f"Your last response could not be used: {message}. "
            "Respond with exactly one JSON action object."
        )


class UnknownActionError(DecodeError):
    """A structured invocation named a tool or action we do not define."""

    fatal = True


# =============================================================================
# Execution errors
# =============================================================================


class ExecutionError(PilotError):
    """The input driver failed while performing an action."""


class ConfirmationDenied(PilotError):
    """The user refused a dangerous action."""


class ConfirmationTimedOut(ConfirmationDenied):
    """Nobody answered the confirmation prompt in time."""


class EffectNotObservedWarning(UserWarning):
    """An action ran but the screen did not change."""


__all__ = [
    "AgentBusyError",
    "AuthError",
    "ConfigError",
    "ConfirmationDenied",
    "ConfirmationTimedOut",
    "DecodeError",
    "EffectNotObservedWarning",
    "ExecutionError",
    "NetworkError",
    "PilotError",
    "ProviderError",
    "QuotaError",
    "RateLimitedError",
    "RequestError",
    "RunStopped",
    "UnknownActionError",
]
