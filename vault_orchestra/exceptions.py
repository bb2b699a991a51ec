"""Exception classes for vault orchestration.

This module defines the exception hierarchy used throughout the vault_orchestra
package. Workflow operations report precondition failures through result
records instead; these exceptions cover configuration problems, infrastructure
failures and the raising variants of state machine checks.
"""

from typing import Optional


class OrchestraError(Exception):
    """Base exception for all vault orchestration operations.

    All other exceptions in this module inherit from this class.
    """
    pass


class ConfigurationError(OrchestraError):
    """Raised when settings are missing or malformed.

    The message always names the offending environment variable or field so
    the operator can fix it without reading the source.
    """
    pass


class UnknownStatusError(OrchestraError):
    """Raised when a status string is outside the closed status set."""

    def __init__(self, status: str):
        super().__init__(f"Unknown task status: {status}")
        self.status = status


class InvalidTransitionError(OrchestraError):
    """Raised when the state machine rejects a requested move."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Invalid transition: {from_status} → {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class SpawnError(OrchestraError):
    """Raised when the CLI subprocess could not be started.

    Carries the executable that was attempted so the error event can tell the
    operator which path to fix.
    """

    def __init__(self, executable: str, reason: str):
        super().__init__(f"Failed to start {executable}: {reason}")
        self.executable = executable
        self.reason = reason


class DeliveryError(OrchestraError):
    """Raised by an output sink when a batch could not be delivered."""
    pass


class RateLimitError(DeliveryError):
    """Raised by an output sink when the delivery channel is rate limited.

    The streamer retries a delivery exactly once after a fixed backoff when it
    sees this error.
    """

    def __init__(self, message: str = "Rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after
