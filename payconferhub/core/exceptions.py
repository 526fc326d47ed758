"""
Exception classes for payment aggregation and plan processing.

Read-path failures are fatal to the call that hit them; write-path failures
are logged by the caller and do not discard an already computed result.
"""

from typing import Any, Dict, Optional


class PayConferError(Exception):
    """
    Base exception for all PayConferHub errors.

    Every exception carries:
    - Error code (stable identifier for log and metric labels)
    - Context (extra keyword fields, logged alongside the error)
    """

    error_code = "payconfer_error"

    def __init__(self, message: str, error_code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for structured logging."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
                **self.context,
            }
        }


class SourceUnavailable(PayConferError):
    """The plan store query could not complete. No payment is produced."""

    error_code = "source_unavailable"


class PersistenceError(PayConferError):
    """A ledger append or a plan persist failed."""

    error_code = "persistence_error"


class SourceStreamError(PayConferError):
    """
    The input stream of the plan transformer failed.

    The original exception is chained as ``__cause__``.
    """

    error_code = "source_stream_error"


class InvalidPartner(PayConferError, ValueError):
    """The partner identifier is empty. Raised before any work starts."""

    error_code = "invalid_partner"


class StepTimeout(PayConferError):
    """A suspension point exceeded the configured step timeout."""

    error_code = "step_timeout"

    def __init__(self, step: str, timeout_seconds: float):
        super().__init__(
            f"Step '{step}' timed out after {timeout_seconds}s",
            step=step,
            timeout_seconds=timeout_seconds,
        )
        self.step = step
        self.timeout_seconds = timeout_seconds
