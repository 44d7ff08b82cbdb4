"""
Error taxonomy for the onramp backend.

Every error carries the HTTP status it should be surfaced with, so the
request handlers can render any of them the same way.
"""

from typing import Any, Dict, List, Optional


class OnrampError(Exception):
    """Base class for all onramp errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"status": "error", "error": self.message}
        payload.update(self.details)
        return payload


class ValidationError(OnrampError):
    """Malformed caller input. Never retried."""

    status_code = 400


class ConfigurationError(OnrampError):
    """Missing or invalid operator configuration (e.g. funding credential)."""

    status_code = 500


class UpstreamUnavailable(OnrampError):
    """A price, quote, swap or checkout provider is unreachable or erroring."""

    status_code = 503


class SessionNotFound(OnrampError):
    """No payment session with the given id exists."""

    status_code = 404


class SessionConflict(OnrampError):
    """The session is already being settled by another request."""

    status_code = 409


class SessionStateError(OnrampError):
    """A status change would move a session backward."""

    status_code = 409


class OnChainSubmissionError(OnrampError):
    """Signing or broadcasting a transaction failed."""

    status_code = 500

    def __init__(
        self,
        message: str,
        transient: bool = False,
        retry_scheduled: bool = False,
        retry_count: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.transient = transient
        self.retry_scheduled = retry_scheduled
        self.retry_count = retry_count

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.retry_scheduled:
            payload["retryScheduled"] = True
            payload["retryCount"] = self.retry_count
        return payload


class PartialSettlementError(OnChainSubmissionError):
    """A multi-step settlement stopped after some transactions were broadcast."""

    def __init__(self, message: str, transactions: List[Dict[str, Any]]):
        super().__init__(message, details={"transactions": transactions})
        self.transactions = transactions
