"""
Error taxonomy for the relay.

Every failure surfaced to a caller belongs to exactly one ``ErrorKind``.
The kind fixes the HTTP status; the structured ``payload`` carries whatever
context the caller needs (owners, threshold, revert reason, ...).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of error kinds."""
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    INSUFFICIENT_SIGNATURES = "insufficient_signatures"
    UPSTREAM = "upstream"
    SIMULATED_FALLBACK = "simulated_fallback"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.INSUFFICIENT_SIGNATURES: 400,
    ErrorKind.UPSTREAM: 500,
    ErrorKind.SIMULATED_FALLBACK: 200,
}


class RelayError(Exception):
    """Base exception for all relay errors."""

    kind: ErrorKind = ErrorKind.UPSTREAM
    default_message: str = "Relay request failed"

    def __init__(
        self,
        details: str,
        *,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(details)
        self.details = details
        self.message = message or self.default_message
        self.payload = payload or {}
        self._status_code = status_code

    @property
    def status_code(self) -> int:
        return self._status_code or self.kind.http_status

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.message,
            "details": self.details,
            "kind": self.kind.value,
        }
        body.update(self.payload)
        return body


class ValidationError(RelayError):
    """Malformed or missing input. Raised before any network access."""
    kind = ErrorKind.VALIDATION
    default_message = "Invalid request"


class InvalidAddress(ValidationError):
    """Value is not a well-formed account address."""
    default_message = "Invalid Ethereum address"


class Unauthorized(RelayError):
    """Caller is not allowed to perform the action."""
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Unauthorized"


class NotAnOwner(Unauthorized):
    """Signer or caller is not an owner of the wallet."""


class InvalidSessionCredential(Unauthorized):
    """Session key signature or validity window does not check out."""

    def __init__(self, details: str, **kwargs: Any):
        kwargs.setdefault("status_code", 401)
        super().__init__(details, **kwargs)


class InsufficientSignatures(RelayError):
    """Signature count is below the wallet threshold."""
    kind = ErrorKind.INSUFFICIENT_SIGNATURES
    default_message = "Insufficient signatures"


class UpstreamError(RelayError):
    """RPC or contract call failure. Never retried automatically."""
    kind = ErrorKind.UPSTREAM
    default_message = "Upstream call failed"


class ExecutionFailed(UpstreamError):
    """Submitted transaction reverted or could not be submitted."""
    default_message = "Failed to execute transaction"

    def __init__(self, details: str, revert_reason: Optional[str] = None, **kwargs: Any):
        super().__init__(details, **kwargs)
        self.revert_reason = revert_reason
        if revert_reason:
            self.payload.setdefault("revertReason", revert_reason)


class ConfirmationTimeout(ExecutionFailed):
    """No receipt arrived within the bounded confirmation window."""


__all__ = [
    "ErrorKind",
    "RelayError",
    "ValidationError",
    "InvalidAddress",
    "Unauthorized",
    "NotAnOwner",
    "InvalidSessionCredential",
    "InsufficientSignatures",
    "UpstreamError",
    "ExecutionFailed",
    "ConfirmationTimeout",
]
