"""
Error types and user-facing messages.

Construction-time problems (bad policy, malformed challenge fields) raise
``ConfigError``. Verification never raises; it returns a verdict whose wire
error code maps to one of the messages below.
"""

from enum import Enum
from typing import Optional


class ConfigError(Exception):
    """Raised when a policy, subject identifier or challenge field is malformed."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ErrorCode(str, Enum):
    """Wire-level error codes returned by the verification endpoint."""
    INVALID_INPUTS = "INVALID_INPUTS"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    VERIFICATION_TIMEOUT = "VERIFICATION_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    RATE_LIMITED = "RATE_LIMITED"


_MESSAGES = {
    ErrorCode.INVALID_INPUTS: "Proof, publicSignals, attestationId and userContextData are required",
    ErrorCode.VERIFICATION_FAILED: "Verification failed",
    ErrorCode.VERIFICATION_TIMEOUT: "Verification timed out, please try again",
    ErrorCode.INTERNAL_ERROR: "Internal Error",
    ErrorCode.RATE_LIMITED: "Too many verification attempts, please wait and retry",
}


def describe(error_code: Optional[str]) -> str:
    """
    Human-readable reason for an error code.

    Unknown or missing codes get the generic internal-error text so raw
    internal messages never reach the gating UI.
    """
    try:
        return _MESSAGES[ErrorCode(error_code)]
    except ValueError:
        return _MESSAGES[ErrorCode.INTERNAL_ERROR]
