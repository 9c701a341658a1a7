"""
Security module for the agegate verification service.

Provides request-field validation, client identification for rate
limiting, and log sanitization.
"""

import re
from typing import Any, Dict, List, Mapping, Optional

from agegate.subject import SubjectRole


# ============================================================
# Input Validation
# ============================================================

ATTESTATION_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,16}$')

# Upper bound on a submitted proof bundle; real proofs are a few KB
MAX_BODY_BYTES = 256 * 1024


class ValidationError(Exception):
    """Raised when request validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_attestation_id(value: Any) -> str:
    """
    Validate the shape of an attestation id.

    Only the shape is checked here; whether the id is supported is the
    verifier's decision.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError("attestationId", "must be a string or integer")
    value = str(value).strip()
    if not ATTESTATION_ID_PATTERN.match(value):
        raise ValidationError("attestationId", "invalid format")
    return value


def validate_role(value: Any) -> SubjectRole:
    try:
        return SubjectRole(value)
    except ValueError:
        raise ValidationError("role", f"must be one of {[r.value for r in SubjectRole]}")


def validate_body_size(raw: bytes) -> bytes:
    if len(raw) > MAX_BODY_BYTES:
        raise ValidationError("body", f"must not exceed {MAX_BODY_BYTES} bytes")
    return raw


# ============================================================
# Rate Limiting Helpers
# ============================================================

def extract_client_id(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """
    Extract a client identifier from request headers for rate limiting.
    Falls back to the peer address, then to "anonymous".
    """
    api_key = headers.get("x-api-key", "")
    if api_key:
        return f"api:{api_key[:8]}"

    forwarded = headers.get("x-forwarded-for", "")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    if client_host:
        return f"ip:{client_host}"

    return "anonymous"


# ============================================================
# Audit Logging Helpers
# ============================================================

DEFAULT_SENSITIVE_FIELDS = [
    "sig_b64", "proof", "userContextData", "user_context_data",
    "subject", "subject_id", "nonce", "authorization", "x-api-key",
]


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: List[str] = None) -> Dict[str, Any]:
    """
    Sanitize data for logging by masking sensitive fields.

    Args:
        data: The data to sanitize
        sensitive_fields: List of field names to mask

    Returns:
        Sanitized copy of the data
    """
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            if isinstance(value, str) and len(value) > 8:
                result[key] = value[:4] + "..." + value[-4:]
            else:
                result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        elif isinstance(value, list):
            result[key] = [
                sanitize_for_logging(item, sensitive_fields) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value

    return result
