"""
Hashing helpers.

All hashes use SHA-256 over canonical JSON with a ``sha256:`` prefixed
lowercase hex digest.
"""

import hashlib
import hmac
from typing import Any, Union

from .canonicalization import canonicalize


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute a prefixed SHA-256 digest.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(data).hexdigest().lower()
    return f"sha256:{digest}"


def policy_hash(policy: dict) -> str:
    """Hash of a policy's canonical dict form."""
    return sha256_hash(canonicalize(policy))


def context_hash(user_context_data: Any) -> str:
    """
    Hash of the holder-supplied user context.

    Proofs bind to this value so that a proof minted for one subject cannot
    be replayed for another.
    """
    return sha256_hash(canonicalize(user_context_data))


def verify_hash(data: Union[bytes, str], expected: str) -> bool:
    """Check data against an expected prefixed hash."""
    return hmac.compare_digest(sha256_hash(data), expected)
