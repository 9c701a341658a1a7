"""
Ed25519 signing for issuer attestations.

Issuers sign the public signals of a proof together with the hash of the
holder's user context. The verifier checks those signatures against the
issuer keys in its trust store.
"""

import secrets
from dataclasses import dataclass
from typing import Any, Dict

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize
from .hashing import context_hash
from .util import b64d, b64e


@dataclass
class KeyPair:
    """Ed25519 issuer key pair."""
    kid: str
    signing_key: bytes
    verify_key: bytes

    def to_trust_store_entry(self) -> Dict[str, str]:
        return {self.kid: b64e(self.verify_key)}

    def to_dict(self) -> Dict[str, str]:
        return {
            "kid": self.kid,
            "private_key_b64": b64e(self.signing_key),
            "public_key_b64": b64e(self.verify_key),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'KeyPair':
        sk = SigningKey(b64d(data["private_key_b64"]))
        return cls(kid=data["kid"], signing_key=bytes(sk), verify_key=bytes(sk.verify_key))


def generate_issuer_key(kid: str = None) -> KeyPair:
    signing_key = SigningKey.generate()
    return KeyPair(
        kid=kid or f"issuer-{secrets.token_hex(4)}",
        signing_key=bytes(signing_key),
        verify_key=bytes(signing_key.verify_key),
    )


def proof_payload(attestation_id: str, public_signals: Any, ctx_hash: str) -> bytes:
    """Bytes covered by an attestation signature."""
    return canonicalize({
        "attestation_id": str(attestation_id),
        "context_hash": ctx_hash,
        "public_signals": public_signals,
    })


def sign_proof(
    key_pair: KeyPair,
    attestation_id: str,
    public_signals: Any,
    user_context_data: Any
) -> Dict[str, str]:
    """
    Produce a proof object for a set of public signals.

    This is what a trusted issuer (or a test fixture) hands to the holder.
    """
    ctx = context_hash(user_context_data)
    sig = SigningKey(key_pair.signing_key).sign(proof_payload(attestation_id, public_signals, ctx)).signature
    return {"kid": key_pair.kid, "context_hash": ctx, "sig_b64": b64e(sig)}


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise (including malformed input)
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False
