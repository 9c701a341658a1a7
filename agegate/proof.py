"""
Proof primitive capability interface.

The verifier never looks inside a proof itself. It hands the proof and its
public signals to a ProofPrimitive, which answers pass/fail and reports the
policy predicates the proof attests to. Any zero-knowledge verification
library can sit behind this interface; the implementation shipped here checks
Ed25519 issuer attestations against a trust store.

Predicates understood in public signals:
    age_geq_<N>         bool, holder is at least N years old
    excluded_countries  list of alpha-3 codes the holder's nationality is not in
    ofac_check          bool, the sanctions screen was evaluated
    ofac_clear          bool, the holder passed the sanctions screen
    policy_hash         str, hash of the policy the proof was generated for
"""

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .attestation import AttestationScheme
from .signing import proof_payload, verify_ed25519

AGE_PREDICATE_PATTERN = re.compile(r'^age_geq_(\d{1,3})$')
KNOWN_PREDICATES = {"excluded_countries", "ofac_check", "ofac_clear", "policy_hash"}


@dataclass
class ProofOutcome:
    """
    Result of the cryptographic check.

    Atomic: when ok is False, predicates and bound_context are empty.
    """
    ok: bool
    predicates: Dict[str, Any] = field(default_factory=dict)
    bound_context: Optional[str] = None

    @classmethod
    def rejected(cls) -> 'ProofOutcome':
        return cls(ok=False)


class ProofPrimitive(ABC):
    """Opaque proof verification primitive."""

    @abstractmethod
    def verify_proof(
        self,
        attestation_id: str,
        scheme: AttestationScheme,
        proof: Mapping[str, Any],
        public_signals: Any
    ) -> ProofOutcome:
        """Verify a proof. Should return a rejected outcome rather than raise."""
        pass


class TrustStoreProvider(ABC):
    """Source of issuer public keys."""

    @abstractmethod
    def get_trust_store(self) -> Dict[str, Any]:
        """
        Returns:
            Dict with "issuer_keys" (kid -> base64 public key) and
            optionally "revoked_kids" (list of kids)
        """
        pass


class StaticTrustStore(TrustStoreProvider):
    """In-memory trust store."""

    def __init__(self, issuer_keys: Optional[Dict[str, str]] = None,
                 revoked_kids: Optional[List[str]] = None):
        self._lock = threading.Lock()
        self._store = {
            "issuer_keys": dict(issuer_keys or {}),
            "revoked_kids": list(revoked_kids or []),
        }

    def get_trust_store(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "issuer_keys": dict(self._store["issuer_keys"]),
                "revoked_kids": list(self._store["revoked_kids"]),
            }

    def add_key(self, kid: str, public_key_b64: str) -> None:
        with self._lock:
            self._store["issuer_keys"][kid] = public_key_b64

    def revoke(self, kid: str) -> None:
        with self._lock:
            if kid not in self._store["revoked_kids"]:
                self._store["revoked_kids"].append(kid)


def signals_to_mapping(public_signals: Any) -> Optional[Dict[str, Any]]:
    """
    Normalize public signals to a name -> value mapping.

    Accepts a mapping, or a list of {"name", "value"} objects or
    [name, value] pairs. Returns None for anything else.
    """
    if isinstance(public_signals, Mapping):
        return dict(public_signals)
    if not isinstance(public_signals, list):
        return None

    mapping = {}
    for item in public_signals:
        if isinstance(item, Mapping) and "name" in item and "value" in item:
            name, value = item["name"], item["value"]
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            name, value = item
        else:
            return None
        if not isinstance(name, str) or name in mapping:
            return None
        mapping[name] = value
    return mapping


def extract_predicates(signals: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Pick out the policy predicates from normalized signals.

    Returns None if a known predicate has the wrong type.
    """
    predicates: Dict[str, Any] = {}
    for name, value in signals.items():
        if AGE_PREDICATE_PATTERN.match(name):
            if not isinstance(value, bool):
                return None
            predicates[name] = value
        elif name == "excluded_countries":
            if not isinstance(value, list) or not all(isinstance(c, str) for c in value):
                return None
            predicates[name] = sorted({c.strip().upper() for c in value})
        elif name in ("ofac_check", "ofac_clear"):
            if not isinstance(value, bool):
                return None
            predicates[name] = value
        elif name == "policy_hash":
            if not isinstance(value, str):
                return None
            predicates[name] = value
    return predicates


class Ed25519AttestationPrimitive(ProofPrimitive):
    """
    Issuer-attested proofs.

    A proof is {"kid", "context_hash", "sig_b64"}: an Ed25519 signature by a
    trusted issuer over the attestation id, the public signals and the hash of
    the holder's user context.
    """

    def __init__(self, trust_store: TrustStoreProvider):
        self.trust_store = trust_store

    def verify_proof(self, attestation_id, scheme, proof, public_signals) -> ProofOutcome:
        kid = proof.get("kid")
        sig_b64 = proof.get("sig_b64")
        ctx_hash = proof.get("context_hash")
        if not all(isinstance(v, str) and v for v in (kid, sig_b64, ctx_hash)):
            return ProofOutcome.rejected()

        store = self.trust_store.get_trust_store()
        if kid in set(store.get("revoked_kids", [])):
            return ProofOutcome.rejected()
        public_key = store.get("issuer_keys", {}).get(kid)
        if not public_key:
            return ProofOutcome.rejected()

        signals = signals_to_mapping(public_signals)
        if signals is None:
            return ProofOutcome.rejected()

        try:
            payload = proof_payload(attestation_id, public_signals, ctx_hash)
        except ValueError:
            return ProofOutcome.rejected()
        if not verify_ed25519(sig_b64, payload, public_key):
            return ProofOutcome.rejected()

        predicates = extract_predicates(signals)
        if predicates is None:
            return ProofOutcome.rejected()
        return ProofOutcome(ok=True, predicates=predicates, bound_context=ctx_hash)
