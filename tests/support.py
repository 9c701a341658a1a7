"""Shared builders for proof bundles used across the test suite."""

import threading

from agegate import PolicyConfig, ProofOutcome, ProofPrimitive, StaticTrustStore, generate_issuer_key, sign_proof
from agegate.subject import new_subject_id

ISSUER = generate_issuer_key("test-issuer")


def trust_store_for(*key_pairs, revoked=None) -> StaticTrustStore:
    keys = {}
    for kp in key_pairs or (ISSUER,):
        keys.update(kp.to_trust_store_entry())
    return StaticTrustStore(issuer_keys=keys, revoked_kids=revoked)


def signals_for(policy: PolicyConfig, **overrides) -> dict:
    """Public signals a holder satisfying policy would present."""
    signals = {}
    if policy.minimum_age > 0:
        signals[policy.age_predicate()] = True
    if policy.excluded_countries:
        signals["excluded_countries"] = sorted(policy.excluded_countries)
    if policy.ofac_check:
        signals["ofac_check"] = True
        signals["ofac_clear"] = True
    signals.update(overrides)
    return signals


def user_context(subject_id=None, nonce="n-0001") -> dict:
    return {"subject": subject_id or new_subject_id(), "nonce": nonce}


def make_bundle(
    policy: PolicyConfig,
    key_pair=ISSUER,
    attestation_id="1",
    signals=None,
    context=None,
) -> dict:
    """A signed proof bundle in wire (camelCase) form."""
    signals = signals if signals is not None else signals_for(policy)
    context = context if context is not None else user_context()
    return {
        "attestationId": attestation_id,
        "proof": sign_proof(key_pair, str(attestation_id), signals, context),
        "publicSignals": signals,
        "userContextData": context,
    }


class RecordingPrimitive(ProofPrimitive):
    """Delegates to another primitive and counts calls."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def verify_proof(self, attestation_id, scheme, proof, public_signals):
        self.calls += 1
        return self.inner.verify_proof(attestation_id, scheme, proof, public_signals)


class BlockingPrimitive(ProofPrimitive):
    """Waits until released; used to exercise the verification timeout."""

    def __init__(self):
        self.release = threading.Event()

    def verify_proof(self, attestation_id, scheme, proof, public_signals):
        self.release.wait(5)
        return ProofOutcome.rejected()


class RaisingPrimitive(ProofPrimitive):
    def verify_proof(self, attestation_id, scheme, proof, public_signals):
        raise RuntimeError("backend exploded")
