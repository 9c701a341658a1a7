"""
agegate - privacy-preserving age gating for uploaded media

Version: 1.0.0

Viewers and uploaders prove, through an identity wallet, that they satisfy
an age policy (plus optional nationality and sanctions checks) without
revealing who they are or when they were born.

Flow:
    ChallengeBuilder -> holder wallet (out of band) -> ProofVerifier
        -> SessionStateStore -> AccessGate

Usage:
    from agegate import (
        PolicyConfig,
        ChallengeBuilder,
        ProofVerifier,
        Ed25519AttestationPrimitive,
        StaticTrustStore,
        InMemorySessionStore,
        can_access,
    )

    policy = PolicyConfig(minimum_age=18)
    store = InMemorySessionStore(policy)

    challenge = ChallengeBuilder().build(
        scope="agegate",
        subject_id=store.subject_id_for("viewer"),
        policy=policy,
        endpoint="https://example.org/api/verify",
    )
    qr_payload = challenge.encode()

    verifier = ProofVerifier(policy, Ed25519AttestationPrimitive(trust_store))
    verdict = verifier.verify(attestation_id, proof, public_signals, user_context_data)

    if verdict.is_valid:
        store.record_success(challenge.subject_id)

    can_access(store.get(challenge.subject_id), policy)
"""

__version__ = "1.0.0"

from .access_gate import AccessGate, can_access, can_upload
from .attestation import ALL_IDS, AttestationScheme, resolve_scheme, restrict_ids
from .canonicalization import canonicalize, canonicalize_str
from .challenge import Challenge, ChallengeBuilder, EndpointKind
from .errors import ConfigError, ErrorCode, describe
from .hashing import context_hash, policy_hash, sha256_hash
from .policy import DEFAULT_POLICY, PolicyConfig
from .proof import (
    Ed25519AttestationPrimitive,
    ProofOutcome,
    ProofPrimitive,
    StaticTrustStore,
    TrustStoreProvider,
)
from .replay import ChallengeLedger
from .session_store import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionRecord,
    SessionStateStore,
)
from .signing import KeyPair, generate_issuer_key, sign_proof, verify_ed25519
from .subject import (
    SubjectRegistry,
    SubjectRole,
    UserIdType,
    new_subject_id,
    validate_subject_id,
)
from .verifier import (
    FailureReason,
    ProofVerifier,
    VerificationVerdict,
    VerifierState,
)


__all__ = [
    "__version__",

    # Policy
    "PolicyConfig",
    "DEFAULT_POLICY",

    # Subjects
    "SubjectRole",
    "UserIdType",
    "SubjectRegistry",
    "new_subject_id",
    "validate_subject_id",

    # Challenges
    "Challenge",
    "ChallengeBuilder",
    "EndpointKind",
    "ChallengeLedger",

    # Proofs
    "ALL_IDS",
    "AttestationScheme",
    "resolve_scheme",
    "restrict_ids",
    "ProofPrimitive",
    "ProofOutcome",
    "TrustStoreProvider",
    "StaticTrustStore",
    "Ed25519AttestationPrimitive",
    "KeyPair",
    "generate_issuer_key",
    "sign_proof",
    "verify_ed25519",

    # Verification
    "ProofVerifier",
    "VerificationVerdict",
    "FailureReason",
    "VerifierState",

    # Sessions and gating
    "SessionRecord",
    "SessionStateStore",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "AccessGate",
    "can_access",
    "can_upload",

    # Errors
    "ConfigError",
    "ErrorCode",
    "describe",

    # Encoding
    "canonicalize",
    "canonicalize_str",
    "sha256_hash",
    "policy_hash",
    "context_hash",
]
