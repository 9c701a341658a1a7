"""
Proof verification.

ProofVerifier is the trust boundary between a holder's proof bundle and the
application. It evaluates five gates in a fixed order and stops at the first
failure:

    1. Structural   all four inputs present and non-empty
    2. Attestation  attestation id is in the supported allow-list
    3. Crypto       the proof primitive accepts the proof
    4. Policy       attested predicates match the server policy exactly
    5. Context      the proof is bound to the submitted user context

The verdict is binary and carries exactly one failure reason. Later gates are
never evaluated once an earlier one fails, so a rejected verdict says nothing
about the checks that were skipped.

State machine:
    RECEIVED -> STRUCTURALLY_VALID -> CRYPTO_VALID -> POLICY_BOUND -> VERIFIED
    RECEIVED -> REJECTED (from any gate)

Verification is pure given its inputs: no nonce is consumed here, so
submitting the same bundle twice yields the same verdict. Single-use
challenges are enforced one layer up (see agegate.replay).
"""

import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .attestation import ALL_IDS, AttestationScheme, normalize_attestation_id, resolve_scheme
from .errors import ErrorCode
from .hashing import context_hash
from .policy import PolicyConfig
from .proof import AGE_PREDICATE_PATTERN, ProofOutcome, ProofPrimitive
from .util import constant_time_compare

logger = logging.getLogger(__name__)


class FailureReason(str, Enum):
    INVALID_INPUTS = "INVALID_INPUTS"
    UNSUPPORTED_ATTESTATION = "UNSUPPORTED_ATTESTATION"
    PROOF_INVALID = "PROOF_INVALID"
    POLICY_MISMATCH = "POLICY_MISMATCH"
    CONTEXT_MISMATCH = "CONTEXT_MISMATCH"
    VERIFICATION_TIMEOUT = "VERIFICATION_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def error_code(self) -> ErrorCode:
        if self == FailureReason.INVALID_INPUTS:
            return ErrorCode.INVALID_INPUTS
        if self == FailureReason.VERIFICATION_TIMEOUT:
            return ErrorCode.VERIFICATION_TIMEOUT
        if self == FailureReason.INTERNAL_ERROR:
            return ErrorCode.INTERNAL_ERROR
        return ErrorCode.VERIFICATION_FAILED

    @property
    def retriable(self) -> bool:
        """Whether resubmitting (a fresh proof, or the same one later) can help."""
        return self in (FailureReason.INVALID_INPUTS, FailureReason.VERIFICATION_TIMEOUT)


class VerifierState(str, Enum):
    RECEIVED = "RECEIVED"
    STRUCTURALLY_VALID = "STRUCTURALLY_VALID"
    CRYPTO_VALID = "CRYPTO_VALID"
    POLICY_BOUND = "POLICY_BOUND"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


@dataclass
class VerificationVerdict:
    """Binary verification result."""
    is_valid: bool
    failure_reason: Optional[FailureReason] = None
    disclosure: Dict[str, Any] = field(default_factory=dict)
    state: VerifierState = VerifierState.RECEIVED
    # Last state passed before rejection; kept out of to_dict()
    reached: VerifierState = VerifierState.RECEIVED

    @classmethod
    def verified(cls, disclosure: Dict[str, Any]) -> 'VerificationVerdict':
        return cls(is_valid=True, disclosure=disclosure,
                   state=VerifierState.VERIFIED, reached=VerifierState.VERIFIED)

    @classmethod
    def rejected(
        cls,
        reason: FailureReason,
        reached: VerifierState = VerifierState.RECEIVED
    ) -> 'VerificationVerdict':
        return cls(is_valid=False, failure_reason=reason,
                   state=VerifierState.REJECTED, reached=reached)

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.failure_reason.error_code if self.failure_reason else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "disclosure": dict(self.disclosure),
        }


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, bytes, list, tuple, dict)) and not value:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _default_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


class ProofVerifier:
    """
    Verifies proof bundles against the server-side policy.

    The policy passed at construction is authoritative. Instances hold no
    per-request state and are safe to share across threads.
    """

    def __init__(
        self,
        policy: PolicyConfig,
        primitive: ProofPrimitive,
        supported_ids: Optional[Mapping[str, AttestationScheme]] = None,
        timeout_seconds: Optional[float] = None,
        executor: Optional[Executor] = None
    ):
        self.policy = policy
        self.primitive = primitive
        self.supported_ids = dict(supported_ids if supported_ids is not None else ALL_IDS)
        self.timeout_seconds = timeout_seconds
        self._executor = executor
        self._owns_executor = False
        if timeout_seconds is not None and executor is None:
            self._owns_executor = True
            self._executor = ThreadPoolExecutor(
                max_workers=_default_workers(),
                thread_name_prefix="agegate-verify"
            )

    def verify(
        self,
        attestation_id: Any,
        proof: Any,
        public_signals: Any,
        user_context_data: Any,
        policy: Optional[PolicyConfig] = None,
        expected_context: Optional[Mapping[str, Any]] = None
    ) -> VerificationVerdict:
        """
        Verify a proof bundle. Never raises.

        Args:
            attestation_id: Credential scheme id from the holder
            proof: Opaque proof object
            public_signals: Public statement the proof commits to
            user_context_data: Holder-supplied session context
            policy: Policy the caller believes is in force; must match the
                server policy or the bundle is rejected at the policy gate
            expected_context: Key/value pairs user_context_data must contain

        Returns:
            VerificationVerdict
        """
        try:
            return self._verify(attestation_id, proof, public_signals, user_context_data,
                                policy, expected_context)
        except Exception:
            logger.exception("Unexpected error during proof verification")
            return VerificationVerdict.rejected(FailureReason.INTERNAL_ERROR)

    def _verify(self, attestation_id, proof, public_signals, user_context_data,
                policy, expected_context) -> VerificationVerdict:
        # Gate 1: structure
        if not all(_is_present(v) for v in (attestation_id, proof, public_signals, user_context_data)):
            return VerificationVerdict.rejected(FailureReason.INVALID_INPUTS)
        if not isinstance(proof, Mapping) or not isinstance(public_signals, (Mapping, list)):
            return VerificationVerdict.rejected(FailureReason.INVALID_INPUTS)

        # Gate 2: attestation allow-list
        scheme = resolve_scheme(attestation_id, self.supported_ids)
        if scheme is None:
            return VerificationVerdict.rejected(FailureReason.UNSUPPORTED_ATTESTATION, VerifierState.STRUCTURALLY_VALID)

        # Gate 3: cryptography
        outcome = self._run_primitive(normalize_attestation_id(attestation_id), scheme, proof, public_signals)
        if isinstance(outcome, FailureReason):
            return VerificationVerdict.rejected(outcome, VerifierState.STRUCTURALLY_VALID)
        if not outcome.ok:
            return VerificationVerdict.rejected(FailureReason.PROOF_INVALID, VerifierState.STRUCTURALLY_VALID)

        # Gate 4: policy
        if policy is not None and policy.hash != self.policy.hash:
            return VerificationVerdict.rejected(FailureReason.POLICY_MISMATCH, VerifierState.CRYPTO_VALID)
        if not self._policy_satisfied(outcome.predicates):
            return VerificationVerdict.rejected(FailureReason.POLICY_MISMATCH, VerifierState.CRYPTO_VALID)

        # Gate 5: context binding
        if not self._context_bound(outcome.bound_context, user_context_data, expected_context):
            return VerificationVerdict.rejected(FailureReason.CONTEXT_MISMATCH, VerifierState.POLICY_BOUND)

        return VerificationVerdict.verified(self._disclosure())

    def _run_primitive(self, attestation_id, scheme, proof, public_signals):
        if self._executor is None:
            return self._call_primitive(attestation_id, scheme, proof, public_signals)

        future = self._executor.submit(self._call_primitive, attestation_id, scheme, proof, public_signals)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Proof verification exceeded %ss", self.timeout_seconds)
            return FailureReason.VERIFICATION_TIMEOUT

    def _call_primitive(self, attestation_id, scheme, proof, public_signals) -> ProofOutcome:
        try:
            outcome = self.primitive.verify_proof(attestation_id, scheme, proof, public_signals)
        except Exception:
            logger.warning("Proof primitive raised; treating proof as invalid", exc_info=True)
            return ProofOutcome.rejected()
        if not isinstance(outcome, ProofOutcome) or not outcome.ok:
            return ProofOutcome.rejected()
        return outcome

    def _policy_satisfied(self, predicates: Dict[str, Any]) -> bool:
        policy = self.policy

        age_predicates = {k: v for k, v in predicates.items() if AGE_PREDICATE_PATTERN.match(k)}
        if policy.minimum_age > 0:
            if set(age_predicates) != {policy.age_predicate()}:
                return False
            if age_predicates[policy.age_predicate()] is not True:
                return False
        elif age_predicates:
            return False

        if set(predicates.get("excluded_countries", [])) != set(policy.excluded_countries):
            return False

        if predicates.get("ofac_check", False) != policy.ofac_check:
            return False
        if policy.ofac_check and predicates.get("ofac_clear") is not True:
            return False

        declared = predicates.get("policy_hash")
        if declared is not None and declared != policy.hash:
            return False
        return True

    def _context_bound(self, bound_context, user_context_data, expected_context) -> bool:
        if not bound_context:
            return False
        try:
            submitted = context_hash(user_context_data)
        except ValueError:
            return False
        if not constant_time_compare(submitted, bound_context):
            return False

        if expected_context:
            if not isinstance(user_context_data, Mapping):
                return False
            for key, value in expected_context.items():
                if key not in user_context_data or user_context_data[key] != value:
                    return False
        return True

    def _disclosure(self) -> Dict[str, Any]:
        """Policy-implied booleans only; raw attributes never leave the verifier."""
        return {key: True for key in self.policy.disclosure_keys()}

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
