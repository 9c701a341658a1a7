"""
Client-side submission helper.

Posts a holder's proof bundle to the verification endpoint and, on success,
records the result in the client's session store. Transport failures are
reported as outcomes, never raised, so the gating UI always has a reason
string to show.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from .errors import ErrorCode, describe
from .session_store import SessionStateStore

logger = logging.getLogger(__name__)


@dataclass
class ClientOutcome:
    verified: bool
    error_code: Optional[str] = None
    message: Optional[str] = None
    disclosure: Dict[str, Any] = field(default_factory=dict)


class VerificationClient:
    def __init__(
        self,
        verify_url: str,
        store: SessionStateStore,
        session: Optional[requests.Session] = None,
        timeout: float = 10
    ):
        self.verify_url = verify_url
        self.store = store
        self.session = session or requests.Session()
        self.timeout = timeout

    def submit(
        self,
        subject_id: str,
        attestation_id: Any,
        proof: Dict[str, Any],
        public_signals: Any,
        user_context_data: Any
    ) -> ClientOutcome:
        """Submit a proof bundle for subject_id and record a success."""
        payload = {
            "attestationId": attestation_id,
            "proof": proof,
            "publicSignals": public_signals,
            "userContextData": user_context_data,
        }
        try:
            resp = self.session.post(self.verify_url, json=payload, timeout=self.timeout)
        except requests.Timeout:
            return self._failure(ErrorCode.VERIFICATION_TIMEOUT.value)
        except requests.RequestException as e:
            logger.warning("Verification request failed: %s", e)
            return self._failure(ErrorCode.INTERNAL_ERROR.value)

        try:
            body = resp.json()
        except ValueError:
            return self._failure(ErrorCode.INTERNAL_ERROR.value)
        return self.handle_response(subject_id, body)

    def handle_response(self, subject_id: str, body: Any) -> ClientOutcome:
        """Interpret a verification response body."""
        if isinstance(body, dict) and body.get("status") == "success" and body.get("result") is True:
            if self.store.record_success(subject_id) is None:
                logger.info("Discarding verification for a cleared subject")
                return self._failure(ErrorCode.VERIFICATION_FAILED.value)
            return ClientOutcome(verified=True, disclosure=dict(body.get("credentialSubject") or {}))

        code = body.get("error_code") if isinstance(body, dict) else None
        return self._failure(code or ErrorCode.INTERNAL_ERROR.value)

    def _failure(self, code: str) -> ClientOutcome:
        return ClientOutcome(verified=False, error_code=code, message=describe(code))
