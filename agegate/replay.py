"""
Single-use challenge ledger.

Optional hardening on top of the verifier: each issued challenge may be
redeemed by exactly one successful verification before it expires. The
verifier itself stays idempotent; the ledger only supplies the expected user
context and records consumption.
"""

import secrets
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set

from .challenge import Challenge


class ChallengeLedger:
    """In-memory ledger of issued, unconsumed challenges keyed by nonce."""

    def __init__(self, max_entries: int = 100000):
        self._issued: Dict[str, Challenge] = {}
        self._consumed: Set[str] = set()
        self._lock = threading.Lock()
        self._max_entries = max_entries

    def issue(self, challenge: Challenge) -> bool:
        """
        Record an issued challenge.

        Returns:
            False if the ledger is still full after dropping expired
            challenges; the challenge is then not redeemable and must not be
            handed out
        """
        with self._lock:
            if len(self._issued) >= self._max_entries:
                self._cleanup_locked(datetime.now(timezone.utc))
                if len(self._issued) >= self._max_entries:
                    return False
            self._issued[challenge.nonce] = challenge
            return True

    def lookup(self, nonce: Any, now: Optional[datetime] = None) -> Optional[Challenge]:
        """Return the live challenge for nonce, or None if unknown, used or expired."""
        if not isinstance(nonce, str) or not nonce:
            return None
        now = now or datetime.now(timezone.utc)
        with self._lock:
            challenge = self._issued.get(nonce)
            if challenge is None or nonce in self._consumed or challenge.is_expired(now):
                return None
            return challenge

    def expected_context_for(self, user_context_data: Any,
                             now: Optional[datetime] = None) -> Dict[str, str]:
        """
        Context the verifier must see for this submission.

        For an unknown, consumed or expired nonce the expectation is a random
        value no submission can contain.
        """
        nonce = user_context_data.get("nonce") if isinstance(user_context_data, Mapping) else None
        challenge = self.lookup(nonce, now)
        if challenge is None:
            return {"nonce": f"unredeemable:{secrets.token_hex(16)}"}
        return challenge.expected_context()

    def consume(self, nonce: str, now: Optional[datetime] = None) -> bool:
        """
        Redeem a challenge.

        Returns:
            True on first redemption of a live challenge, False otherwise
        """
        now = now or datetime.now(timezone.utc)
        with self._lock:
            challenge = self._issued.get(nonce)
            if challenge is None or nonce in self._consumed or challenge.is_expired(now):
                return False
            self._consumed.add(nonce)
            return True

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            return self._cleanup_locked(now)

    def _cleanup_locked(self, now: datetime) -> int:
        expired = [n for n, c in self._issued.items() if c.is_expired(now)]
        for nonce in expired:
            del self._issued[nonce]
            self._consumed.discard(nonce)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._issued)
