"""
Issuer trust store for the verification service.

The trust store lists the issuer public keys whose attestations the service
accepts, plus any revoked key ids:

    {
        "issuer_keys": {"<kid>": "<base64 ed25519 public key>"},
        "revoked_kids": ["<kid>"]
    }
"""

import json
import os
import threading
from typing import Any, Dict, Optional

from agegate.proof import TrustStoreProvider


class FileTrustStore(TrustStoreProvider):
    """
    File-backed trust store.

    Thread-safe with modification-time caching: the file is re-read whenever
    its mtime differs from the cached one, so key rotation and revocation
    apply without a restart. A deleted file trusts no issuer.
    """

    def __init__(self, trust_store_path: str):
        self._trust_store_path = trust_store_path
        self._lock = threading.RLock()
        self._cache: Optional[Dict[str, Any]] = None
        self._mtime: float = 0

    def get_trust_store(self) -> Dict[str, Any]:
        with self._lock:
            try:
                mtime = os.path.getmtime(self._trust_store_path)
                if self._cache is None or mtime != self._mtime:
                    with open(self._trust_store_path, "r", encoding="utf-8") as f:
                        data = json.load(f)
                    self._cache = {
                        "issuer_keys": dict(data.get("issuer_keys", {})),
                        "revoked_kids": list(data.get("revoked_kids", [])),
                    }
                    self._mtime = mtime
            except FileNotFoundError:
                # No trust store means no issuer is trusted
                self._cache = None
                self._mtime = 0
                return {"issuer_keys": {}, "revoked_kids": []}

            return {
                "issuer_keys": dict(self._cache["issuer_keys"]),
                "revoked_kids": list(self._cache["revoked_kids"]),
            }

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._mtime = 0
