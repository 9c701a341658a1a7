"""
Verification challenges.

A challenge is what the holder's wallet scans: it binds the requesting
application scope, the subject identifier and the policy to the endpoint the
proof must be submitted to. Everything is validated here so a malformed
challenge never reaches a holder.
"""

import json
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .canonicalization import canonicalize
from .errors import ConfigError
from .policy import PolicyConfig
from .subject import UserIdType, validate_subject_id
from .util import b64url_decode, b64url_encode, isoformat_z, parse_isoformat_z

SCOPE_PATTERN = re.compile(r'^[a-z0-9-]{1,31}$')
CONTRACT_ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

DEFAULT_TTL_SECONDS = 300


class EndpointKind(str, Enum):
    """Transport the holder uses to deliver the proof."""
    HTTPS = "https"
    STAGING_HTTPS = "staging_https"
    CELO = "celo"
    STAGING_CELO = "staging_celo"

    @property
    def on_chain(self) -> bool:
        return self in (EndpointKind.CELO, EndpointKind.STAGING_CELO)


@dataclass(frozen=True)
class Challenge:
    """A single verification request descriptor."""
    challenge_id: str
    scope: str
    subject_id: str
    user_id_type: UserIdType
    endpoint: str
    endpoint_kind: EndpointKind
    policy: PolicyConfig
    nonce: str
    issued_at: datetime
    expires_at: datetime
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "challenge_id": self.challenge_id,
            "scope": self.scope,
            "subject_id": self.subject_id,
            "user_id_type": self.user_id_type.value,
            "endpoint": self.endpoint,
            "endpoint_kind": self.endpoint_kind.value,
            "policy": self.policy.to_dict(),
            "policy_hash": self.policy.hash,
            "nonce": self.nonce,
            "issued_at": isoformat_z(self.issued_at),
            "expires_at": isoformat_z(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Challenge':
        try:
            policy = PolicyConfig.from_dict(data["policy"])
            if data.get("policy_hash") and data["policy_hash"] != policy.hash:
                raise ConfigError("policy_hash", "does not match policy")
            return cls(
                challenge_id=data["challenge_id"],
                scope=data["scope"],
                subject_id=data["subject_id"],
                user_id_type=UserIdType(data.get("user_id_type", "uuid")),
                endpoint=data["endpoint"],
                endpoint_kind=EndpointKind(data["endpoint_kind"]),
                policy=policy,
                nonce=data["nonce"],
                issued_at=parse_isoformat_z(data["issued_at"]),
                expires_at=parse_isoformat_z(data["expires_at"]),
                version=int(data.get("version", 1)),
            )
        except KeyError as e:
            raise ConfigError(str(e.args[0]), "is required")
        except (TypeError, ValueError) as e:
            raise ConfigError("challenge", str(e))

    def encode(self) -> str:
        """Compact transport form (base64url canonical JSON) for QR codes and deep links."""
        return b64url_encode(canonicalize(self.to_dict()))

    @classmethod
    def decode(cls, token: str) -> 'Challenge':
        try:
            data = json.loads(b64url_decode(token).decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            raise ConfigError("challenge", "token is not a valid encoded challenge")
        if not isinstance(data, dict):
            raise ConfigError("challenge", "token is not a valid encoded challenge")
        return cls.from_dict(data)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def expected_context(self) -> Dict[str, str]:
        """User context values the holder must echo back with the proof."""
        return {"subject": self.subject_id, "nonce": self.nonce}


class ChallengeBuilder:
    """
    Builds validated challenges.

    Stateless apart from its configuration. Every build() call mints a fresh
    challenge id and nonce.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        user_id_type: UserIdType = UserIdType.UUID,
        dev_mode: bool = False
    ):
        if ttl_seconds <= 0:
            raise ConfigError("ttl_seconds", "must be positive")
        self.ttl_seconds = ttl_seconds
        self.user_id_type = UserIdType(user_id_type)
        self.dev_mode = dev_mode

    def build(
        self,
        scope: str,
        subject_id: str,
        policy: PolicyConfig,
        endpoint: str,
        endpoint_kind: EndpointKind = EndpointKind.HTTPS,
        now: Optional[datetime] = None
    ) -> Challenge:
        """
        Build a challenge.

        Raises:
            ConfigError: If any field is malformed
        """
        scope = self._validate_scope(scope)
        subject_id = validate_subject_id(subject_id, self.user_id_type)
        if not isinstance(policy, PolicyConfig):
            raise ConfigError("policy", "must be a PolicyConfig")
        try:
            endpoint_kind = EndpointKind(endpoint_kind)
        except ValueError:
            raise ConfigError("endpoint_kind", f"unsupported endpoint kind {endpoint_kind!r}")
        endpoint = self._validate_endpoint(endpoint, endpoint_kind)

        issued_at = now or datetime.now(timezone.utc)
        return Challenge(
            challenge_id=str(uuid.uuid4()),
            scope=scope,
            subject_id=subject_id,
            user_id_type=self.user_id_type,
            endpoint=endpoint,
            endpoint_kind=endpoint_kind,
            policy=policy,
            nonce=secrets.token_hex(16),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.ttl_seconds),
        )

    def _validate_scope(self, scope: str) -> str:
        if not isinstance(scope, str) or not scope:
            raise ConfigError("scope", "must be a non-empty string")
        if not SCOPE_PATTERN.match(scope):
            raise ConfigError("scope", "must be 1-31 characters of a-z, 0-9 or '-'")
        return scope

    def _validate_endpoint(self, endpoint: str, kind: EndpointKind) -> str:
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise ConfigError("endpoint", "must be a non-empty string")
        endpoint = endpoint.strip()

        if kind.on_chain:
            if not CONTRACT_ADDRESS_PATTERN.match(endpoint):
                raise ConfigError("endpoint", "must be a 0x-prefixed contract address")
            return endpoint.lower()

        parsed = urlparse(endpoint)
        if not parsed.hostname:
            raise ConfigError("endpoint", "must be an absolute URL")
        if parsed.scheme == "https":
            return endpoint
        if parsed.scheme == "http" and self.dev_mode and parsed.hostname in LOCAL_HOSTS:
            return endpoint
        raise ConfigError("endpoint", "must use https")
