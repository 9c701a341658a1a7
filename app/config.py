"""
Configuration module for the agegate verification service.

Centralizes all configuration with environment variable support and
validation. The deployment policy is built here once and is the only policy
object the service uses.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from agegate.attestation import ALL_IDS, restrict_ids
from agegate.challenge import EndpointKind
from agegate.errors import ConfigError
from agegate.policy import PolicyConfig

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("AGEGATE_ENV", "dev")  # dev|stage|prod

# Protocol binding
SCOPE = os.getenv("AGEGATE_SCOPE", "agegate")
ENDPOINT = os.getenv("AGEGATE_ENDPOINT", "https://age-gate.example.org/api/verify")
ENDPOINT_KIND = os.getenv("AGEGATE_ENDPOINT_KIND", "https")

# Policy
MINIMUM_AGE = os.getenv("AGEGATE_MINIMUM_AGE", "18")
EXCLUDED_COUNTRIES = os.getenv("AGEGATE_EXCLUDED_COUNTRIES", "")
OFAC_CHECK = os.getenv("AGEGATE_OFAC_CHECK", "false")
ATTESTATION_IDS = os.getenv("AGEGATE_ATTESTATION_IDS", "")

# Paths
TRUST_STORE_PATH = os.getenv("TRUST_STORE_PATH", "trust/issuer_trust_store.json")

# Verification
VERIFY_TIMEOUT_SECONDS = float(os.getenv("VERIFY_TIMEOUT_SECONDS", "10"))
REQUIRE_CHALLENGE = os.getenv("AGEGATE_REQUIRE_CHALLENGE", "false")
CHALLENGE_TTL_SECONDS = int(os.getenv("CHALLENGE_TTL_SECONDS", "300"))
CHALLENGE_LEDGER_MAX = int(os.getenv("CHALLENGE_LEDGER_MAX", "100000"))

# Rate limits (requests per minute)
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "120"))
CHALLENGE_RPM = int(os.getenv("CHALLENGE_RPM", "120"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "true")


def _flag(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ============================================================
# Settings
# ============================================================

@dataclass
class Settings:
    """Resolved service settings."""
    env: str = "dev"
    scope: str = "agegate"
    endpoint: str = "https://age-gate.example.org/api/verify"
    endpoint_kind: EndpointKind = EndpointKind.HTTPS
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    attestation_ids: Dict = field(default_factory=lambda: dict(ALL_IDS))
    trust_store_path: str = "trust/issuer_trust_store.json"
    verify_timeout_seconds: Optional[float] = 10.0
    require_challenge: bool = False
    challenge_ttl_seconds: int = 300
    challenge_ledger_max: int = 100000
    verify_rpm: int = 120
    challenge_rpm: int = 120
    log_level: str = "INFO"
    log_json: bool = True

    @property
    def dev_mode(self) -> bool:
        return self.env == "dev"

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from the module-level environment values.

        Raises:
            ConfigError: If the policy or protocol binding is invalid
        """
        try:
            minimum_age = int(MINIMUM_AGE)
        except ValueError:
            raise ConfigError("AGEGATE_MINIMUM_AGE", "must be an integer")

        policy = PolicyConfig(
            minimum_age=minimum_age,
            excluded_countries=frozenset(_csv(EXCLUDED_COUNTRIES)),
            ofac_check=_flag(OFAC_CHECK),
        )

        try:
            endpoint_kind = EndpointKind(ENDPOINT_KIND)
        except ValueError:
            raise ConfigError("AGEGATE_ENDPOINT_KIND", f"unsupported value {ENDPOINT_KIND!r}")

        ids = _csv(ATTESTATION_IDS)
        try:
            attestation_ids = restrict_ids(ids) if ids else dict(ALL_IDS)
        except KeyError as e:
            raise ConfigError("AGEGATE_ATTESTATION_IDS", f"unknown attestation id {e.args[0]!r}")

        return cls(
            env=ENV,
            scope=SCOPE,
            endpoint=ENDPOINT,
            endpoint_kind=endpoint_kind,
            policy=policy,
            attestation_ids=attestation_ids,
            trust_store_path=TRUST_STORE_PATH,
            verify_timeout_seconds=VERIFY_TIMEOUT_SECONDS if VERIFY_TIMEOUT_SECONDS > 0 else None,
            require_challenge=_flag(REQUIRE_CHALLENGE),
            challenge_ttl_seconds=CHALLENGE_TTL_SECONDS,
            challenge_ledger_max=CHALLENGE_LEDGER_MAX,
            verify_rpm=VERIFY_RPM,
            challenge_rpm=CHALLENGE_RPM,
            log_level=LOG_LEVEL,
            log_json=_flag(LOG_JSON),
        )


# ============================================================
# Validation
# ============================================================

def validate_config(settings: Settings) -> Dict[str, bool]:
    """
    Validate that required configuration files exist.
    Returns dict of name -> exists.
    """
    return {"trust_store": Path(settings.trust_store_path).exists()}
