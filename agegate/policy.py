"""
Access policy.

A PolicyConfig is the single declarative rule set every verification must
satisfy: a minimum age, a set of excluded nationalities and an optional
sanctions (OFAC) screen. The server owns exactly one per deployment; the
challenge builder and the proof verifier both receive that same object.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List

from .errors import ConfigError
from .hashing import policy_hash

MAX_MINIMUM_AGE = 125

# ISO 3166-1 alpha-3, as carried in passport MRZ data
COUNTRY_CODE_PATTERN = re.compile(r'^[A-Z]{3}$')


def _normalize_countries(codes: Iterable[str]) -> FrozenSet[str]:
    if isinstance(codes, str):
        raise ConfigError("excluded_countries", "must be a list of country codes")
    normalized = set()
    for code in codes:
        if not isinstance(code, str):
            raise ConfigError("excluded_countries", "country codes must be strings")
        code = code.strip().upper()
        if not COUNTRY_CODE_PATTERN.match(code):
            raise ConfigError("excluded_countries", f"invalid country code {code!r}")
        normalized.add(code)
    return frozenset(normalized)


@dataclass(frozen=True)
class PolicyConfig:
    """
    Immutable access policy.

    Attributes:
        minimum_age: Minimum age in whole years, 0..125 (0 disables the age check)
        excluded_countries: Nationalities that may not pass (alpha-3 codes)
        ofac_check: Whether the holder must clear the OFAC sanctions screen
    """
    minimum_age: int = 18
    excluded_countries: FrozenSet[str] = field(default_factory=frozenset)
    ofac_check: bool = False

    def __post_init__(self):
        if isinstance(self.minimum_age, bool) or not isinstance(self.minimum_age, int):
            raise ConfigError("minimum_age", "must be an integer")
        if not 0 <= self.minimum_age <= MAX_MINIMUM_AGE:
            raise ConfigError("minimum_age", f"must be between 0 and {MAX_MINIMUM_AGE}")
        if not isinstance(self.ofac_check, bool):
            raise ConfigError("ofac_check", "must be a boolean")
        object.__setattr__(self, "excluded_countries", _normalize_countries(self.excluded_countries))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PolicyConfig':
        """
        Build a policy from a dict.

        Accepts the camelCase wire keys (minimumAge, excludedCountries, ofac)
        as well as the snake_case keys produced by to_dict().
        """
        if not isinstance(data, dict):
            raise ConfigError("policy", "must be an object")
        minimum_age = data.get("minimum_age", data.get("minimumAge", 18))
        excluded = data.get("excluded_countries", data.get("excludedCountries", []))
        ofac = data.get("ofac_check", data.get("ofac", False))
        return cls(
            minimum_age=minimum_age,
            excluded_countries=excluded or [],
            ofac_check=ofac,
        )

    @classmethod
    def for_content(cls, minimum_age: int) -> 'PolicyConfig':
        """Policy attached to a single content item (age requirement only)."""
        return cls(minimum_age=minimum_age)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minimum_age": self.minimum_age,
            "excluded_countries": sorted(self.excluded_countries),
            "ofac_check": self.ofac_check,
        }

    @property
    def hash(self) -> str:
        return policy_hash(self.to_dict())

    def age_predicate(self) -> str:
        """Public-signal name of the age predicate this policy requires."""
        return f"age_geq_{self.minimum_age}"

    def disclosure_keys(self) -> List[str]:
        keys = []
        if self.minimum_age > 0:
            keys.append(f"ageAtLeast{self.minimum_age}")
        if self.excluded_countries:
            keys.append("nationalityNotExcluded")
        if self.ofac_check:
            keys.append("ofacClear")
        return keys

    def is_at_least_as_strict(self, other: 'PolicyConfig') -> bool:
        """True if every holder satisfying this policy also satisfies other."""
        return (
            self.minimum_age >= other.minimum_age
            and self.excluded_countries >= other.excluded_countries
            and (self.ofac_check or not other.ofac_check)
        )


DEFAULT_POLICY = PolicyConfig(minimum_age=18)
