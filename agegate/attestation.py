"""
Supported attestation schemes.

The attestation id in a proof bundle names the credential type and proof
circuit version the holder used. Only ids in the verifier's allow-list are
accepted.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional


@dataclass(frozen=True)
class AttestationScheme:
    name: str
    version: int


PASSPORT = AttestationScheme("passport", 1)
EU_ID_CARD = AttestationScheme("eu_id_card", 1)
AADHAAR = AttestationScheme("aadhaar", 1)
PASSPORT_V2 = AttestationScheme("passport", 2)

# Every attestation id this verifier knows how to check.
ALL_IDS: Dict[str, AttestationScheme] = {
    "1": PASSPORT,
    "2": EU_ID_CARD,
    "3": AADHAAR,
    "v1": PASSPORT,
    "v2": PASSPORT_V2,
}


def normalize_attestation_id(attestation_id: Any) -> Optional[str]:
    """Wallets send either ints or strings; compare on the string form."""
    if attestation_id is None or isinstance(attestation_id, bool):
        return None
    if isinstance(attestation_id, (int, str)):
        value = str(attestation_id).strip()
        return value or None
    return None


def resolve_scheme(
    attestation_id: Any,
    supported: Mapping[str, AttestationScheme] = ALL_IDS
) -> Optional[AttestationScheme]:
    """Return the scheme for a supported id, or None."""
    key = normalize_attestation_id(attestation_id)
    if key is None:
        return None
    return supported.get(key)


def restrict_ids(ids: Iterable[str]) -> Dict[str, AttestationScheme]:
    """
    Subset of ALL_IDS.

    Raises:
        KeyError: If an id is not known at all
    """
    subset = {}
    for raw in ids:
        key = normalize_attestation_id(raw)
        if key not in ALL_IDS:
            raise KeyError(raw)
        subset[key] = ALL_IDS[key]
    return subset
