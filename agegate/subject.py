"""
Subject identifiers.

A subject identifier is an opaque token that correlates verification state
for one viewer or uploader without revealing who they are. Each role gets
its own identifier, generated once and reused until the verification it is
bound to is cleared.
"""

import re
import threading
import uuid
from enum import Enum
from typing import Dict, Optional, Set

from .errors import ConfigError

HEX_ADDRESS_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')


class SubjectRole(str, Enum):
    VIEWER = "viewer"
    UPLOADER = "uploader"


class UserIdType(str, Enum):
    """Identifier formats accepted in a challenge."""
    UUID = "uuid"
    HEX = "hex"


def new_subject_id() -> str:
    return str(uuid.uuid4())


def validate_subject_id(value: str, user_id_type: UserIdType = UserIdType.UUID) -> str:
    """
    Validate and normalize a subject identifier.

    Returns:
        The lower-cased identifier

    Raises:
        ConfigError: If the identifier is not valid for user_id_type
    """
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("subject_id", "must be a non-empty string")
    value = value.strip().lower()

    if UserIdType(user_id_type) == UserIdType.HEX:
        if not HEX_ADDRESS_PATTERN.match(value):
            raise ConfigError("subject_id", "must be a 0x-prefixed 20-byte hex address")
        return value

    try:
        parsed = uuid.UUID(value)
    except ValueError:
        raise ConfigError("subject_id", "must be a valid UUID")
    if str(parsed) != value:
        raise ConfigError("subject_id", "must be in canonical UUID form")
    return value


class SubjectRegistry:
    """
    Per-role cache of subject identifiers.

    Identifiers that have been invalidated are retired and never handed out
    again, so a cleared verification cannot be resurrected by a reused id.
    """

    def __init__(self, initial: Optional[Dict[SubjectRole, str]] = None,
                 retired: Optional[Set[str]] = None):
        self._lock = threading.Lock()
        self._by_role: Dict[SubjectRole, str] = {}
        self._retired: Set[str] = set(retired or ())
        for role, subject_id in (initial or {}).items():
            self._by_role[SubjectRole(role)] = validate_subject_id(subject_id)

    def subject_id_for(self, role: SubjectRole) -> str:
        """Return the cached identifier for role, generating one if needed."""
        role = SubjectRole(role)
        with self._lock:
            current = self._by_role.get(role)
            if current is None:
                current = new_subject_id()
                while current in self._retired:
                    current = new_subject_id()
                self._by_role[role] = current
            return current

    def peek(self, role: SubjectRole) -> Optional[str]:
        with self._lock:
            return self._by_role.get(SubjectRole(role))

    def invalidate(self, subject_id: str) -> bool:
        """
        Forget every role mapping pointing at subject_id and retire it.

        Returns:
            True if a cached mapping was dropped
        """
        with self._lock:
            self._retired.add(subject_id)
            roles = [r for r, sid in self._by_role.items() if sid == subject_id]
            for role in roles:
                del self._by_role[role]
            return bool(roles)

    def is_retired(self, subject_id: str) -> bool:
        with self._lock:
            return subject_id in self._retired

    def snapshot(self) -> Dict[str, object]:
        """Serializable state, used by file-backed session stores."""
        with self._lock:
            return {
                "roles": {role.value: sid for role, sid in self._by_role.items()},
                "retired": sorted(self._retired),
            }
