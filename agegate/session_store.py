"""
Client-held verification state.

A SessionStateStore is the only mutable long-lived state in agegate. It maps
a subject identifier to the outcome of that subject's last successful
verification, and owns the per-role subject identifiers so that clearing a
verification also retires the identifier it was bound to.

Writes for one subject are serialized by a per-subject lock; operations on
different subjects never wait on each other beyond the brief lookup of that
lock.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .policy import PolicyConfig
from .subject import SubjectRegistry, SubjectRole
from .util import isoformat_z, parse_isoformat_z, utc_now


@dataclass(frozen=True)
class SessionRecord:
    """Outcome of a subject's verification."""
    subject_id: str
    verified: bool
    verified_at: datetime
    policy_hash: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "subject_id": self.subject_id,
            "verified": self.verified,
            "verified_at": isoformat_z(self.verified_at),
            "policy_hash": self.policy_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> 'SessionRecord':
        return cls(
            subject_id=str(data["subject_id"]),
            verified=data["verified"] is True,
            verified_at=parse_isoformat_z(str(data["verified_at"])),
            policy_hash=str(data["policy_hash"]),
        )


class _KeyedLocks:
    """Lazily created lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class SessionStateStore(ABC):
    """
    Verification state keyed strictly by subject identifier.

    There is no "any subject verified" query.
    """

    def __init__(self, policy: PolicyConfig, registry: Optional[SubjectRegistry] = None):
        self.policy = policy
        self.registry = registry or SubjectRegistry()
        self._locks = _KeyedLocks()

    # Storage primitives, called with the subject's lock held

    @abstractmethod
    def _load(self, subject_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    def _save(self, record: SessionRecord) -> None:
        pass

    @abstractmethod
    def _delete(self, subject_id: str) -> bool:
        pass

    @abstractmethod
    def _subject_ids(self) -> List[str]:
        pass

    # Public contract

    def record_success(self, subject_id: str, now: Optional[datetime] = None) -> Optional[SessionRecord]:
        """
        Mark subject_id as verified under the store's policy.

        Idempotent: a second call only refreshes verified_at.

        Returns:
            The stored record, or None if subject_id was retired by clear().
            A verification that completes after a clear is discarded.
        """
        record = SessionRecord(
            subject_id=subject_id,
            verified=True,
            verified_at=now or utc_now(),
            policy_hash=self.policy.hash,
        )
        with self._locks.get(subject_id):
            if self.registry.is_retired(subject_id):
                return None
            self._save(record)
        return record

    def get(self, subject_id: str) -> Optional[SessionRecord]:
        with self._locks.get(subject_id):
            return self._load(subject_id)

    def is_verified(self, subject_id: str) -> bool:
        if self.registry.is_retired(subject_id):
            return False
        record = self.get(subject_id)
        return bool(record and record.verified and record.policy_hash == self.policy.hash)

    def clear(self, subject_id: str) -> bool:
        """
        Delete the subject's record and retire its identifier.

        Returns:
            True if a record existed
        """
        with self._locks.get(subject_id):
            existed = self._delete(subject_id)
            self.registry.invalidate(subject_id)
            self._after_registry_change()
        return existed

    def apply_policy(self, policy: PolicyConfig) -> int:
        """
        Switch to a new deployment policy.

        Records verified under any other policy are cleared (and their
        identifiers retired). Returns the number of records dropped.
        """
        self.policy = policy
        dropped = 0
        for subject_id in self._subject_ids():
            record = self.get(subject_id)
            if record is not None and record.policy_hash != policy.hash:
                if self.clear(subject_id):
                    dropped += 1
        return dropped

    def subject_id_for(self, role: Union[SubjectRole, str]) -> str:
        """Current identifier for a role, generating a fresh one if needed."""
        before = self.registry.peek(role)
        subject_id = self.registry.subject_id_for(role)
        if before != subject_id:
            self._after_registry_change()
        return subject_id

    def _after_registry_change(self) -> None:
        """Hook for stores that persist the subject registry."""
        pass

    def __iter__(self) -> Iterator[SessionRecord]:
        for subject_id in self._subject_ids():
            record = self.get(subject_id)
            if record is not None:
                yield record


class InMemorySessionStore(SessionStateStore):
    """
    Process-local store.

    Not persistent across restarts; use JsonFileSessionStore where the
    verification should survive the process.
    """

    def __init__(self, policy: PolicyConfig, registry: Optional[SubjectRegistry] = None):
        super().__init__(policy, registry)
        self._records: Dict[str, SessionRecord] = {}
        self._records_lock = threading.Lock()

    def _load(self, subject_id):
        with self._records_lock:
            return self._records.get(subject_id)

    def _save(self, record):
        with self._records_lock:
            self._records[record.subject_id] = record

    def _delete(self, subject_id):
        with self._records_lock:
            return self._records.pop(subject_id, None) is not None

    def _subject_ids(self):
        with self._records_lock:
            return list(self._records)


class JsonFileSessionStore(SessionStateStore):
    """
    Durable client-side store backed by a single JSON file.

    The file holds both session records and the subject registry. Every write
    replaces the file atomically.
    """

    def __init__(self, path: Union[str, Path], policy: PolicyConfig):
        self.path = Path(path)
        self._file_lock = threading.RLock()
        self._records: Dict[str, SessionRecord] = {}
        registry = SubjectRegistry()
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._records = {
                sid: SessionRecord.from_dict(rec) for sid, rec in raw.get("records", {}).items()
            }
            subjects = raw.get("subjects", {})
            registry = SubjectRegistry(
                initial=subjects.get("roles", {}),
                retired=subjects.get("retired", []),
            )
        super().__init__(policy, registry)

    def _flush(self) -> None:
        data = {
            "records": {sid: rec.to_dict() for sid, rec in self._records.items()},
            "subjects": self.registry.snapshot(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".agegate-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, sort_keys=True, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _load(self, subject_id):
        with self._file_lock:
            return self._records.get(subject_id)

    def _save(self, record):
        with self._file_lock:
            self._records[record.subject_id] = record
            self._flush()

    def _delete(self, subject_id):
        with self._file_lock:
            existed = self._records.pop(subject_id, None) is not None
            if existed:
                self._flush()
            return existed

    def _subject_ids(self):
        with self._file_lock:
            return list(self._records)

    def _after_registry_change(self):
        with self._file_lock:
            self._flush()
