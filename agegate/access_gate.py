"""
Access gate.

Every content-rendering surface asks the gate, on every render, whether the
current subject may see a given item. Nothing is cached: a policy change or a
cleared verification takes effect on the next call.
"""

from typing import Optional

from .policy import PolicyConfig
from .session_store import SessionRecord, SessionStateStore
from .subject import SubjectRole


def can_access(
    session_record: Optional[SessionRecord],
    content_policy: PolicyConfig,
    session_policy: Optional[PolicyConfig] = None
) -> bool:
    """
    Decide whether a session may view content guarded by content_policy.

    Args:
        session_record: The subject's record, or None if there is none
        content_policy: Policy attached to the content
        session_policy: Policy the session was verified against. When
            omitted the session is assumed to have been verified against
            content_policy itself (single uniform deployment policy).

    Returns:
        True only for a verified record whose policy is at least as strict
        as content_policy
    """
    if session_record is None or session_record.verified is not True:
        return False
    if session_policy is None:
        return session_record.policy_hash == content_policy.hash
    if session_record.policy_hash != session_policy.hash:
        return False
    return session_policy.is_at_least_as_strict(content_policy)


def can_upload(session_record: Optional[SessionRecord], deployment_policy: PolicyConfig) -> bool:
    """Uploaders must hold a verification under the full deployment policy."""
    return can_access(session_record, deployment_policy, deployment_policy)


class AccessGate:
    """Store-backed convenience wrapper around can_access / can_upload."""

    def __init__(self, store: SessionStateStore):
        self.store = store

    def can_view(self, content_policy: PolicyConfig, role: SubjectRole = SubjectRole.VIEWER) -> bool:
        subject_id = self.store.registry.peek(role)
        if subject_id is None:
            return False
        return can_access(self.store.get(subject_id), content_policy, self.store.policy)

    def can_view_min_age(self, minimum_age: int) -> bool:
        """Gate for a content item that only carries a minimum age."""
        return self.can_view(PolicyConfig.for_content(minimum_age))

    def can_upload(self) -> bool:
        subject_id = self.store.registry.peek(SubjectRole.UPLOADER)
        if subject_id is None:
            return False
        return can_upload(self.store.get(subject_id), self.store.policy)
