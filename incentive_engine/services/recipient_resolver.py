"""Recipient identity resolution for milestone evaluation.

The evaluator asks a ``RecipientResolver`` who receives a rule's reward on a
case. ``CaseAssignmentResolver`` (default) prefers an explicit assignment
recorded when a lawyer is assigned or a referral is validated for the case,
and otherwise falls back to the derived ``"{recipient_type}-{case_id}"`` id.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from sqlalchemy.orm import Session

from incentive_engine.models.db.enums import RecipientType
from incentive_engine.models.db.recipients import CaseRecipient


@dataclass(frozen=True)
class ResolvedRecipient:
    recipient_id: str
    recipient_name: Optional[str] = None


class RecipientResolver(Protocol):
    def resolve(
        self,
        session: Session,
        case_id: str,
        recipient_type: RecipientType,
        metadata: Mapping[str, Any],
    ) -> ResolvedRecipient: ...


class DerivedRecipientResolver:
    """Derives the id from case and recipient type; name comes from metadata."""

    def resolve(self, session, case_id, recipient_type, metadata):
        name = metadata.get("recipientName") or metadata.get("recipient_name")
        return ResolvedRecipient(recipient_id=f"{recipient_type.value}-{case_id}", recipient_name=name)


class CaseAssignmentResolver:
    def __init__(self, fallback: RecipientResolver | None = None):
        self.fallback = fallback or DerivedRecipientResolver()

    def resolve(self, session, case_id, recipient_type, metadata):
        assignment = (
            session.query(CaseRecipient)
            .filter(CaseRecipient.case_id == case_id, CaseRecipient.recipient_type == recipient_type)
            .one_or_none()
        )
        if assignment is None:
            return self.fallback.resolve(session, case_id, recipient_type, metadata)
        name = assignment.recipient_name or metadata.get("recipientName") or metadata.get("recipient_name")
        return ResolvedRecipient(recipient_id=assignment.recipient_id, recipient_name=name)


def assign_case_recipient(
    session: Session,
    *,
    case_id: str,
    recipient_type: RecipientType,
    recipient_id: str,
    recipient_name: str | None = None,
    assigned_by: str | None = None,
) -> CaseRecipient:
    """Upsert the assignment inside the caller's transaction (no commit)."""
    assignment = (
        session.query(CaseRecipient)
        .filter(CaseRecipient.case_id == case_id, CaseRecipient.recipient_type == recipient_type)
        .one_or_none()
    )
    if assignment is None:
        assignment = CaseRecipient(case_id=case_id, recipient_type=recipient_type)
        session.add(assignment)
    assignment.recipient_id = recipient_id
    assignment.recipient_name = recipient_name
    assignment.assigned_by = assigned_by
    return assignment


default_resolver = CaseAssignmentResolver()

__all__ = [
    "ResolvedRecipient",
    "RecipientResolver",
    "DerivedRecipientResolver",
    "CaseAssignmentResolver",
    "assign_case_recipient",
    "default_resolver",
]
