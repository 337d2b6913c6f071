"""
Status Transition Engine
========================

Applies status changes and their date-stamp side effects:
- entering `received` stamps received_date if it is unset
- entering `approved` stamps approved_date if it is unset

Status and stamps are written in the same transaction as the status history
entry (or, on the audit fallback path, in the same value-only transaction),
so a status never lands without its stamps.

Any status may currently move to any other, so handlers can correct mistakes.
ALLOWED_TRANSITIONS is the one place to restrict that.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Union

from sqlalchemy.orm import Session

from .audit import AuditRecorder
from .db.models import DocumentStatus, ProvenanceField, RequiredDocument
from .errors import ValidationError
from .identity import coerce_actor
from .schemas import StatusChange

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    status: frozenset(DocumentStatus) for status in DocumentStatus
}


def parse_status(value: Union[str, DocumentStatus]) -> DocumentStatus:
    if isinstance(value, DocumentStatus):
        return value
    try:
        return DocumentStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in DocumentStatus)
        raise ValidationError(f"Unknown status {value!r} (allowed: {allowed})")


@dataclass
class TransitionPlan:
    previous: DocumentStatus
    new: DocumentStatus
    changes: Dict[str, Any] = field(default_factory=dict)


def plan_transition(current: DocumentStatus, new: DocumentStatus,
                    received_date: Optional[datetime], approved_date: Optional[datetime],
                    now: datetime) -> TransitionPlan:
    """
    Field changes for moving `current` to `new`. Pure.

    Raises:
        ValidationError: the transition is not in ALLOWED_TRANSITIONS
    """
    if new not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise ValidationError(f"Status cannot change from {current.value} to {new.value}")

    changes: Dict[str, Any] = {"status": new}
    if new == DocumentStatus.RECEIVED and received_date is None:
        changes["received_date"] = now
    if new == DocumentStatus.APPROVED and approved_date is None:
        changes["approved_date"] = now
    return TransitionPlan(previous=current, new=new, changes=changes)


class StatusTransitionEngine:
    """Status changes with date stamps and status history"""

    def __init__(self, recorder: Optional[AuditRecorder] = None):
        self.recorder = recorder or AuditRecorder()

    async def set_status(self, requirement_id: str, new_status, actor=None,
                         reason: Optional[str] = None, notes: Optional[str] = None) -> StatusChange:
        """
        Move a requirement to `new_status`.

        Raises:
            ValidationError: unknown status or disallowed transition
            NotFoundError: requirement does not exist
            StoreError: the change could not be written
        """
        target = parse_status(new_status)

        def mutate(db: Session, row: RequiredDocument, display: str, now: datetime):
            plan = plan_transition(row.status, target, row.received_date, row.approved_date, now)
            for key, value in plan.changes.items():
                setattr(row, key, value)
            return plan.previous

        write = await self.recorder.tracked_write(
            requirement_id, ProvenanceField.STATUS, mutate, coerce_actor(actor), reason=reason, notes=notes,
        )
        logger.info(f"Requirement {requirement_id} status {write.previous.value} -> {target.value}")
        return StatusChange(
            previous_status=write.previous,
            requirement=write.requirement,
            history_recorded=write.history_recorded,
            retry=write.retry,
        )
