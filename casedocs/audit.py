"""
Audit Trail Recorder
====================

Records changes to requested_from / received_from (and status, on behalf of
the transition engine) together with who made them and when.

Two-phase write:
1. One transaction updates the field, its <field>_changed_at/_by stamps and
   appends the history row.
2. If that transaction fails on storage, a second transaction applies only
   the field and stamps. The history entry is handed to the job queue for a
   bounded background retry, and the result says so (history_recorded=False).

The current value is therefore always right; the history can lag behind it,
and every lag is logged and carries a retry job id.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from .actors import ActorResolver
from .db.models import DocumentRequestHistory, ProvenanceField, RequiredDocument, generate_uuid
from .errors import StoreError, ValidationError
from .identity import ActorRef, coerce_actor, resolve
from .jobs.queue import enqueue_history_retry
from .schemas import AuditWrite, HistoryEntry, Requirement
from .store import call, case_filter, load_requirement

logger = logging.getLogger(__name__)

PROVENANCE_FIELDS = (ProvenanceField.REQUESTED_FROM, ProvenanceField.RECEIVED_FROM)

# mutate(db, row, display_name, now) -> previous value
Mutation = Callable[[Session, RequiredDocument, str, datetime], Any]


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def build_entry(row: RequiredDocument, field: ProvenanceField, old_value, new_value,
                display: str, user_id: Optional[str], changed_at: datetime, entry_uid: str,
                reason: Optional[str] = None, notes: Optional[str] = None) -> Dict[str, Any]:
    """Serializable history entry (safe to pass through the job queue)"""
    return {
        "entry_uid": entry_uid,
        "document_id": row.id,
        "lead_id": row.lead_id,
        "legacy_lead_id": row.legacy_lead_id,
        "field_name": field.value,
        "old_value": _as_text(old_value),
        "new_value": _as_text(new_value),
        "changed_by": display,
        "changed_by_user_id": user_id,
        "changed_at": changed_at.isoformat(),
        "change_reason": reason,
        "notes": notes,
    }


def parse_provenance_field(value: Union[str, ProvenanceField]) -> ProvenanceField:
    try:
        field = value if isinstance(value, ProvenanceField) else ProvenanceField(str(value).strip().lower())
    except ValueError:
        field = None
    if field not in PROVENANCE_FIELDS:
        allowed = ", ".join(f.value for f in PROVENANCE_FIELDS)
        raise ValidationError(f"Unknown provenance field {value!r} (allowed: {allowed})")
    return field


@dataclass
class TrackedWrite:
    requirement: Requirement
    entry: Dict[str, Any]
    previous: Any
    history_recorded: bool = True
    retry: Optional[Dict[str, Any]] = None


class AuditRecorder:
    """Tracked field changes and history reads"""

    def __init__(self, actors: Optional[ActorResolver] = None,
                 enqueue: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None):
        self.actors = actors or ActorResolver()
        self._enqueue = enqueue or enqueue_history_retry

    async def record_provenance_change(self, requirement_id: str, field, new_value: Optional[str],
                                       actor=None, reason: Optional[str] = None) -> AuditWrite:
        """
        Set requested_from / received_from and record who changed it.

        Raises:
            ValidationError: unknown field
            NotFoundError: requirement does not exist
            StoreError: neither the atomic nor the value-only write landed
        """
        field = parse_provenance_field(field)
        value = (new_value or "").strip() or None

        def mutate(db: Session, row: RequiredDocument, display: str, now: datetime):
            previous = getattr(row, field.value)
            setattr(row, field.value, value)
            setattr(row, f"{field.value}_changed_at", now)
            setattr(row, f"{field.value}_changed_by", display)
            return previous

        write = await self.tracked_write(requirement_id, field, mutate, coerce_actor(actor), reason=reason)
        return AuditWrite(
            requirement=write.requirement,
            entry=write.entry,
            history_recorded=write.history_recorded,
            retry=write.retry,
        )

    async def tracked_write(self, requirement_id: str, field: ProvenanceField, mutate: Mutation,
                            actor: ActorRef, reason: Optional[str] = None,
                            notes: Optional[str] = None) -> TrackedWrite:
        """Apply `mutate` to a requirement and append a history entry, two-phase."""
        entry_uid = generate_uuid()
        now = datetime.utcnow()

        try:
            return await call(self._write_atomic, requirement_id, field, mutate, actor, now, entry_uid, reason, notes)
        except StoreError as e:
            logger.warning(
                f"Atomic history write failed for requirement {requirement_id} ({field.value}): {e}; "
                f"applying value only"
            )

        write = await call(self._write_value_only, requirement_id, field, mutate, actor, now, entry_uid, reason, notes)
        write.history_recorded = False
        write.retry = await self._schedule_retry(write.entry)
        return write

    def _write_atomic(self, db: Session, requirement_id, field, mutate, actor, now, entry_uid, reason, notes) -> TrackedWrite:
        write = self._apply(db, requirement_id, field, mutate, actor, now, entry_uid, reason, notes)
        self._append_history(db, write.entry)
        return write

    def _write_value_only(self, db: Session, requirement_id, field, mutate, actor, now, entry_uid, reason, notes) -> TrackedWrite:
        return self._apply(db, requirement_id, field, mutate, actor, now, entry_uid, reason, notes)

    def _apply(self, db: Session, requirement_id, field, mutate, actor, now, entry_uid, reason, notes) -> TrackedWrite:
        row = load_requirement(db, requirement_id)
        display, user_id = self.actors.resolve(db, actor)
        previous = mutate(db, row, display, now)
        db.flush()
        entry = build_entry(row, field, previous, getattr(row, field.value), display, user_id,
                            now, entry_uid, reason=reason, notes=notes)
        return TrackedWrite(requirement=Requirement.from_row(row), entry=entry, previous=previous)

    def _append_history(self, db: Session, entry: Dict[str, Any]) -> None:
        db.add(DocumentRequestHistory.from_entry(entry))
        db.flush()

    async def _schedule_retry(self, entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            retry = await asyncio.to_thread(self._enqueue, entry)
        except Exception as e:
            logger.error(f"Could not schedule history retry for entry {entry['entry_uid']}: {e}")
            return {"job_id": None, "status": "not_scheduled", "error": str(e)}
        logger.info(f"History entry {entry['entry_uid']} deferred (job {retry.get('job_id')}, status {retry.get('status')})")
        return retry

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_history(self, requirement_id: Optional[str] = None, case=None) -> List[HistoryEntry]:
        """
        History for one requirement or for a whole case, newest first.

        Exactly one of requirement_id / case must be given.
        """
        if (requirement_id is None) == (case is None):
            raise ValidationError("Pass exactly one of requirement_id or case")
        identity = resolve(case) if case is not None else None
        return await call(self._select_history, requirement_id, identity)

    def _select_history(self, db: Session, requirement_id, identity) -> List[HistoryEntry]:
        query = db.query(DocumentRequestHistory)
        if requirement_id is not None:
            query = query.filter(DocumentRequestHistory.document_id == requirement_id)
        else:
            query = query.filter(case_filter(DocumentRequestHistory, identity))
        rows = query.order_by(
            DocumentRequestHistory.changed_at.desc(),
            DocumentRequestHistory.id.desc(),
        ).all()
        return [HistoryEntry.from_row(r) for r in rows]
