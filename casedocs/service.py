"""
Document Requirement Service
============================

Caller-facing operation set. Wires the store, the audit recorder, the status
engine and the completion aggregator around one shared actor resolver, and is
what the HTTP layer talks to.
"""

import logging
from datetime import date
from typing import List, Optional

from .actors import ActorResolver
from .audit import AuditRecorder
from .completion import CompletionAggregator
from .errors import ValidationError
from .schemas import AuditWrite, Completion, HistoryEntry, Requirement, StatusChange
from .store import RequirementListing, RequirementStore
from .templates import TemplateCatalog
from .transitions import StatusTransitionEngine

logger = logging.getLogger(__name__)


class DocumentRequirementService:
    """Async facade over document requirement lifecycle and audit tracking"""

    def __init__(self, catalog: Optional[TemplateCatalog] = None, enqueue=None):
        self.actors = ActorResolver()
        self.store = RequirementStore(catalog=catalog, actors=self.actors)
        self.recorder = AuditRecorder(actors=self.actors, enqueue=enqueue)
        self.transitions = StatusTransitionEngine(self.recorder)
        self.completion = CompletionAggregator(self.store)

    # Requirements

    async def create_requirement(self, spec, actor=None) -> Requirement:
        return await self.store.create(spec, actor=actor)

    async def list_requirements(self, case_ids) -> RequirementListing:
        return await self.store.list(case_ids)

    async def find_for_contact(self, contact_id: str, case_id=None) -> List[Requirement]:
        return await self.store.find_for_contact(contact_id, case_id=case_id)

    async def get_requirement(self, requirement_id: str) -> Requirement:
        return await self.store.get(requirement_id)

    async def update_requirement(self, requirement_id: str, patch) -> Requirement:
        return await self.store.update(requirement_id, patch)

    async def delete_requirement(self, requirement_id: str) -> bool:
        return await self.store.delete(requirement_id)

    async def bulk_remove_by_name(self, case_id, document_name: str) -> int:
        return await self.store.bulk_delete_by_name(case_id, document_name)

    async def create_default_requirements(self, contact_id: str, actor=None) -> List[Requirement]:
        return await self.store.create_defaults_for_contact(contact_id, actor=actor)

    async def list_due_soon(self, case_ids=None, days: Optional[int] = None,
                            today: Optional[date] = None) -> List[Requirement]:
        return await self.store.list_due_soon(case_ids, days=days, today=today)

    async def count_missing(self, case_ids) -> int:
        return await self.store.count_missing(case_ids)

    # Status and provenance

    async def update_status(self, requirement_id: str, status, actor=None,
                            reason: Optional[str] = None, notes: Optional[str] = None) -> StatusChange:
        return await self.transitions.set_status(requirement_id, status, actor=actor, reason=reason, notes=notes)

    async def update_provenance(self, requirement_id: str, field, value: Optional[str], actor=None,
                                reason: Optional[str] = None) -> AuditWrite:
        return await self.recorder.record_provenance_change(requirement_id, field, value, actor=actor, reason=reason)

    async def get_history(self, requirement_id: Optional[str] = None, case=None) -> List[HistoryEntry]:
        return await self.recorder.get_history(requirement_id=requirement_id, case=case)

    # Completion

    async def compute_completion(self, contact: Optional[str] = None, case=None) -> Completion:
        """Completion for exactly one of a contact id or a case reference"""
        if (contact is None) == (case is None):
            raise ValidationError("Pass exactly one of contact or case")
        if contact is not None:
            return await self.completion.per_contact(contact)
        return await self.completion.per_case(case)
