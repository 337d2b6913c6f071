"""
Completion metrics, recomputed from the store on every read.

Every requirement row in scope counts toward `required`; it is complete when
its status is approved or received.
"""

import math
from typing import Iterable, Optional

from .schemas import CaseRef, Completion, Requirement
from .store import RequirementStore


def percentage(completed: int, required: int) -> int:
    """completed/required as a whole percent, halves rounded up; 0 when nothing is required"""
    if required <= 0:
        return 0
    return int(math.floor(completed * 100 / required + 0.5))


def summarize(requirements: Iterable[Requirement], contact_id: Optional[str] = None,
              case: Optional[CaseRef] = None) -> Completion:
    requirements = list(requirements)
    completed = sum(1 for r in requirements if r.is_complete)
    return Completion(
        required=len(requirements),
        completed=completed,
        percentage=percentage(completed, len(requirements)),
        contact_id=contact_id,
        case=case,
    )


class CompletionAggregator:
    def __init__(self, store: Optional[RequirementStore] = None):
        self.store = store or RequirementStore()

    async def per_contact(self, contact_id: str) -> Completion:
        """Over the requirements that apply to the contact (own records, else case-wide)"""
        identity = await self.store.contact_case(contact_id)
        requirements = await self.store.find_for_contact(contact_id)
        return summarize(requirements, contact_id=contact_id, case=CaseRef.from_identity(identity))

    async def per_case(self, case_id) -> Completion:
        """
        Over every requirement row of the case. Contact-specific rows count per
        contact, each case-wide row counts once.
        """
        identity = await self.store.require_case(case_id)
        listing = await self.store.list([identity])
        return summarize(listing.requirements, case=CaseRef.from_identity(identity))
