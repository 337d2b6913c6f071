"""
Pydantic Schemas for Case Documents Service
===========================================

Typed results returned by the store, the recorders and the API.
Input validation for create/update happens in the store (so it raises the
service's ValidationError); the request models here only carry shapes.
"""

from typing import List, Optional, Dict, Any, Union
from datetime import date, datetime

from pydantic import BaseModel, Field

from .db.models import DocumentStatus, DocumentCategory, ProvenanceField, RequiredDocument, DocumentRequestHistory
from .identity import CaseSchema, CaseIdentity, CurrentCase, LegacyCase


# =============================================================================
# CASE REFERENCES
# =============================================================================

class CaseRef(BaseModel):
    """Canonical case identity as returned to callers"""
    schema_: CaseSchema = Field(..., alias="schema")
    id: str

    model_config = {"populate_by_name": True}

    @classmethod
    def from_identity(cls, identity: CaseIdentity) -> "CaseRef":
        return cls(schema=identity.schema, id=identity.raw)


def identity_of(row) -> CaseIdentity:
    """Case identity of any row carrying lead_id / legacy_lead_id"""
    if row.legacy_lead_id is not None:
        return LegacyCase(int(row.legacy_lead_id))
    return CurrentCase(row.lead_id)


# =============================================================================
# REQUIREMENTS
# =============================================================================

class Requirement(BaseModel):
    """A document requirement tagged with its canonical case"""
    id: str
    case: CaseRef
    contact_id: Optional[str] = None
    document_name: str
    document_type: DocumentCategory
    status: DocumentStatus
    is_required: bool = True
    due_date: Optional[date] = None
    notes: Optional[str] = None

    requested_by: Optional[str] = None
    requested_from: Optional[str] = None
    received_from: Optional[str] = None
    requested_from_changed_at: Optional[datetime] = None
    requested_from_changed_by: Optional[str] = None
    received_from_changed_at: Optional[datetime] = None
    received_from_changed_by: Optional[str] = None

    requested_date: Optional[datetime] = None
    received_date: Optional[datetime] = None
    approved_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_case_wide(self) -> bool:
        return self.contact_id is None

    @property
    def is_complete(self) -> bool:
        return self.status in (DocumentStatus.APPROVED, DocumentStatus.RECEIVED)

    @classmethod
    def from_row(cls, row: RequiredDocument) -> "Requirement":
        return cls(
            id=row.id,
            case=CaseRef.from_identity(identity_of(row)),
            contact_id=row.contact_id,
            document_name=row.document_name,
            document_type=row.document_type,
            status=row.status,
            is_required=bool(row.is_required),
            due_date=row.due_date,
            notes=row.notes,
            requested_by=row.requested_by,
            requested_from=row.requested_from,
            received_from=row.received_from,
            requested_from_changed_at=row.requested_from_changed_at,
            requested_from_changed_by=row.requested_from_changed_by,
            received_from_changed_at=row.received_from_changed_at,
            received_from_changed_by=row.received_from_changed_by,
            requested_date=row.requested_date,
            received_date=row.received_date,
            approved_date=row.approved_date,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class RequirementCreate(BaseModel):
    """Create requirement request"""
    case_id: str = Field(..., description="Raw case reference (UUID or legacy_<id>)")
    contact_id: Optional[str] = None
    document_name: str = ""
    document_type: Optional[str] = None
    due_date: Optional[Union[date, str]] = None
    notes: Optional[str] = None
    is_required: bool = True
    requested_from: Optional[str] = None
    template_name: Optional[str] = None


class CreateRequirementBody(BaseModel):
    """Create requirement request body (case comes from the URL)"""
    contact_id: Optional[str] = None
    document_name: str = ""
    document_type: Optional[str] = None
    due_date: Optional[str] = None
    notes: Optional[str] = None
    is_required: bool = True
    requested_from: Optional[str] = None
    template_name: Optional[str] = None


class StatusUpdate(BaseModel):
    """Status change request body"""
    status: str
    reason: Optional[str] = None
    notes: Optional[str] = None


class ProvenanceUpdate(BaseModel):
    """Provenance change request body"""
    value: Optional[str] = None
    reason: Optional[str] = None


# =============================================================================
# HISTORY
# =============================================================================

class HistoryEntry(BaseModel):
    """One recorded change of a provenance or status field"""
    id: int
    entry_uid: str
    document_id: str
    case: Optional[CaseRef] = None
    field: ProvenanceField
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: str
    changed_by_user_id: Optional[str] = None
    changed_at: datetime
    change_reason: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: DocumentRequestHistory) -> "HistoryEntry":
        case = None
        if row.lead_id is not None or row.legacy_lead_id is not None:
            case = CaseRef.from_identity(identity_of(row))
        return cls(
            id=row.id,
            entry_uid=row.entry_uid,
            document_id=row.document_id,
            case=case,
            field=row.field_name,
            old_value=row.old_value,
            new_value=row.new_value,
            changed_by=row.changed_by,
            changed_by_user_id=row.changed_by_user_id,
            changed_at=row.changed_at,
            change_reason=row.change_reason,
            notes=row.notes,
        )


class AuditWrite(BaseModel):
    """
    Outcome of a tracked change.

    history_recorded is False when the history row could not be written with
    the value; `retry` then describes the queued background retry.
    """
    requirement: Requirement
    entry: Dict[str, Any]
    history_recorded: bool = True
    retry: Optional[Dict[str, Any]] = None


class StatusChange(BaseModel):
    """Outcome of a status change"""
    previous_status: DocumentStatus
    requirement: Requirement
    history_recorded: bool = True
    retry: Optional[Dict[str, Any]] = None


# =============================================================================
# COMPLETION
# =============================================================================

class Completion(BaseModel):
    """Completion metrics for a contact or a case"""
    required: int = 0
    completed: int = 0
    percentage: int = 0
    contact_id: Optional[str] = None
    case: Optional[CaseRef] = None


# =============================================================================
# LISTINGS
# =============================================================================

class RequirementListResponse(BaseModel):
    """List response; failures name schema branches that could not be read"""
    requirements: List[Requirement]
    failures: List[Dict[str, Any]] = []
    partial: bool = False


class BulkDeleteResponse(BaseModel):
    """Bulk delete response"""
    document_name: str
    deleted: int


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: datetime
