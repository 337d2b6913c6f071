"""
Document Requirement API Endpoints
==================================

FastAPI router for requirements, provenance, history and completion.
Mounted under /api/v1 by casedocs.api.

The acting user comes from the X-User-Id or X-User-Name header; without
either, changes are attributed to the configured system actor.
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, Query

from .identity import ActorRef, ById, ByName
from .jobs.queue import get_job_status
from .schemas import (
    AuditWrite,
    BulkDeleteResponse,
    Completion,
    CreateRequirementBody,
    HistoryEntry,
    ProvenanceUpdate,
    Requirement,
    RequirementCreate,
    RequirementListResponse,
    StatusChange,
    StatusUpdate,
)
from .service import DocumentRequirementService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requirements"])


@lru_cache()
def get_service() -> DocumentRequirementService:
    """Shared service instance (override in tests via app.dependency_overrides)"""
    return DocumentRequirementService()


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> Optional[ActorRef]:
    """Acting user from request headers; user id wins over display name"""
    if x_user_id and x_user_id.strip():
        return ById(x_user_id.strip())
    if x_user_name and x_user_name.strip():
        return ByName(x_user_name.strip())
    return None


# =============================================================================
# CASE-SCOPED
# =============================================================================

@router.post("/cases/{case_id}/requirements", response_model=Requirement, status_code=201)
async def create_requirement(
    case_id: str,
    body: CreateRequirementBody,
    actor: Optional[ActorRef] = Depends(get_actor),
    service: DocumentRequirementService = Depends(get_service),
):
    """Create a requirement for a case (case-wide unless contact_id is given)."""
    spec = RequirementCreate(case_id=case_id, **body.model_dump())
    return await service.create_requirement(spec, actor=actor)


@router.get("/cases/{case_id}/requirements", response_model=RequirementListResponse)
async def list_case_requirements(
    case_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    listing = await service.list_requirements([case_id])
    return listing.to_response()


@router.delete("/cases/{case_id}/requirements", response_model=BulkDeleteResponse)
async def bulk_remove_requirements(
    case_id: str,
    document_name: str = Query(..., min_length=1),
    service: DocumentRequirementService = Depends(get_service),
):
    """Remove every requirement in the case with this document name (409 for protected names)."""
    deleted = await service.bulk_remove_by_name(case_id, document_name)
    return BulkDeleteResponse(document_name=document_name, deleted=deleted)


@router.get("/cases/{case_id}/completion", response_model=Completion)
async def case_completion(
    case_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.compute_completion(case=case_id)


@router.get("/cases/{case_id}/history", response_model=List[HistoryEntry])
async def case_history(
    case_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.get_history(case=case_id)


# =============================================================================
# CONTACT-SCOPED
# =============================================================================

@router.get("/contacts/{contact_id}/requirements", response_model=List[Requirement])
async def contact_requirements(
    contact_id: str,
    case_id: Optional[str] = None,
    service: DocumentRequirementService = Depends(get_service),
):
    """Requirements that apply to the contact: its own records, else the case-wide ones."""
    return await service.find_for_contact(contact_id, case_id=case_id)


@router.post("/contacts/{contact_id}/requirements/defaults", response_model=List[Requirement], status_code=201)
async def create_default_requirements(
    contact_id: str,
    actor: Optional[ActorRef] = Depends(get_actor),
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.create_default_requirements(contact_id, actor=actor)


@router.get("/contacts/{contact_id}/completion", response_model=Completion)
async def contact_completion(
    contact_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.compute_completion(contact=contact_id)


# =============================================================================
# REQUIREMENTS
# =============================================================================

@router.get("/requirements", response_model=RequirementListResponse)
async def list_requirements(
    case_id: List[str] = Query(...),
    service: DocumentRequirementService = Depends(get_service),
):
    """List requirements across several cases, current and legacy alike."""
    listing = await service.list_requirements(case_id)
    return listing.to_response()


@router.get("/requirements/due-soon", response_model=List[Requirement])
async def due_soon(
    case_id: Optional[List[str]] = Query(None),
    days: Optional[int] = Query(None, ge=0),
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.list_due_soon(case_id or None, days=days)


@router.get("/requirements/missing-count")
async def missing_count(
    case_id: List[str] = Query(...),
    service: DocumentRequirementService = Depends(get_service),
) -> Dict[str, Any]:
    return {"case_ids": case_id, "missing": await service.count_missing(case_id)}


@router.get("/requirements/{requirement_id}", response_model=Requirement)
async def get_requirement(
    requirement_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.get_requirement(requirement_id)


@router.patch("/requirements/{requirement_id}", response_model=Requirement)
async def update_requirement(
    requirement_id: str,
    patch: Dict[str, Any] = Body(...),
    service: DocumentRequirementService = Depends(get_service),
):
    """Partial update of name, category, due date, notes or is_required."""
    return await service.update_requirement(requirement_id, patch)


@router.delete("/requirements/{requirement_id}")
async def delete_requirement(
    requirement_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    await service.delete_requirement(requirement_id)
    return {"id": requirement_id, "deleted": True}


@router.put("/requirements/{requirement_id}/status", response_model=StatusChange)
async def update_status(
    requirement_id: str,
    body: StatusUpdate,
    actor: Optional[ActorRef] = Depends(get_actor),
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.update_status(
        requirement_id, body.status, actor=actor, reason=body.reason, notes=body.notes,
    )


@router.put("/requirements/{requirement_id}/provenance/{field}", response_model=AuditWrite)
async def update_provenance(
    requirement_id: str,
    field: str,
    body: ProvenanceUpdate,
    actor: Optional[ActorRef] = Depends(get_actor),
    service: DocumentRequirementService = Depends(get_service),
):
    """Set requested_from or received_from; the change is recorded in history."""
    return await service.update_provenance(requirement_id, field, body.value, actor=actor, reason=body.reason)


@router.get("/requirements/{requirement_id}/history", response_model=List[HistoryEntry])
async def requirement_history(
    requirement_id: str,
    service: DocumentRequirementService = Depends(get_service),
):
    return await service.get_history(requirement_id=requirement_id)


# =============================================================================
# JOBS
# =============================================================================

@router.get("/jobs/{job_id}")
async def job_status(job_id: str) -> Dict[str, Any]:
    """Status of a deferred history write."""
    return await asyncio.to_thread(get_job_status, job_id)
