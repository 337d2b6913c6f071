"""
Document Requirement Store
==========================

Persistence and queries for required documents across both case schemas.

All public operations are coroutines. The blocking SQLAlchemy work for each
call runs in a worker thread (asyncio.to_thread) inside its own session, so a
call either commits as a whole or rolls back as a whole. SQLAlchemy failures
leave this module as StoreError.

Precedence rule (find_for_contact): for every distinct document name in a
case, a contact sees its own record if it has one, otherwise the case-wide
record (contact_id NULL).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

import pydantic
from sqlalchemy import false, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .actors import ActorResolver
from .config import get_settings, protected_names
from .db.models import Contact, Lead, LegacyLead, RequiredDocument, DocumentCategory, DocumentStatus
from .db.session import get_db_session
from .defaults import documents_for
from .errors import CaseDocsError, ConflictError, NotFoundError, PartialResultError, StoreError, ValidationError
from .identity import CaseIdentity, CaseSchema, CurrentCase, LegacyCase, coerce_actor, resolve
from .schemas import Requirement, RequirementCreate, RequirementListResponse, identity_of
from .templates import DatabaseTemplateCatalog, TemplateCatalog, TemplateEntry

logger = logging.getLogger(__name__)

# Fields a plain update may touch. Status and provenance have their own paths.
UPDATABLE_FIELDS = ("document_name", "document_type", "due_date", "notes", "is_required")


# =============================================================================
# SESSION HELPERS
# =============================================================================

def run_in_session(fn, *args, schema: Optional[str] = None, **kwargs):
    """Run fn(db, *args) in one transaction; storage failures become StoreError."""
    try:
        with get_db_session() as db:
            return fn(db, *args, **kwargs)
    except CaseDocsError:
        raise
    except SQLAlchemyError as e:
        where = f" ({schema} schema)" if schema else ""
        logger.error(f"Store call {getattr(fn, '__name__', fn)} failed{where}: {e}")
        raise StoreError(f"Store call failed{where}: {e.__class__.__name__}", schema=schema) from e


async def call(fn, *args, schema: Optional[str] = None, **kwargs):
    """Async wrapper around run_in_session"""
    return await asyncio.to_thread(run_in_session, fn, *args, schema=schema, **kwargs)


# =============================================================================
# VALUE HELPERS
# =============================================================================

def name_key(name: Optional[str]) -> str:
    """Documents with the same key are the same requirement kind within a case"""
    return (name or "").strip().lower()


def is_protected(name: Optional[str]) -> bool:
    return name_key(name) in protected_names()


def parse_due_date(value: Union[None, str, date, datetime]) -> Optional[date]:
    """Accept a date, a datetime, or an ISO string ("2025-03-01" or a full timestamp)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError(f"Invalid due date: {text!r}")


def parse_category(value: Union[str, DocumentCategory]) -> DocumentCategory:
    if isinstance(value, DocumentCategory):
        return value
    try:
        return DocumentCategory(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(c.value for c in DocumentCategory)
        raise ValidationError(f"Unknown document category {value!r} (allowed: {allowed})")


def _template_category(template: TemplateEntry) -> Optional[DocumentCategory]:
    try:
        return DocumentCategory(str(template.category).strip().lower())
    except ValueError:
        logger.warning(f"Template {template.name!r} has unknown category {template.category!r}; ignoring it")
        return None


# =============================================================================
# QUERY HELPERS
# =============================================================================

def case_filter(model, identity: CaseIdentity):
    if isinstance(identity, LegacyCase):
        return model.legacy_lead_id == identity.id
    return model.lead_id == identity.id


def scope_filter(model, identities: List[CaseIdentity]):
    """Filter matching any of the given cases, whichever schema they are in"""
    current_ids = [i.id for i in identities if isinstance(i, CurrentCase)]
    legacy_ids = [i.id for i in identities if isinstance(i, LegacyCase)]
    clauses = []
    if current_ids:
        clauses.append(model.lead_id.in_(current_ids))
    if legacy_ids:
        clauses.append(model.legacy_lead_id.in_(legacy_ids))
    if not clauses:
        return false()
    return or_(*clauses)


def case_columns(identity: CaseIdentity) -> Dict[str, Any]:
    """Column values placing a row in exactly one schema"""
    if isinstance(identity, LegacyCase):
        return {"lead_id": None, "legacy_lead_id": identity.id}
    return {"lead_id": identity.id, "legacy_lead_id": None}


def ensure_case(db: Session, identity: CaseIdentity) -> None:
    model = LegacyLead if isinstance(identity, LegacyCase) else Lead
    if db.get(model, identity.id) is None:
        raise NotFoundError("Case", identity.raw)


def load_contact(db: Session, contact_id: str) -> Contact:
    contact = db.get(Contact, contact_id) if contact_id else None
    if contact is None:
        raise NotFoundError("Contact", contact_id)
    return contact


def load_requirement(db: Session, requirement_id: str) -> RequiredDocument:
    row = db.get(RequiredDocument, requirement_id) if requirement_id else None
    if row is None:
        raise NotFoundError("Requirement", requirement_id)
    return row


def effective_rows(rows: Iterable, contact_id: str) -> list:
    """
    Apply contact-over-case-wide precedence.

    `rows` are the case-wide records of a case plus the records of one contact,
    in display order. Returns one record per document name, keeping the order
    in which names first appear.
    """
    chosen: Dict[str, Any] = {}
    order: List[str] = []
    for row in rows:
        key = name_key(row.document_name)
        current = chosen.get(key)
        if current is None:
            chosen[key] = row
            order.append(key)
        elif current.contact_id is None and row.contact_id == contact_id:
            chosen[key] = row
    return [chosen[k] for k in order]


def _as_identities(case_ids) -> List[CaseIdentity]:
    if isinstance(case_ids, (str, CurrentCase, LegacyCase)):
        case_ids = [case_ids]
    return [resolve(c) for c in case_ids]


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class RequirementListing:
    """Requirements from every schema that answered, plus one failure per schema that did not"""
    requirements: List[Requirement] = field(default_factory=list)
    failures: List[PartialResultError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    def to_response(self) -> RequirementListResponse:
        return RequirementListResponse(
            requirements=self.requirements,
            failures=[f.to_dict() for f in self.failures],
            partial=self.partial,
        )


# =============================================================================
# STORE
# =============================================================================

class RequirementStore:
    """Schema-aware CRUD and queries over required documents"""

    def __init__(self, catalog: Optional[TemplateCatalog] = None, actors: Optional[ActorResolver] = None):
        self.catalog = catalog if catalog is not None else DatabaseTemplateCatalog()
        self.actors = actors or ActorResolver()

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(self, spec: Union[RequirementCreate, Dict[str, Any]], actor=None) -> Requirement:
        """
        Create a requirement.

        Defaults: status pending, requested_date now, requested_by the actor.
        When the template catalog knows the name (or `template_name`), its
        category, due days and instructions fill whatever the caller left empty.

        Raises:
            ValidationError: empty name, bad date/category, contact from another case
            NotFoundError: case or contact does not exist
        """
        if isinstance(spec, dict):
            try:
                spec = RequirementCreate(**spec)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid requirement: {e.errors()[0].get('msg', 'bad input')}")

        identity = resolve(spec.case_id)
        name = (spec.document_name or "").strip()
        lookup_name = (spec.template_name or "").strip() or name
        if not lookup_name:
            raise ValidationError("Document name is required")

        # Caller-supplied values are validated before any I/O
        category = parse_category(spec.document_type) if spec.document_type else None
        due_date = parse_due_date(spec.due_date)
        notes = spec.notes

        template = await self._lookup_template(lookup_name)
        if not name:
            if template is None:
                raise ValidationError(f"No template named {lookup_name!r}")
            name = template.name
        if template is not None:
            if category is None:
                category = _template_category(template)
            if due_date is None and template.default_due_days:
                due_date = date.today() + timedelta(days=template.default_due_days)
            if not notes:
                notes = template.instructions

        return await call(
            self._insert,
            identity,
            spec.contact_id,
            name,
            category or DocumentCategory.IDENTITY,
            due_date,
            notes,
            spec.is_required,
            spec.requested_from,
            coerce_actor(actor),
            schema=identity.schema.value,
        )

    async def _lookup_template(self, name: str) -> Optional[TemplateEntry]:
        try:
            return await call(self.catalog.lookup, name)
        except StoreError as e:
            logger.warning(f"Template catalog unavailable, using caller values: {e}")
            return None

    def _insert(self, db: Session, identity, contact_id, name, category, due_date, notes,
                is_required, requested_from, actor) -> Requirement:
        ensure_case(db, identity)
        if contact_id:
            contact = load_contact(db, contact_id)
            if identity_of(contact) != identity:
                raise ValidationError(f"Contact {contact_id} does not belong to case {identity.raw}")

        display, _ = self.actors.resolve(db, actor)
        now = datetime.utcnow()
        requested_from = (requested_from or "").strip() or None

        row = RequiredDocument(
            **case_columns(identity),
            contact_id=contact_id or None,
            document_name=name,
            document_type=category,
            status=DocumentStatus.PENDING,
            is_required=bool(is_required),
            due_date=due_date,
            notes=notes,
            requested_by=display,
            requested_from=requested_from,
            requested_date=now,
        )
        if requested_from:
            row.requested_from_changed_at = now
            row.requested_from_changed_by = display

        db.add(row)
        db.flush()
        logger.info(f"Requirement {row.id} ({name!r}) created for case {identity.raw}")
        return Requirement.from_row(row)

    async def create_defaults_for_contact(self, contact_id: str, actor=None) -> List[Requirement]:
        """Create the default documents for a contact's relationship, skipping names it already has"""
        return await call(self._insert_defaults, contact_id, coerce_actor(actor))

    def _insert_defaults(self, db: Session, contact_id: str, actor) -> List[Requirement]:
        contact = load_contact(db, contact_id)
        identity = identity_of(contact)
        existing = {
            name_key(n)
            for (n,) in db.query(RequiredDocument.document_name)
            .filter(RequiredDocument.contact_id == contact.id)
            .all()
        }

        display, _ = self.actors.resolve(db, actor)
        now = datetime.utcnow()
        created = []
        for name, category in documents_for(contact.relationship_role):
            if name_key(name) in existing:
                continue
            row = RequiredDocument(
                **case_columns(identity),
                contact_id=contact.id,
                document_name=name,
                document_type=category,
                status=DocumentStatus.MISSING,
                is_required=True,
                requested_by=display,
                requested_date=now,
            )
            db.add(row)
            created.append(row)

        db.flush()
        logger.info(f"Created {len(created)} default requirement(s) for contact {contact.id}")
        return [Requirement.from_row(r) for r in created]

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get(self, requirement_id: str) -> Requirement:
        return await call(self._get, requirement_id)

    def _get(self, db: Session, requirement_id: str) -> Requirement:
        return Requirement.from_row(load_requirement(db, requirement_id))

    async def require_case(self, case_id) -> CaseIdentity:
        """Resolve a case reference and check the case exists"""
        identity = resolve(case_id)
        await call(ensure_case, identity, schema=identity.schema.value)
        return identity

    async def contact_case(self, contact_id: str) -> CaseIdentity:
        """The case a contact belongs to"""
        return await call(self._contact_case, contact_id)

    def _contact_case(self, db: Session, contact_id: str) -> CaseIdentity:
        return identity_of(load_contact(db, contact_id))

    async def list(self, case_ids) -> RequirementListing:
        """
        List requirements for cases in either schema.

        The current and legacy queries run concurrently and are joined after
        both settle. If one fails while the other answers, the listing carries
        the valid rows plus a PartialResultError for the failed schema.

        Raises:
            ValidationError: an unresolvable case reference
            StoreError: every schema queried failed
        """
        identities = _as_identities(case_ids)
        current_ids = list(dict.fromkeys(i.id for i in identities if isinstance(i, CurrentCase)))
        legacy_ids = list(dict.fromkeys(i.id for i in identities if isinstance(i, LegacyCase)))

        branches = []
        if current_ids:
            branches.append((CaseSchema.CURRENT, [CurrentCase(i).raw for i in current_ids],
                             call(self._select_current, current_ids, schema=CaseSchema.CURRENT.value)))
        if legacy_ids:
            branches.append((CaseSchema.LEGACY, [LegacyCase(i).raw for i in legacy_ids],
                             call(self._select_legacy, legacy_ids, schema=CaseSchema.LEGACY.value)))

        if not branches:
            return RequirementListing()

        results = await asyncio.gather(*(b[2] for b in branches), return_exceptions=True)

        listing = RequirementListing()
        errors: List[StoreError] = []
        for (schema, raw_ids, _), result in zip(branches, results):
            if isinstance(result, StoreError):
                logger.warning(f"{schema.value} schema query failed for {raw_ids}: {result}")
                errors.append(result)
                listing.failures.append(PartialResultError(schema.value, raw_ids, cause=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                listing.requirements.extend(result)

        if len(errors) == len(branches):
            if len(errors) == 1:
                raise errors[0]
            raise StoreError("All schema queries failed")

        return listing

    def _select_current(self, db: Session, lead_ids: List[str]) -> List[Requirement]:
        rows = (
            db.query(RequiredDocument)
            .filter(RequiredDocument.lead_id.in_(lead_ids))
            .order_by(RequiredDocument.created_at.desc())
            .all()
        )
        return [Requirement.from_row(r) for r in rows]

    def _select_legacy(self, db: Session, legacy_ids: List[int]) -> List[Requirement]:
        rows = (
            db.query(RequiredDocument)
            .filter(RequiredDocument.legacy_lead_id.in_(legacy_ids))
            .order_by(RequiredDocument.created_at.desc())
            .all()
        )
        return [Requirement.from_row(r) for r in rows]

    async def find_for_contact(self, contact_id: str, case_id=None) -> List[Requirement]:
        """
        Requirements that apply to a contact: per document name, the contact's
        own record if present, otherwise the case-wide one.

        case_id defaults to the contact's own case; when given it must match.
        """
        identity = resolve(case_id) if case_id is not None else None
        return await call(self._effective_for_contact, contact_id, identity)

    def _effective_for_contact(self, db: Session, contact_id: str, identity: Optional[CaseIdentity]) -> List[Requirement]:
        contact = load_contact(db, contact_id)
        contact_case = identity_of(contact)
        if identity is not None and identity != contact_case:
            raise ValidationError(f"Contact {contact_id} does not belong to case {identity.raw}")

        rows = (
            db.query(RequiredDocument)
            .filter(
                case_filter(RequiredDocument, contact_case),
                or_(
                    RequiredDocument.contact_id == contact.id,
                    RequiredDocument.contact_id.is_(None),
                ),
            )
            .order_by(RequiredDocument.created_at.asc(), RequiredDocument.id.asc())
            .all()
        )
        return [Requirement.from_row(r) for r in effective_rows(rows, contact.id)]

    async def list_due_soon(self, case_ids=None, days: Optional[int] = None, today: Optional[date] = None) -> List[Requirement]:
        """Pending or missing requirements due between today and today + days (inclusive)"""
        identities = _as_identities(case_ids) if case_ids is not None else None
        days = get_settings().due_soon_days if days is None else days
        if days < 0:
            raise ValidationError("days must be >= 0")
        start = today or date.today()
        return await call(self._select_due, identities, start, start + timedelta(days=days))

    def _select_due(self, db: Session, identities, start: date, end: date) -> List[Requirement]:
        query = db.query(RequiredDocument).filter(
            RequiredDocument.status.in_([DocumentStatus.PENDING, DocumentStatus.MISSING]),
            RequiredDocument.due_date.isnot(None),
            RequiredDocument.due_date >= start,
            RequiredDocument.due_date <= end,
        )
        if identities is not None:
            query = query.filter(scope_filter(RequiredDocument, identities))
        rows = query.order_by(RequiredDocument.due_date.asc(), RequiredDocument.created_at.asc()).all()
        return [Requirement.from_row(r) for r in rows]

    async def count_missing(self, case_ids) -> int:
        """Number of requirements in status `missing` across the given cases"""
        identities = _as_identities(case_ids)
        return await call(self._count_missing, identities)

    def _count_missing(self, db: Session, identities: List[CaseIdentity]) -> int:
        return (
            db.query(func.count(RequiredDocument.id))
            .filter(
                scope_filter(RequiredDocument, identities),
                RequiredDocument.status == DocumentStatus.MISSING,
            )
            .scalar()
        ) or 0

    # -------------------------------------------------------------------------
    # Update / delete
    # -------------------------------------------------------------------------

    async def update(self, requirement_id: str, patch) -> Requirement:
        """
        Partial update restricted to UPDATABLE_FIELDS.

        Raises:
            ValidationError: unknown field or wrongly shaped value
            NotFoundError: requirement does not exist
        """
        if hasattr(patch, "model_dump"):
            patch = patch.model_dump(exclude_unset=True)
        if not isinstance(patch, dict):
            raise ValidationError("Patch must be an object")

        unknown = sorted(set(patch) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(unknown)}")

        changes = self._coerce_patch(patch)
        return await call(self._apply_patch, requirement_id, changes)

    @staticmethod
    def _coerce_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if "document_name" in patch:
            name = patch["document_name"]
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Document name is required")
            changes["document_name"] = name.strip()
        if "document_type" in patch:
            changes["document_type"] = parse_category(patch["document_type"])
        if "due_date" in patch:
            changes["due_date"] = parse_due_date(patch["due_date"])
        if "notes" in patch:
            notes = patch["notes"]
            if notes is not None and not isinstance(notes, str):
                raise ValidationError("notes must be text")
            changes["notes"] = notes
        if "is_required" in patch:
            if not isinstance(patch["is_required"], bool):
                raise ValidationError("is_required must be a boolean")
            changes["is_required"] = patch["is_required"]
        return changes

    def _apply_patch(self, db: Session, requirement_id: str, changes: Dict[str, Any]) -> Requirement:
        row = load_requirement(db, requirement_id)
        for key, value in changes.items():
            setattr(row, key, value)
        db.flush()
        return Requirement.from_row(row)

    async def delete(self, requirement_id: str) -> bool:
        """Delete one requirement (protected names may be removed individually)"""
        return await call(self._delete, requirement_id)

    def _delete(self, db: Session, requirement_id: str) -> bool:
        row = load_requirement(db, requirement_id)
        db.delete(row)
        logger.info(f"Requirement {requirement_id} deleted")
        return True

    async def bulk_delete_by_name(self, case_id, document_name: str) -> int:
        """
        Delete every requirement in a case sharing a document name (all
        contacts and the case-wide record).

        Raises:
            ConflictError: the name is a protected default; nothing is deleted
        """
        identity = resolve(case_id)
        name = (document_name or "").strip()
        if not name:
            raise ValidationError("Document name is required")
        if is_protected(name):
            raise ConflictError(f"{name!r} is a default document and cannot be bulk-removed")
        return await call(self._delete_by_name, identity, name, schema=identity.schema.value)

    def _delete_by_name(self, db: Session, identity: CaseIdentity, name: str) -> int:
        ensure_case(db, identity)
        # Same name_key folding as effective_rows, applied in Python
        key = name_key(name)
        ids = [
            row_id
            for row_id, document_name in db.query(RequiredDocument.id, RequiredDocument.document_name)
            .filter(case_filter(RequiredDocument, identity))
            .all()
            if name_key(document_name) == key
        ]
        if not ids:
            count = 0
        else:
            count = (
                db.query(RequiredDocument)
                .filter(RequiredDocument.id.in_(ids))
                .delete(synchronize_session=False)
            )
        logger.info(f"Bulk-removed {count} requirement(s) named {name!r} from case {identity.raw}")
        return count
