"""
SQLAlchemy Models for Database
==============================

Schema for document requirement tracking:
- Cases in two generations: `leads` (current, UUID ids) and `leads_lead` (legacy, numeric ids)
- Contacts (applicant and family members) attached to either generation
- Required documents with provenance stamps
- Append-only request history
- Read-only document templates

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Boolean, Date, DateTime, Enum, ForeignKey,
    Index, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# Exactly one of the two case columns is set
CASE_EXCLUSIVE_SQL = "(lead_id IS NULL) <> (legacy_lead_id IS NULL)"


# =============================================================================
# ENUMS
# =============================================================================

class DocumentStatus(str, enum.Enum):
    """Fulfilment status of a required document"""
    MISSING = "missing"
    PENDING = "pending"
    RECEIVED = "received"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentCategory(str, enum.Enum):
    """Document category (document_type)"""
    IDENTITY = "identity"
    CIVIL_STATUS = "civil_status"
    LEGAL = "legal"
    FINANCIAL = "financial"
    PROFESSIONAL = "professional"
    HEALTH = "health"


class Relationship(str, enum.Enum):
    """Contact's relationship to the case"""
    MAIN_APPLICANT = "main_applicant"
    PERSECUTED_PERSON = "persecuted_person"
    SPOUSE = "spouse"
    CHILD = "child"
    PARENT = "parent"
    SIBLING = "sibling"
    GRANDCHILD = "grandchild"
    GRANDPARENT = "grandparent"
    GREAT_GRANDCHILD = "great_grandchild"
    GREAT_GRANDPARENT = "great_grandparent"
    GRANDSON = "grandson"
    GRANDDAUGHTER = "granddaughter"
    GREAT_GRANDSON = "great_grandson"
    GREAT_GRANDDAUGHTER = "great_granddaughter"
    NEPHEW = "nephew"
    NIECE = "niece"
    COUSIN = "cousin"
    UNCLE = "uncle"
    AUNT = "aunt"
    IN_LAW = "in_law"
    OTHER = "other"


class ProvenanceField(str, enum.Enum):
    """Fields whose changes are recorded in the request history"""
    REQUESTED_FROM = "requested_from"
    RECEIVED_FROM = "received_from"
    STATUS = "status"


# =============================================================================
# PEOPLE
# =============================================================================

class User(Base):
    """Staff user; only used to resolve actor display names"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# =============================================================================
# CASES
# =============================================================================

class Lead(Base):
    """Case in the current schema"""
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    lead_number = Column(String(50), nullable=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    contacts = relationship("Contact", back_populates="lead", cascade="all, delete-orphan")
    required_documents = relationship("RequiredDocument", back_populates="lead", cascade="all, delete-orphan")


class LegacyLead(Base):
    """Case in the legacy schema"""
    __tablename__ = "leads_lead"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    cdate = Column(DateTime, default=datetime.utcnow)

    contacts = relationship("Contact", back_populates="legacy_lead", cascade="all, delete-orphan")
    required_documents = relationship("RequiredDocument", back_populates="legacy_lead", cascade="all, delete-orphan")


class Contact(Base):
    """Person attached to a case (applicant or family member)"""
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=True)
    legacy_lead_id = Column(BigInteger().with_variant(Integer, "sqlite"), ForeignKey("leads_lead.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(255), nullable=False)
    relationship_role = Column("relationship", Enum(Relationship), default=Relationship.OTHER, nullable=False)
    is_main_applicant = Column(Boolean, default=False, nullable=False)
    is_persecuted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(CASE_EXCLUSIVE_SQL, name="ck_contact_case_exclusive"),
        Index("ix_contact_lead", "lead_id"),
        Index("ix_contact_legacy_lead", "legacy_lead_id"),
    )

    lead = relationship("Lead", back_populates="contacts")
    legacy_lead = relationship("LegacyLead", back_populates="contacts")


# =============================================================================
# DOCUMENT REQUIREMENTS
# =============================================================================

class RequiredDocument(Base):
    """A document that must be supplied for a case or one of its contacts"""
    __tablename__ = "lead_required_documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=True)
    legacy_lead_id = Column(BigInteger().with_variant(Integer, "sqlite"), ForeignKey("leads_lead.id", ondelete="CASCADE"), nullable=True)
    contact_id = Column(String(36), ForeignKey("contacts.id", ondelete="CASCADE"), nullable=True)  # NULL = case-wide

    document_name = Column(String(255), nullable=False)
    document_type = Column(Enum(DocumentCategory), default=DocumentCategory.IDENTITY, nullable=False)
    status = Column(Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)
    is_required = Column(Boolean, default=True, nullable=False)
    due_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    # Provenance
    requested_by = Column(String(255), nullable=True)
    requested_from = Column(String(255), nullable=True)
    received_from = Column(String(255), nullable=True)
    requested_from_changed_at = Column(DateTime, nullable=True)
    requested_from_changed_by = Column(String(255), nullable=True)
    received_from_changed_at = Column(DateTime, nullable=True)
    received_from_changed_by = Column(String(255), nullable=True)

    # Lifecycle stamps
    requested_date = Column(DateTime, default=datetime.utcnow)
    received_date = Column(DateTime, nullable=True)
    approved_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(CASE_EXCLUSIVE_SQL, name="ck_required_document_case_exclusive"),
        Index("ix_required_document_lead", "lead_id", "document_name"),
        Index("ix_required_document_legacy_lead", "legacy_lead_id", "document_name"),
        Index("ix_required_document_contact", "contact_id"),
    )

    lead = relationship("Lead", back_populates="required_documents")
    legacy_lead = relationship("LegacyLead", back_populates="required_documents")
    contact = relationship("Contact")


class DocumentRequestHistory(Base):
    """Append-only change history for provenance and status fields"""
    __tablename__ = "document_request_history"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    entry_uid = Column(String(36), nullable=False, unique=True, default=generate_uuid)
    document_id = Column(String(36), nullable=False)  # no FK: history outlives deleted requirements
    lead_id = Column(String(36), nullable=True)
    legacy_lead_id = Column(BigInteger().with_variant(Integer, "sqlite"), nullable=True)

    field_name = Column(Enum(ProvenanceField), nullable=False)
    old_value = Column(String(255), nullable=True)
    new_value = Column(String(255), nullable=True)
    changed_by = Column(String(255), nullable=False)  # resolved display name
    changed_by_user_id = Column(String(36), nullable=True)
    changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    change_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_history_document", "document_id", "changed_at"),
        Index("ix_history_lead", "lead_id", "changed_at"),
        Index("ix_history_legacy_lead", "legacy_lead_id", "changed_at"),
    )

    @classmethod
    def from_entry(cls, entry: dict) -> "DocumentRequestHistory":
        """Build a row from a serialized entry (see audit.build_entry)"""
        changed_at = entry.get("changed_at")
        if isinstance(changed_at, str):
            changed_at = datetime.fromisoformat(changed_at)
        return cls(
            entry_uid=entry["entry_uid"],
            document_id=entry["document_id"],
            lead_id=entry.get("lead_id"),
            legacy_lead_id=entry.get("legacy_lead_id"),
            field_name=ProvenanceField(entry["field_name"]),
            old_value=entry.get("old_value"),
            new_value=entry.get("new_value"),
            changed_by=entry["changed_by"],
            changed_by_user_id=entry.get("changed_by_user_id"),
            changed_at=changed_at or datetime.utcnow(),
            change_reason=entry.get("change_reason"),
            notes=entry.get("notes"),
        )


class DocumentTemplate(Base):
    """Catalog entry used to pre-fill new requirements (read-only here)"""
    __tablename__ = "document_templates"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    typical_due_days = Column(Integer, default=30, nullable=False)
    instructions = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
