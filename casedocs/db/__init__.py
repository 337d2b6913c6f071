"""
Database Package - PostgreSQL with SQLAlchemy
==============================================

Persistence layer for document requirement tracking.
"""

from .models import (
    Base,
    User, Lead, LegacyLead, Contact,
    RequiredDocument, DocumentRequestHistory, DocumentTemplate,
    DocumentStatus, DocumentCategory, Relationship, ProvenanceField,
)
from .session import get_db_session, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # People & cases
    "User", "Lead", "LegacyLead", "Contact",
    # Requirements
    "RequiredDocument", "DocumentRequestHistory", "DocumentTemplate",
    # Enums
    "DocumentStatus", "DocumentCategory", "Relationship", "ProvenanceField",
    # Session
    "get_db_session", "init_db", "get_engine", "reset_engine",
]
