"""
Template catalog lookups.

The catalog is read-only and optional: it only pre-fills category, due date
and instructions for a new requirement. A missing entry or a failing catalog
must never block creation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .db.models import DocumentTemplate

logger = logging.getLogger(__name__)


@dataclass
class TemplateEntry:
    name: str
    category: str
    default_due_days: int
    instructions: Optional[str] = None


class TemplateCatalog:
    """Interface: return the active template for a document name, or None."""

    def lookup(self, db: Session, name: str) -> Optional[TemplateEntry]:
        raise NotImplementedError


class NullTemplateCatalog(TemplateCatalog):
    """Catalog with no entries."""

    def lookup(self, db: Session, name: str) -> Optional[TemplateEntry]:
        return None


class DatabaseTemplateCatalog(TemplateCatalog):
    """Reads `document_templates` through the caller's session."""

    def lookup(self, db: Session, name: str) -> Optional[TemplateEntry]:
        if not name:
            return None
        row = (
            db.query(DocumentTemplate)
            .filter(
                func.lower(DocumentTemplate.name) == name.strip().lower(),
                DocumentTemplate.is_active.is_(True),
            )
            .order_by(DocumentTemplate.created_at.asc())
            .first()
        )
        if not row:
            return None
        return TemplateEntry(
            name=row.name,
            category=row.category,
            default_due_days=row.typical_due_days or 0,
            instructions=row.instructions,
        )
