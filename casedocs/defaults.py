"""
Default document sets created for a new contact, by relationship.

Every contact gets the base set; some relationships add documents on top.
The names here are the ones PROTECTED_DOCUMENT_NAMES guards by default.
"""

from typing import List, Tuple

from .db.models import DocumentCategory, Relationship

BASE_DOCUMENTS: List[Tuple[str, DocumentCategory]] = [
    ("Passport Copy", DocumentCategory.IDENTITY),
    ("Birth Certificate", DocumentCategory.CIVIL_STATUS),
]

RELATIONSHIP_DOCUMENTS = {
    Relationship.MAIN_APPLICANT: [("Police Certificate", DocumentCategory.LEGAL)],
    Relationship.PERSECUTED_PERSON: [("Marriage Certificate", DocumentCategory.CIVIL_STATUS)],
    Relationship.SPOUSE: [("Marriage Certificate", DocumentCategory.CIVIL_STATUS)],
    Relationship.PARENT: [("Marriage Certificate", DocumentCategory.CIVIL_STATUS)],
    Relationship.GRANDPARENT: [("Marriage Certificate", DocumentCategory.CIVIL_STATUS)],
}


def documents_for(relationship: Relationship) -> List[Tuple[str, DocumentCategory]]:
    """Base set plus relationship extras, without duplicate names"""
    result = list(BASE_DOCUMENTS)
    seen = {name for name, _ in result}
    for name, category in RELATIONSHIP_DOCUMENTS.get(relationship, []):
        if name not in seen:
            result.append((name, category))
            seen.add(name)
    return result
