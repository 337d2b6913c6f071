"""
Shared error types.

Every failure the service surfaces is one of these. Each kind has a stable
`category` string and an HTTP status used by the API layer; the message text
is for humans and may change.
"""

from typing import List, Optional


class CaseDocsError(Exception):
    """Base class for service errors."""

    category = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.category, "detail": self.message}


class ValidationError(CaseDocsError):
    """Malformed input: empty name, unparsable date, unresolvable case."""

    category = "validation_error"
    status_code = 400


class NotFoundError(CaseDocsError):
    """Case, contact or requirement does not exist."""

    category = "not_found"
    status_code = 404

    def __init__(self, kind: str, identifier):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(CaseDocsError):
    """Attempted bulk deletion of a protected default document name."""

    category = "conflict"
    status_code = 409


class StoreError(CaseDocsError):
    """Remote store call failed (network, service unavailable, constraint)."""

    category = "store_unavailable"
    status_code = 503

    def __init__(self, message: str, schema: Optional[str] = None):
        super().__init__(message)
        self.schema = schema

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.schema:
            data["schema"] = self.schema
        return data


class PartialResultError(CaseDocsError):
    """
    One schema branch of a listing failed while the other succeeded.

    Returned next to the valid results rather than raised.
    """

    category = "partial_result"
    status_code = 200

    def __init__(self, schema: str, case_ids: List[str], cause: Optional[BaseException] = None):
        super().__init__(f"{schema} schema query failed for {len(case_ids)} case(s)")
        self.schema = schema
        self.case_ids = list(case_ids)
        self.cause = cause

    def to_dict(self) -> dict:
        return {
            "error": self.category,
            "detail": self.message,
            "schema": self.schema,
            "case_ids": self.case_ids,
        }
