"""
Identity Resolution
===================

Case references arrive in one of two raw forms:
- "<uuid>"            - a case in the current schema (table `leads`)
- "legacy_<number>"   - a case in the legacy schema (table `leads_lead`)

`resolve()` turns either into a typed CaseIdentity once, at the edge. Everything
downstream branches on the identity type, never on string prefixes.

Actors are handled the same way: `coerce_actor()` turns a user id, a display
name or nothing into an ActorRef.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

from .config import get_settings
from .errors import ValidationError


class CaseSchema(str, enum.Enum):
    """Which generation of case records a case lives in"""
    CURRENT = "current"
    LEGACY = "legacy"


@dataclass(frozen=True)
class CurrentCase:
    """Case in the current schema (string UUID id)"""
    id: str
    schema: ClassVar[CaseSchema] = CaseSchema.CURRENT

    @property
    def raw(self) -> str:
        return self.id


@dataclass(frozen=True)
class LegacyCase:
    """Case in the legacy schema (numeric id)"""
    id: int
    schema: ClassVar[CaseSchema] = CaseSchema.LEGACY

    @property
    def raw(self) -> str:
        return f"{get_settings().legacy_id_prefix}{self.id}"


CaseIdentity = Union[CurrentCase, LegacyCase]


def resolve(raw: Union[str, int, CurrentCase, LegacyCase], prefix: Optional[str] = None) -> CaseIdentity:
    """
    Resolve a raw case reference to a canonical identity.

    Pure and deterministic: no I/O, so an identity that resolves may still
    point at a case that does not exist.

    Raises:
        ValidationError: empty reference, or legacy marker with a non-numeric id
    """
    if isinstance(raw, (CurrentCase, LegacyCase)):
        return raw

    if raw is None:
        raise ValidationError("Case reference is required")

    text = str(raw).strip()
    if not text:
        raise ValidationError("Case reference is required")

    marker = get_settings().legacy_id_prefix if prefix is None else prefix
    if marker and text.startswith(marker):
        legacy_id = text[len(marker):]
        if not (legacy_id.isascii() and legacy_id.isdigit()):
            raise ValidationError(f"Invalid legacy case reference: {text!r}")
        return LegacyCase(int(legacy_id))

    return CurrentCase(text)


def describe(identity: CaseIdentity) -> dict:
    """Serializable form of an identity"""
    return {"schema": identity.schema.value, "id": identity.raw}


# =============================================================================
# ACTORS
# =============================================================================

@dataclass(frozen=True)
class ById:
    """Actor identified by a user id"""
    user_id: str


@dataclass(frozen=True)
class ByName:
    """Actor identified only by a free-text display name"""
    name: str


ActorRef = Union[ById, ByName]


def _looks_like_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def coerce_actor(value: Union[None, str, ById, ByName]) -> ActorRef:
    """
    Accept whatever the caller has for "who did this".

    None becomes the configured system actor; UUID-shaped strings are treated
    as user ids; any other string is a display name.
    """
    if isinstance(value, (ById, ByName)):
        return value
    if value is None or not str(value).strip():
        return ByName(get_settings().system_actor_name)
    text = str(value).strip()
    if _looks_like_uuid(text):
        return ById(text)
    return ByName(text)
