"""
Actor display-name resolution.

History rows and provenance stamps store a display string, resolved once when
the change is written. Reads never look names up again.
"""

import logging
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from .config import get_settings
from .db.models import User
from .identity import ActorRef, ById, ByName

logger = logging.getLogger(__name__)


class ActorResolver:
    """Resolves ActorRef values to (display_name, user_id)."""

    def __init__(self):
        self._names: Dict[str, str] = {}

    def resolve(self, db: Session, actor: ActorRef) -> Tuple[str, Optional[str]]:
        if isinstance(actor, ByName):
            return actor.name.strip() or get_settings().system_actor_name, None

        if isinstance(actor, ById):
            cached = self._names.get(actor.user_id)
            if cached is not None:
                return cached, actor.user_id

            user = db.get(User, actor.user_id)
            if user is None:
                logger.warning(f"Actor {actor.user_id} not found; recording as unknown user")
                return get_settings().unknown_actor_name, actor.user_id

            name = (user.full_name or "").strip() or (user.email or "").strip() or get_settings().unknown_actor_name
            self._names[actor.user_id] = name
            return name, actor.user_id

        raise TypeError(f"Unsupported actor reference: {actor!r}")
