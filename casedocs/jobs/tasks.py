"""
Job Tasks
=========

Background task implementations. Tasks take plain, serializable arguments
so RQ can pickle them.
"""

import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)


def task_append_history(entry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append a deferred history entry.

    Idempotent on entry_uid: if a previous attempt already landed the entry,
    nothing is written. Storage failures propagate so RQ retries the job.

    Args:
        entry: Serialized history entry (see audit.build_entry)

    Returns:
        Dict with entry_uid and whether a row was written
    """
    from ..db.models import DocumentRequestHistory
    from ..db.session import get_db_session

    entry_uid = entry["entry_uid"]
    with get_db_session() as db:
        exists = (
            db.query(DocumentRequestHistory.id)
            .filter(DocumentRequestHistory.entry_uid == entry_uid)
            .first()
        )
        if exists:
            logger.info(f"History entry {entry_uid} already recorded; skipping")
            return {"entry_uid": entry_uid, "written": False}

        db.add(DocumentRequestHistory.from_entry(entry))

    logger.info(f"Deferred history entry {entry_uid} recorded for requirement {entry.get('document_id')}")
    return {"entry_uid": entry_uid, "written": True}
