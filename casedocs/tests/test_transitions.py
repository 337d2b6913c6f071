"""
Status Transition Tests
=======================
"""

import os
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from casedocs.audit import AuditRecorder
from casedocs.db.models import (
    Contact, DocumentRequestHistory, DocumentStatus, Lead, ProvenanceField, Relationship, RequiredDocument,
)
from casedocs.db.session import get_db_session, init_db, reset_engine
from casedocs.errors import NotFoundError, StoreError, ValidationError
from casedocs.store import RequirementStore
from casedocs.templates import NullTemplateCatalog
from casedocs.transitions import ALLOWED_TRANSITIONS, StatusTransitionEngine, parse_status, plan_transition


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    old_db_url = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = f"sqlite:///{tmp_path / 'transitions.db'}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def case_with_spouse(sqlalchemy_db):
    with get_db_session() as db:
        lead = Lead(name="Cohen family")
        db.add(lead)
        db.flush()
        spouse = Contact(lead_id=lead.id, name="Bella", relationship_role=Relationship.SPOUSE)
        db.add(spouse)
        db.flush()
        return lead.id, spouse.id


@pytest.fixture
def engine():
    return StatusTransitionEngine(AuditRecorder())


async def _create(case_id, contact_id=None, name="Birth Certificate"):
    store = RequirementStore(catalog=NullTemplateCatalog())
    return await store.create({"case_id": case_id, "contact_id": contact_id, "document_name": name})


class TestPlanTransition:
    def test_every_status_may_move_to_every_status(self):
        for source in DocumentStatus:
            assert ALLOWED_TRANSITIONS[source] == frozenset(DocumentStatus)

    def test_received_stamps_once(self):
        now = datetime(2025, 3, 1, 12, 0)
        plan = plan_transition(DocumentStatus.PENDING, DocumentStatus.RECEIVED, None, None, now)
        assert plan.changes == {"status": DocumentStatus.RECEIVED, "received_date": now}

        earlier = datetime(2025, 2, 1)
        plan = plan_transition(DocumentStatus.REJECTED, DocumentStatus.RECEIVED, earlier, None, now)
        assert plan.changes == {"status": DocumentStatus.RECEIVED}

    def test_approved_stamps_once(self):
        now = datetime(2025, 3, 1, 12, 0)
        plan = plan_transition(DocumentStatus.RECEIVED, DocumentStatus.APPROVED, now, None, now)
        assert plan.changes["approved_date"] == now
        assert "received_date" not in plan.changes

    def test_other_statuses_do_not_stamp(self):
        now = datetime(2025, 3, 1)
        for target in (DocumentStatus.MISSING, DocumentStatus.PENDING, DocumentStatus.REJECTED):
            plan = plan_transition(DocumentStatus.APPROVED, target, None, None, now)
            assert plan.changes == {"status": target}
            assert plan.previous == DocumentStatus.APPROVED

    def test_parse_status(self):
        assert parse_status(" Received ") == DocumentStatus.RECEIVED
        with pytest.raises(ValidationError):
            parse_status("lost")


class TestSetStatus:
    @pytest.mark.asyncio
    async def test_received_then_approved(self, case_with_spouse, engine):
        lead_id, spouse_id = case_with_spouse
        req = await _create(lead_id, spouse_id)

        first = await engine.set_status(req.id, "received")
        second = await engine.set_status(req.id, "approved")

        assert first.previous_status == DocumentStatus.PENDING
        assert second.previous_status == DocumentStatus.RECEIVED
        final = second.requirement
        assert final.status == DocumentStatus.APPROVED
        assert final.received_date == first.requirement.received_date
        assert final.approved_date is not None

    @pytest.mark.asyncio
    async def test_received_twice_keeps_first_stamp(self, case_with_spouse, engine):
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)

        first = await engine.set_status(req.id, DocumentStatus.RECEIVED)
        second = await engine.set_status(req.id, DocumentStatus.RECEIVED)

        assert first.requirement.received_date is not None
        assert second.requirement.received_date == first.requirement.received_date
        assert second.previous_status == DocumentStatus.RECEIVED

    @pytest.mark.asyncio
    async def test_approved_can_move_back(self, case_with_spouse, engine):
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)

        await engine.set_status(req.id, "approved")
        back = await engine.set_status(req.id, "missing")

        assert back.previous_status == DocumentStatus.APPROVED
        assert back.requirement.status == DocumentStatus.MISSING
        assert back.requirement.approved_date is not None

    @pytest.mark.asyncio
    async def test_status_change_is_recorded(self, case_with_spouse, engine):
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)

        change = await engine.set_status(req.id, "received", actor="Dana", reason="Scanned copy arrived")
        assert change.history_recorded is True

        history = await engine.recorder.get_history(requirement_id=req.id)
        assert len(history) == 1
        entry = history[0]
        assert entry.field == ProvenanceField.STATUS
        assert entry.old_value == "pending"
        assert entry.new_value == "received"
        assert entry.changed_by == "Dana"
        assert entry.change_reason == "Scanned copy arrived"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, case_with_spouse, engine):
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)
        with pytest.raises(ValidationError):
            await engine.set_status(req.id, "lost")

    @pytest.mark.asyncio
    async def test_missing_requirement(self, sqlalchemy_db, engine):
        with pytest.raises(NotFoundError):
            await engine.set_status("missing-id", "received")


def _stored(requirement_id):
    with get_db_session() as db:
        row = db.get(RequiredDocument, requirement_id)
        history = db.query(DocumentRequestHistory).filter(DocumentRequestHistory.document_id == requirement_id).count()
        return row.status, row.received_date, history


class TestStatusWriteIsOneUnit:
    @pytest.mark.asyncio
    async def test_history_failure_still_lands_status_with_its_stamp(self, case_with_spouse):
        deferred = []

        def enqueue(entry):
            deferred.append(entry)
            return {"job_id": f"history-{entry['entry_uid']}", "status": "queued"}

        engine = StatusTransitionEngine(AuditRecorder(enqueue=enqueue))
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)

        with patch.object(
            AuditRecorder, "_append_history",
            side_effect=OperationalError("INSERT", {}, Exception("history table locked")),
        ):
            change = await engine.set_status(req.id, "received")

        assert change.history_recorded is False
        assert change.retry["status"] == "queued"
        assert change.requirement.status == DocumentStatus.RECEIVED
        assert change.requirement.received_date is not None

        status, received_date, history = _stored(req.id)
        assert status == DocumentStatus.RECEIVED
        assert received_date is not None
        assert history == 0
        assert len(deferred) == 1
        assert deferred[0]["new_value"] == "received"

    @pytest.mark.asyncio
    async def test_failed_write_changes_neither_status_nor_stamp(self, case_with_spouse):
        deferred = []
        engine = StatusTransitionEngine(AuditRecorder(enqueue=deferred.append))
        lead_id, _ = case_with_spouse
        req = await _create(lead_id)

        with patch.object(
            AuditRecorder, "_apply",
            side_effect=OperationalError("UPDATE", {}, Exception("database down")),
        ):
            with pytest.raises(StoreError):
                await engine.set_status(req.id, "received")

        status, received_date, history = _stored(req.id)
        assert status == DocumentStatus.PENDING
        assert received_date is None
        assert history == 0
        assert deferred == []
