"""
Completion Tests
================
"""

import os

import pytest

from casedocs.completion import CompletionAggregator, percentage, summarize
from casedocs.db.models import Contact, Lead, LegacyLead, Relationship
from casedocs.db.session import get_db_session, init_db, reset_engine
from casedocs.errors import NotFoundError, ValidationError
from casedocs.service import DocumentRequirementService
from casedocs.templates import NullTemplateCatalog


@pytest.fixture
def sqlalchemy_db(tmp_path):
    """Configure a fresh SQLAlchemy SQLite DB for tests."""
    old_db_url = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = f"sqlite:///{tmp_path / 'completion.db'}"
    reset_engine()
    init_db()

    yield

    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def seeded(sqlalchemy_db):
    with get_db_session() as db:
        lead = Lead(name="Cohen family")
        legacy = LegacyLead(id=12, name="Legacy family")
        db.add_all([lead, legacy])
        db.flush()
        a = Contact(lead_id=lead.id, name="Avi", relationship_role=Relationship.MAIN_APPLICANT, is_main_applicant=True)
        b = Contact(lead_id=lead.id, name="Bella", relationship_role=Relationship.SPOUSE)
        db.add_all([a, b])
        db.flush()
        return {"case": lead.id, "legacy": "legacy_12", "a": a.id, "b": b.id}


@pytest.fixture
def service():
    return DocumentRequirementService(catalog=NullTemplateCatalog())


class TestPercentage:
    def test_zero_required_is_zero(self):
        assert percentage(0, 0) == 0

    def test_rounding(self):
        assert percentage(1, 3) == 33
        assert percentage(2, 3) == 67
        assert percentage(1, 8) == 13
        assert percentage(3, 3) == 100

    def test_summarize_empty(self):
        result = summarize([])
        assert (result.required, result.completed, result.percentage) == (0, 0, 0)


class TestPerContact:
    @pytest.mark.asyncio
    async def test_no_requirements(self, seeded, service):
        result = await service.compute_completion(contact=seeded["a"])
        assert (result.required, result.completed, result.percentage) == (0, 0, 0)
        assert result.case.id == seeded["case"]
        assert result.case.schema_.value == "current"

    @pytest.mark.asyncio
    async def test_counts_effective_requirements(self, seeded, service):
        birth = await service.create_requirement({"case_id": seeded["case"], "document_name": "Birth Certificate"})
        passport_b = await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["b"], "document_name": "Passport Copy",
        })
        await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["b"], "document_name": "Birth Certificate",
        })
        await service.update_status(birth.id, "approved")
        await service.update_status(passport_b.id, "received")

        a = await service.compute_completion(contact=seeded["a"])
        b = await service.compute_completion(contact=seeded["b"])

        # A sees the approved case-wide record
        assert (a.required, a.completed, a.percentage) == (1, 1, 100)
        # B's own pending Birth Certificate overrides the approved case-wide one
        assert (b.required, b.completed, b.percentage) == (2, 1, 50)
        assert b.contact_id == seeded["b"]

    @pytest.mark.asyncio
    async def test_optional_requirements_count_like_any_other(self, seeded, service):
        cv = await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["a"], "document_name": "CV", "is_required": False,
        })
        await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["a"], "document_name": "Visa",
        })
        await service.update_status(cv.id, "received")

        result = await service.compute_completion(contact=seeded["a"])
        assert (result.required, result.completed, result.percentage) == (2, 1, 50)

    @pytest.mark.asyncio
    async def test_unknown_contact(self, seeded, service):
        with pytest.raises(NotFoundError):
            await service.compute_completion(contact="nobody")


class TestPerCase:
    @pytest.mark.asyncio
    async def test_case_wide_counted_once(self, seeded, service):
        birth = await service.create_requirement({"case_id": seeded["case"], "document_name": "Birth Certificate"})
        await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["a"], "document_name": "Police Certificate",
        })
        visa_b = await service.create_requirement({
            "case_id": seeded["case"], "contact_id": seeded["b"], "document_name": "Visa",
        })
        await service.update_status(birth.id, "received")
        await service.update_status(visa_b.id, "rejected")

        result = await service.compute_completion(case=seeded["case"])

        assert (result.required, result.completed, result.percentage) == (3, 1, 33)
        assert result.case.id == seeded["case"]

    @pytest.mark.asyncio
    async def test_recomputed_on_every_read(self, seeded, service):
        req = await service.create_requirement({"case_id": seeded["legacy"], "document_name": "Visa"})
        before = await service.compute_completion(case=seeded["legacy"])
        await service.update_status(req.id, "approved")
        after = await service.compute_completion(case=seeded["legacy"])

        assert before.percentage == 0
        assert after.percentage == 100
        assert after.case.schema_.value == "legacy"

    @pytest.mark.asyncio
    async def test_unknown_case(self, seeded):
        aggregator = CompletionAggregator()
        with pytest.raises(NotFoundError):
            await aggregator.per_case("legacy_404")

    @pytest.mark.asyncio
    async def test_exactly_one_scope(self, seeded, service):
        with pytest.raises(ValidationError):
            await service.compute_completion()
        with pytest.raises(ValidationError):
            await service.compute_completion(contact=seeded["a"], case=seeded["case"])
