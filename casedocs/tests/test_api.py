"""
API Contract Tests
==================

End-to-end through the FastAPI app with a fresh SQLite database per test.
"""

import os

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from casedocs.api import app
from casedocs.api_requirements import get_service
from casedocs.db.models import Contact, Lead, LegacyLead, Relationship, User
from casedocs.db.session import get_db_session, init_db, reset_engine
from casedocs.service import DocumentRequirementService
from casedocs.templates import NullTemplateCatalog


@pytest.fixture
def client(tmp_path):
    old_db_url = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = f"sqlite:///{tmp_path / 'api.db'}"
    reset_engine()
    init_db()

    service = DocumentRequirementService(catalog=NullTemplateCatalog())
    app.dependency_overrides[get_service] = lambda: service

    yield TestClient(app)

    app.dependency_overrides.clear()
    if old_db_url is not None:
        os.environ["DATABASE_URL"] = old_db_url
    else:
        os.environ.pop("DATABASE_URL", None)
    reset_engine()


@pytest.fixture
def seeded(client):
    with get_db_session() as db:
        lead = Lead(name="Cohen family")
        legacy = LegacyLead(id=300, name="Legacy family")
        user = User(id="33333333-3333-4333-8333-333333333333", full_name="Noa Bar")
        db.add_all([lead, legacy, user])
        db.flush()
        a = Contact(lead_id=lead.id, name="Avi", relationship_role=Relationship.MAIN_APPLICANT, is_main_applicant=True)
        b = Contact(lead_id=lead.id, name="Bella", relationship_role=Relationship.SPOUSE)
        db.add_all([a, b])
        db.flush()
        return {"case": lead.id, "legacy": "legacy_300", "a": a.id, "b": b.id, "user": user.id}


def _create(client, case_id, **body):
    response = client.post(f"/api/v1/cases/{case_id}/requirements", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_and_get(client, seeded):
    created = _create(client, seeded["case"], document_name="Visa", due_date="2025-03-01", document_type="legal")

    response = client.get(f"/api/v1/requirements/{created['id']}")
    assert response.status_code == 200
    data = response.json()
    assert data["due_date"] == "2025-03-01"
    assert data["status"] == "pending"
    assert data["document_type"] == "legal"
    assert data["case"] == {"schema": "current", "id": seeded["case"]}


def test_actor_headers(client, seeded):
    response = client.post(
        f"/api/v1/cases/{seeded['case']}/requirements",
        json={"document_name": "Visa"},
        headers={"X-User-Id": seeded["user"]},
    )
    assert response.json()["requested_by"] == "Noa Bar"

    response = client.post(
        f"/api/v1/cases/{seeded['case']}/requirements",
        json={"document_name": "Diploma"},
        headers={"X-User-Name": "Front Desk"},
    )
    assert response.json()["requested_by"] == "Front Desk"


def test_error_mapping(client, seeded):
    response = client.post(f"/api/v1/cases/{seeded['case']}/requirements", json={"document_name": ""})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = client.post("/api/v1/cases/legacy_999/requirements", json={"document_name": "Visa"})
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    response = client.get("/api/v1/requirements/does-not-exist")
    assert response.status_code == 404


def test_malformed_requests_use_validation_category(client, seeded):
    response = client.put("/api/v1/requirements/any-id/status", json={"reason": "no status"})
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "validation_error"
    assert data["errors"][0]["loc"] == ["body", "status"]

    response = client.post(f"/api/v1/cases/{seeded['case']}/requirements", json={"is_required": "maybe"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = client.delete(f"/api/v1/cases/{seeded['case']}/requirements")
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_contact_precedence(client, seeded):
    case_wide = _create(client, seeded["case"], document_name="Birth Certificate")
    override = _create(client, seeded["case"], document_name="Birth Certificate", contact_id=seeded["b"])

    a = client.get(f"/api/v1/contacts/{seeded['a']}/requirements").json()
    b = client.get(f"/api/v1/contacts/{seeded['b']}/requirements", params={"case_id": seeded["case"]}).json()

    assert [r["id"] for r in a] == [case_wide["id"]]
    assert [r["id"] for r in b] == [override["id"]]


def test_list_across_schemas(client, seeded):
    _create(client, seeded["case"], document_name="Visa")
    _create(client, seeded["legacy"], document_name="Visa")

    response = client.get("/api/v1/requirements", params=[("case_id", seeded["case"]), ("case_id", seeded["legacy"])])
    data = response.json()

    assert response.status_code == 200
    assert data["partial"] is False
    assert sorted(r["case"]["schema"] for r in data["requirements"]) == ["current", "legacy"]


def test_status_and_provenance_flow(client, seeded):
    req = _create(client, seeded["case"], document_name="Police Certificate", contact_id=seeded["a"])
    headers = {"X-User-Name": "Dana"}

    response = client.put(
        f"/api/v1/requirements/{req['id']}/provenance/requested_from",
        json={"value": "Ministry of Interior"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["history_recorded"] is True

    response = client.put(
        f"/api/v1/requirements/{req['id']}/status",
        json={"status": "received", "reason": "Original arrived"},
        headers=headers,
    )
    assert response.status_code == 200
    change = response.json()
    assert change["previous_status"] == "pending"
    assert change["requirement"]["received_date"] is not None

    history = client.get(f"/api/v1/requirements/{req['id']}/history").json()
    assert [h["field"] for h in history] == ["status", "requested_from"]
    assert all(h["changed_by"] == "Dana" for h in history)

    case_history = client.get(f"/api/v1/cases/{seeded['case']}/history").json()
    assert len(case_history) == 2

    completion = client.get(f"/api/v1/contacts/{seeded['a']}/completion").json()
    assert completion["percentage"] == 100

    response = client.put(f"/api/v1/requirements/{req['id']}/provenance/status", json={"value": "x"})
    assert response.status_code == 400


def test_patch_and_delete(client, seeded):
    req = _create(client, seeded["case"], document_name="Visa")

    response = client.patch(f"/api/v1/requirements/{req['id']}", json={"notes": "Apostille"})
    assert response.status_code == 200
    assert response.json()["notes"] == "Apostille"

    response = client.patch(f"/api/v1/requirements/{req['id']}", json={"status": "approved"})
    assert response.status_code == 400

    response = client.delete(f"/api/v1/requirements/{req['id']}")
    assert response.json() == {"id": req["id"], "deleted": True}
    assert client.get(f"/api/v1/requirements/{req['id']}").status_code == 404


def test_bulk_remove(client, seeded):
    _create(client, seeded["case"], document_name="Army Record")
    _create(client, seeded["case"], document_name="Army Record", contact_id=seeded["a"])
    _create(client, seeded["case"], document_name="Passport Copy")

    response = client.delete(f"/api/v1/cases/{seeded['case']}/requirements", params={"document_name": "Army Record"})
    assert response.json() == {"document_name": "Army Record", "deleted": 2}

    response = client.delete(f"/api/v1/cases/{seeded['case']}/requirements", params={"document_name": "Passport Copy"})
    assert response.status_code == 409
    assert response.json()["error"] == "conflict"

    remaining = client.get(f"/api/v1/cases/{seeded['case']}/requirements").json()["requirements"]
    assert [r["document_name"] for r in remaining] == ["Passport Copy"]


def test_defaults_and_counts(client, seeded):
    response = client.post(f"/api/v1/contacts/{seeded['b']}/requirements/defaults")
    assert response.status_code == 201
    assert {r["document_name"] for r in response.json()} == {"Passport Copy", "Birth Certificate", "Marriage Certificate"}

    response = client.get("/api/v1/requirements/missing-count", params={"case_id": seeded["case"]})
    assert response.json()["missing"] == 3

    completion = client.get(f"/api/v1/cases/{seeded['case']}/completion").json()
    assert completion == {
        "required": 3,
        "completed": 0,
        "percentage": 0,
        "contact_id": None,
        "case": {"schema": "current", "id": seeded["case"]},
    }

    response = client.get("/api/v1/requirements/due-soon", params={"case_id": seeded["case"], "days": 7})
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_legacy_case_over_async_client(client, seeded):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as http:
        response = await http.post(
            f"/api/v1/cases/{seeded['legacy']}/requirements",
            json={"document_name": "Army Record", "due_date": "2025-03-01"},
        )
        assert response.status_code == 201
        created = response.json()
        assert created["case"] == {"schema": "legacy", "id": "legacy_300"}

        response = await http.get(f"/api/v1/cases/{seeded['legacy']}/requirements")
        assert [r["id"] for r in response.json()["requirements"]] == [created["id"]]

        response = await http.get("/api/v1/cases/legacy_abc/requirements")
        assert response.status_code == 400
