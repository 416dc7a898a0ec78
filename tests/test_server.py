"""
Tests for the HTTP API.
"""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

FACULTY = ("bsmtCogniLab2026@gmail.com", "BSMT2026LIS")
MEDTECH = ("medtech@clinic.com", "password")


@pytest.fixture
def client(store, engine):
    from cognilab.auth import MockAuthProvider, reset_auth_provider, set_auth_provider
    from cognilab.db.repositories import UserRepository
    from cognilab.db.store import reset_store, set_store
    from cognilab.engines import reset_engine, set_engine
    from server import app

    set_store(store)
    set_engine(engine)
    set_auth_provider(MockAuthProvider(users=UserRepository(store), secret="test-secret"))
    try:
        yield TestClient(app)
    finally:
        reset_auth_provider()
        reset_engine()
        reset_store()


def _login(client, credentials):
    email, password = credentials
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def medtech_headers(client):
    return _login(client, MEDTECH)


@pytest.fixture
def faculty_headers(client):
    return _login(client, FACULTY)


class TestAuthEndpoints:
    """Test login, logout and the current user."""

    def test_login_is_audited(self, client, engine):
        _login(client, MEDTECH)

        entry = engine.audit.list()[0]
        assert entry.action.value == "login"
        assert entry.user_name == "MedTech User"
        assert entry.encryption_key == "ENC_KEY_001"
        assert engine.users.get("user-001").last_login is not None

    def test_bad_credentials(self, client):
        response = client.post("/api/auth/login", json={"email": MEDTECH[0], "password": "nope"})
        assert response.status_code == 401

    def test_me(self, client, faculty_headers):
        response = client.get("/api/auth/me", headers=faculty_headers)
        assert response.status_code == 200
        assert response.json()["role"] == "faculty"

    def test_requires_token(self, client):
        assert client.get("/api/patients").status_code == 401
        bogus = {"Authorization": "Bearer not-a-token"}
        assert client.get("/api/patients", headers=bogus).status_code == 401

    def test_logout_revokes_token(self, client, engine, medtech_headers):
        assert client.post("/api/auth/logout", headers=medtech_headers).status_code == 200
        assert client.get("/api/auth/me", headers=medtech_headers).status_code == 401
        assert engine.audit.list()[0].action.value == "logout"


class TestPatientEndpoints:
    """Test registration over HTTP."""

    def test_register(self, client, engine, medtech_headers, juan_form):
        response = client.post("/api/patients", json=juan_form, headers=medtech_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["contact_no"] == "+639171234567"
        assert [e.amount for e in engine.billing.list()] == [150]

    def test_validation_errors(self, client, medtech_headers):
        response = client.post("/api/patients", json={"first_name": "Juan"}, headers=medtech_headers)

        assert response.status_code == 422
        errors = response.json()["errors"]
        assert errors["patient_id_no"] == "Patient ID is required"
        assert "first_name" not in errors

    def test_duplicate_patient_id(self, client, medtech_headers, juan_form):
        client.post("/api/patients", json=juan_form, headers=medtech_headers)
        response = client.post("/api/patients", json=juan_form, headers=medtech_headers)

        assert response.status_code == 409
        assert response.json()["detail"] == "Patient ID already exists"

    def test_report_and_delete(self, client, engine, medtech_headers, juan_form):
        patient = client.post("/api/patients", json=juan_form, headers=medtech_headers).json()
        client.post("/api/results", json={
            "patient_name": patient["full_name"],
            "patient_id": patient["id"],
            "section": "CLINICAL CHEMISTRY",
            "test_name": "Blood Glucose",
            "result_value": "130",
        }, headers=medtech_headers)

        report = client.get(f"/api/patients/{patient['id']}/report?download=true", headers=medtech_headers)
        assert report.status_code == 200
        assert report.json()["abnormal_count"] == 1
        assert engine.audit.list()[0].action.value == "download"

        assert client.delete(f"/api/patients/{patient['id']}", headers=medtech_headers).status_code == 200
        assert client.get(f"/api/patients/{patient['id']}", headers=medtech_headers).status_code == 404
        assert engine.billing.list() == []


class TestResultEndpoints:
    """Test result entry and the status pipeline."""

    def _create(self, client, headers):
        response = client.post("/api/results", json={
            "patient_name": "Juan Dela Cruz",
            "section": "CLINICAL CHEMISTRY",
            "test_name": "Blood Glucose",
            "result_value": "95",
        }, headers=headers)
        assert response.status_code == 201
        return response.json()

    def test_create_bills_and_flags(self, client, engine, medtech_headers):
        result = self._create(client, medtech_headers)

        assert result["status"] == "pending"
        assert engine.billing.list()[0].amount == 250
        fetched = client.get(f"/api/results/{result['id']}", headers=medtech_headers).json()
        assert fetched["flag"] == "normal"

    def test_missing_fields(self, client, medtech_headers):
        response = client.post("/api/results", json={"patient_name": "Juan"}, headers=medtech_headers)
        assert response.status_code == 422
        assert set(response.json()["errors"]) == {"section", "test_name", "result_value"}

    def test_advance_to_released_then_refuse(self, client, medtech_headers):
        result = self._create(client, medtech_headers)
        url = f"/api/results/{result['id']}/advance"

        statuses = [client.post(url, headers=medtech_headers).json()["status"] for _ in range(4)]
        assert statuses == ["encoding", "for_verification", "approved", "released"]
        assert client.post(url, headers=medtech_headers).status_code == 409

    def test_skipping_a_stage_is_refused(self, client, medtech_headers):
        result = self._create(client, medtech_headers)
        response = client.patch(f"/api/results/{result['id']}", json={"status": "released"},
                                headers=medtech_headers)
        assert response.status_code == 409

    def test_panel(self, client, engine, medtech_headers):
        response = client.post("/api/results/panel", json={
            "patient_name": "Juan Dela Cruz",
            "section": "HEMATOLOGY",
            "parent_test": "CBC",
            "components": [
                {"test_name": "Neutrophils", "value": "60"},
                {"test_name": "Lymphocytes", "value": "30"},
            ],
        }, headers=medtech_headers)

        assert response.status_code == 201
        assert len(response.json()) == 2
        assert [(e.test_name, e.amount) for e in engine.billing.list()] == [("CBC", 400)]

    def test_unknown_result(self, client, medtech_headers):
        assert client.get("/api/results/missing", headers=medtech_headers).status_code == 404


class TestBillingEndpoints:
    """Test payment status and totals."""

    def test_mark_paid_and_summary(self, client, engine, medtech, medtech_headers):
        result = engine.results.create("Juan Dela Cruz", "CLINICAL CHEMISTRY", "Blood Glucose", "95",
                                       actor=medtech)

        response = client.patch(f"/api/billing/{result.billing_id}/status",
                                json={"status": "paid", "or_number": "OR-100"},
                                headers=medtech_headers)
        assert response.status_code == 200
        assert response.json()["or_number"] == "OR-100"

        summary = client.get("/api/billing/summary", headers=medtech_headers).json()
        assert summary["paid_count"] == 1
        assert summary["total_paid_amount"] == 250
        assert summary["total_count"] == 1

    def test_unknown_line(self, client, medtech_headers):
        response = client.patch("/api/billing/missing/status", json={"status": "paid"},
                                headers=medtech_headers)
        assert response.status_code == 404


class TestFacultyEndpoints:
    """Test the faculty-only user and audit views."""

    def test_members_are_refused(self, client, medtech_headers):
        assert client.get("/api/users", headers=medtech_headers).status_code == 403
        assert client.get("/api/audit-logs", headers=medtech_headers).status_code == 403

    def test_user_management(self, client, faculty_headers):
        listing = client.get("/api/users", headers=faculty_headers).json()
        assert listing["counts"] == {"faculty": 1, "member": 1}

        response = client.post("/api/users", json={
            "full_name": "New Tech",
            "email": "newtech@clinic.com",
            "role": "member",
            "department": "Serology",
        }, headers=faculty_headers)
        assert response.status_code == 201
        assert response.json()["encryption_key"].startswith("ENC_KEY_")

        response = client.post("/api/users", json={
            "full_name": "Second Faculty",
            "email": "second@clinic.com",
            "role": "faculty",
            "department": "Admin",
        }, headers=faculty_headers)
        assert response.status_code == 409

    def test_audit_logs_filtered(self, client, faculty_headers):
        response = client.get("/api/audit-logs", params={"action": "login"}, headers=faculty_headers)

        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["user_name"] == "BSMT Faculty Member"

        summary = client.get("/api/audit-logs/summary", headers=faculty_headers).json()
        assert summary["active_sessions"] == 1


class TestAuditStream:
    """Test the live audit event stream."""

    def test_stream_delivers_then_unsubscribes(self, engine, medtech):
        from server import audit_event_stream

        async def run():
            stream = audit_event_stream(engine.audit, limit=1)
            assert await stream.__anext__() == ": subscribed\n\n"
            assert engine.audit.subscriber_count == 1

            engine.audit.append("edit", resource="Juan", resource_type="test_result",
                                description="edited", actor=medtech)
            event = await stream.__anext__()
            with pytest.raises(StopAsyncIteration):
                await stream.__anext__()
            return event

        event = asyncio.run(run())
        assert event.startswith("event: audit\n")
        payload = json.loads(event.split("data: ", 1)[1])
        assert payload["description"] == "edited"
        assert engine.audit.subscriber_count == 0

    def test_closed_stream_unsubscribes(self, engine):
        from server import audit_event_stream

        async def run():
            stream = audit_event_stream(engine.audit)
            await stream.__anext__()
            await stream.aclose()

        asyncio.run(run())
        assert engine.audit.subscriber_count == 0


class TestPublicEndpoints:
    """Test endpoints that need no session."""

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["signed_in_as"] is None

    def test_health_names_signed_in_user(self, client, medtech_headers):
        body = client.get("/api/health", headers=medtech_headers).json()
        assert body["signed_in_as"] == "medtech@clinic.com"

        bogus = {"Authorization": "Bearer not-a-token"}
        assert client.get("/api/health", headers=bogus).json()["signed_in_as"] is None

    def test_classify(self, client):
        response = client.post("/api/classify", json={
            "section": "CLINICAL CHEMISTRY", "test_name": "Blood Glucose", "value": "120",
        })
        assert response.json() == {"flag": "high", "reference_range": "70 - 100"}

    def test_catalog(self, client):
        sections = client.get("/api/catalog").json()
        glucose = next(t for t in sections["CLINICAL CHEMISTRY"] if t["name"] == "Blood Glucose")
        assert glucose["price"] == 250
        assert glucose["unit"] == "mg/dL"
