"""
API tests for the patient, appointment and sync endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from ptsync.domain.sync_queue.queue import mark_processing
from ptsync.domain.sync_queue.repository import SyncQueueRepository
from ptsync.domain.sync_queue.schemas import EntityKind, QueueStatus, SyncAction
from ptsync.main import create_app
from ptsync.services.sync_orchestrator import SyncOrchestrator


@pytest.fixture
def client(session_factory, auth, fake_sheets, fake_calendar, settings, clock):
    orchestrator = SyncOrchestrator(
        session_factory, auth, fake_sheets, fake_calendar, settings, clock=clock
    )
    app = create_app(orchestrator=orchestrator, start_sync=False)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_root_and_health(self, client):
        assert client.get("/").status_code == 200
        assert client.get("/health").json() == {"status": "healthy"}


class TestPatientRoutes:
    def test_create_enqueues_a_push(self, client):
        response = client.post("/patients", json={"fullName": "Mary Smith", "phone": "555-111-2222"})

        assert response.status_code == 200
        patient = response.json()
        assert patient["fullName"] == "Mary Smith"
        assert patient["status"] == "active"

        queue = client.get("/sync/queue").json()
        assert [(i["entityKind"], i["action"], i["entityId"]) for i in queue] == [
            ("patient", "create", patient["id"])
        ]

    def test_lifecycle_transitions(self, client):
        patient_id = client.post("/patients", json={"fullName": "Mary Smith"}).json()["id"]

        assert client.post(f"/patients/{patient_id}/discharge").json()["status"] == "discharged"
        other = client.post(f"/patients/{patient_id}/for-other-pt").json()
        assert other["status"] == "for-other-pt"
        assert other["forOtherPtAt"] is not None
        assert client.post(f"/patients/{patient_id}/reactivate").json()["status"] == "active"

        listed = client.get("/patients", params={"status": "active"}).json()
        assert [p["id"] for p in listed] == [patient_id]

    def test_unknown_patient_is_404(self, client):
        assert client.get("/patients/nope").status_code == 404
        assert client.patch("/patients/nope", json={"notes": "x"}).status_code == 404
        assert client.delete("/patients/nope").status_code == 404

    def test_blank_name_is_rejected(self, client):
        assert client.post("/patients", json={"fullName": "   "}).status_code == 422


class TestAppointmentRoutes:
    def test_create_and_list_by_date_range(self, client):
        patient_id = client.post("/patients", json={"fullName": "Mary Smith"}).json()["id"]

        created = client.post(
            "/appointments",
            json={"patientId": patient_id, "date": "2025-03-12", "startTime": "09:00", "visitType": "pt11"},
        )

        assert created.status_code == 200
        assert created.json()["visitType"] == "PT11"
        assert created.json()["syncStatus"] == "pending"
        listed = client.get("/appointments", params={"start": "2025-03-10", "end": "2025-03-16"}).json()
        assert [a["id"] for a in listed] == [created.json()["id"]]

    def test_bad_date_range_is_400(self, client):
        response = client.get("/appointments", params={"start": "03/10/2025", "end": "2025-03-16"})
        assert response.status_code == 400

    def test_unknown_visit_type_is_422(self, client):
        response = client.post(
            "/appointments",
            json={"patientId": "p1", "date": "2025-03-12", "startTime": "09:00", "visitType": "XX99"},
        )
        assert response.status_code == 422


class TestDayNoteRoutes:
    def test_create_and_move(self, client):
        note = client.post("/day-notes", json={"date": "2025-03-12", "text": "Car service"}).json()

        moved = client.post(f"/day-notes/{note['id']}/move", json={"date": "2025-03-13", "startMinutes": 540})

        assert moved.status_code == 200
        assert (moved.json()["date"], moved.json()["startMinutes"]) == ("2025-03-13", 540)


class TestSyncRoutes:
    def test_status_reports_configuration_and_pending(self, client):
        client.post("/patients", json={"fullName": "Mary Smith"})

        status = client.get("/sync/status").json()

        assert status["pending_count"] == 1
        assert status["spreadsheetConfigured"] is True
        assert status["calendarConfigured"] is True
        assert status["is_syncing"] is False

    def test_run_pushes_then_pulls(self, client, fake_sheets):
        client.post("/patients", json={"fullName": "Mary Smith"})

        result = client.post("/sync/run").json()

        assert result["ran"] is True
        assert result["queue"]["succeeded"] == 1
        assert fake_sheets.call_names()[:2] == ["upsert_patient", "fetch_patients"]
        assert client.get("/sync/queue", params={"status": "synced"}).json()[0]["status"] == "synced"

    def test_retry_of_failed_item(self, client, db):
        item = SyncQueueRepository.enqueue(db, SyncAction.UPDATE, EntityKind.PATIENT, {"entityId": "p1"})
        SyncQueueRepository.save(
            db,
            mark_processing(item).model_copy(update={"status": QueueStatus.FAILED, "retry_count": 5}),
        )

        response = client.post(f"/sync/queue/{item.id}/retry")

        assert response.status_code == 200
        assert (response.json()["status"], response.json()["retryCount"]) == ("pending", 0)
        assert client.post("/sync/queue/9999/retry").status_code == 404

    def test_pending_item_cannot_be_retried(self, client, db):
        item = SyncQueueRepository.enqueue(db, SyncAction.UPDATE, EntityKind.PATIENT, {"entityId": "p1"})

        assert client.post(f"/sync/queue/{item.id}/retry").status_code == 404

    def test_dedupe_merges_duplicates(self, client):
        client.post("/patients", json={"fullName": "Mary Smith", "phone": "555-111-2222"})
        client.post("/patients", json={"fullName": "MARY smith", "phone": "+1 555 111 2222"})

        result = client.post("/sync/patients/dedupe").json()

        assert result["removed"] == 1
        assert len(client.get("/patients").json()) == 1
