"""
Tests for the sync orchestrator: cycle ordering, queue draining, backfill,
cooldowns, locking and listeners.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeCalendar, FakeSheets
from ptsync.domain.appointments.repository import AppointmentRepository, CalendarLinkRepository
from ptsync.domain.appointments.schemas import AppointmentCreate, AppointmentUpdate
from ptsync.domain.appointments.service import AppointmentService
from ptsync.domain.day_notes.schemas import DayNoteCreate
from ptsync.domain.day_notes.service import DayNoteService
from ptsync.domain.patients.repository import PatientRepository
from ptsync.domain.patients.schemas import PatientCreate, PatientRecord, PatientUpdate
from ptsync.domain.patients.service import PatientService
from ptsync.domain.sync_queue.queue import mark_processing
from ptsync.domain.sync_queue.repository import SyncQueueRepository
from ptsync.domain.sync_queue.schemas import EntityKind, QueueStatus, SyncAction
from ptsync.exceptions import AuthUnavailableError, RemoteSchemaError, TransientRemoteError
from ptsync.schemas import CALENDAR_METADATA_KEYS, RemoteCalendarEvent, SheetPatient
from ptsync.services.calendar_service import event_id_for_key
from ptsync.services.google_auth import StaticTokenProvider
from ptsync.services.sync_orchestrator import SyncOrchestrator


def queue_items(db, status=None):
    db.expire_all()
    return SyncQueueRepository.list_items(db, status)


def queue_statuses(db):
    return [item.status for item in queue_items(db)]


class TestCycle:
    @pytest.mark.asyncio
    async def test_not_signed_in_skips_remote_work(self, session_factory, fake_sheets, fake_calendar, settings, clock):
        orchestrator = SyncOrchestrator(
            session_factory, StaticTokenProvider(None), fake_sheets, fake_calendar, settings, clock=clock
        )

        result = await orchestrator.run_cycle()

        assert result.ran
        assert result.errors == []
        assert fake_sheets.calls == []
        assert fake_calendar.calls == []
        assert orchestrator.state.last_error is None

    @pytest.mark.asyncio
    async def test_push_runs_before_pull(self, orchestrator, db, settings, fake_sheets):
        patient = PatientService(db, settings).create_patient(PatientCreate(fullName="Mary Smith"))

        result = await orchestrator.run_cycle()

        assert fake_sheets.call_names()[:2] == ["upsert_patient", "fetch_patients"]
        assert result.queue.succeeded == 1
        assert queue_statuses(db) == [QueueStatus.SYNCED]
        assert orchestrator.state.pending_count == 0
        # First snapshot never deletes, so the unpushed-then-pushed patient stays
        assert PatientRepository.get(db, patient.id) is not None

    @pytest.mark.asyncio
    async def test_failing_step_does_not_stop_later_steps(self, orchestrator, fake_sheets, fake_calendar):
        fake_sheets.fail_with = TransientRemoteError("Sheets API error (503)", status_code=503)

        result = await orchestrator.run_cycle()

        assert result.errors == ["patient pull failed: Sheets API error (503)"]
        assert orchestrator.state.last_error == "patient pull failed: Sheets API error (503)"
        assert "list_events" in fake_calendar.call_names()
        assert result.calendar is not None

    @pytest.mark.asyncio
    async def test_last_error_clears_on_next_cycle(self, orchestrator, fake_sheets):
        fake_sheets.fail_with = TransientRemoteError("down")
        await orchestrator.run_cycle()
        fake_sheets.fail_with = None

        await orchestrator.run_cycle(force=True)

        assert orchestrator.state.last_error is None

    @pytest.mark.asyncio
    async def test_overlapping_cycle_request_is_a_no_op(self, session_factory, auth, fake_calendar, settings, clock):
        class BlockingSheets(FakeSheets):
            def __init__(self):
                super().__init__()
                self.entered = asyncio.Event()
                self.release = asyncio.Event()

            async def fetch_patients(self, spreadsheet_id):
                self.entered.set()
                await self.release.wait()
                return await super().fetch_patients(spreadsheet_id)

        sheets = BlockingSheets()
        orchestrator = SyncOrchestrator(session_factory, auth, sheets, fake_calendar, settings, clock=clock)

        first = asyncio.create_task(orchestrator.run_cycle())
        await sheets.entered.wait()
        second = await orchestrator.run_cycle()

        assert second.ran is False
        assert orchestrator.state.is_syncing
        sheets.release.set()
        assert (await first).ran
        assert not orchestrator.state.is_syncing

    @pytest.mark.asyncio
    async def test_calendar_pull_has_its_own_lock(self, session_factory, auth, fake_sheets, settings, clock):
        class BlockingCalendar(FakeCalendar):
            def __init__(self):
                super().__init__()
                self.entered = asyncio.Event()
                self.release = asyncio.Event()

            async def list_events(self, calendar_id, time_min, time_max):
                self.entered.set()
                await self.release.wait()
                return await super().list_events(calendar_id, time_min, time_max)

        calendar = BlockingCalendar()
        orchestrator = SyncOrchestrator(session_factory, auth, fake_sheets, calendar, settings, clock=clock)

        first = asyncio.create_task(orchestrator.pull_calendar())
        await calendar.entered.wait()

        assert await orchestrator.pull_calendar() is None
        calendar.release.set()
        assert (await first) is not None
        assert calendar.call_names() == ["list_events"]

    @pytest.mark.asyncio
    async def test_listeners_are_notified(self, orchestrator, fake_calendar):
        events = []
        remove = orchestrator.add_listener(lambda name, payload: events.append(name))
        fake_calendar.events.clear()

        await orchestrator.run_cycle()
        remove()
        await orchestrator.run_cycle(force=True)

        assert events.count("sync-completed") == 1
        assert "patients-synced" in events

    @pytest.mark.asyncio
    async def test_failing_listener_is_contained(self, orchestrator):
        def broken(name, payload):
            raise RuntimeError("listener bug")

        orchestrator.add_listener(broken)

        result = await orchestrator.run_cycle()

        assert result.errors == []


class TestQueueDrain:
    def enqueue_patients(self, db, count):
        for i in range(count):
            PatientRepository.put(db, PatientRecord(id=f"p{i}", full_name=f"Patient {i}"))
            SyncQueueRepository.enqueue(db, SyncAction.CREATE, EntityKind.PATIENT, {"entityId": f"p{i}"})

    @pytest.mark.asyncio
    async def test_batch_is_bounded(self, orchestrator, db, fake_sheets):
        self.enqueue_patients(db, 7)

        summary = await orchestrator.process_queue()

        assert summary.processed == 5
        assert len(fake_sheets.calls) == 5
        assert orchestrator.state.pending_count == 2

    @pytest.mark.asyncio
    async def test_item_failure_does_not_abort_batch(self, orchestrator, db, fake_sheets):
        self.enqueue_patients(db, 1)
        # Appointment items need a calendar; this one also has no row to push
        SyncQueueRepository.enqueue(db, SyncAction.CREATE, EntityKind.APPOINTMENT, {})
        self.enqueue_patients(db, 2)
        orchestrator.settings = orchestrator.settings.model_copy(update={"calendar_id": ""})

        summary = await orchestrator.process_queue()

        assert (summary.succeeded, summary.failed) == (3, 1)
        failed = queue_items(db, QueueStatus.PENDING)
        assert [i.last_error for i in failed] == ["Calendar ID not configured"]

    @pytest.mark.asyncio
    async def test_transient_failure_backs_off_then_retries(self, orchestrator, db, fake_sheets, clock):
        self.enqueue_patients(db, 1)
        fake_sheets.fail_with = TransientRemoteError("Sheets API error (503)")

        await orchestrator.process_queue()
        item = queue_items(db)[0]
        assert item.status == QueueStatus.PENDING
        assert item.retry_count == 1
        assert item.next_retry_at == clock.now + timedelta(seconds=60)

        fake_sheets.fail_with = None
        assert (await orchestrator.process_queue()).processed == 0

        clock.advance(61)
        assert (await orchestrator.process_queue()).succeeded == 1
        assert queue_statuses(db) == [QueueStatus.SYNCED]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_until_re_enqueued(self, orchestrator, db, fake_sheets, clock):
        self.enqueue_patients(db, 1)
        fake_sheets.fail_with = TransientRemoteError("down")

        for _ in range(5):
            await orchestrator.process_queue()
            clock.advance(3601)

        item = queue_items(db)[0]
        assert item.status == QueueStatus.FAILED
        assert item.next_retry_at is None
        assert orchestrator.state.pending_count == 0

        fake_sheets.fail_with = None
        assert orchestrator.retry_failed(item.id).status == QueueStatus.PENDING
        await orchestrator.process_queue()
        assert queue_statuses(db) == [QueueStatus.SYNCED]

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_not_retried(self, orchestrator, db, fake_sheets):
        self.enqueue_patients(db, 1)
        fake_sheets.fail_with = RemoteSchemaError("Sheets read: response is not JSON")

        await orchestrator.process_queue()

        item = queue_items(db)[0]
        assert item.status == QueueStatus.FAILED
        assert item.last_error == "Sheets read: response is not JSON"

    @pytest.mark.asyncio
    async def test_lost_auth_is_not_a_failure(self, orchestrator, db, fake_sheets):
        self.enqueue_patients(db, 2)
        fake_sheets.fail_with = AuthUnavailableError("Not authenticated")

        summary = await orchestrator.process_queue()

        assert summary.processed == 0
        items = queue_items(db)
        assert [(i.status, i.retry_count) for i in items] == [(QueueStatus.PENDING, 0)] * 2
        assert len(fake_sheets.calls) == 1

    @pytest.mark.asyncio
    async def test_recover_returns_processing_items(self, orchestrator, db):
        self.enqueue_patients(db, 1)
        item = queue_items(db)[0]
        SyncQueueRepository.save(db, mark_processing(item))

        assert orchestrator.recover() == 1
        assert queue_statuses(db) == [QueueStatus.PENDING]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, fake_sheets, fake_calendar, settings, clock, db):
        self.enqueue_patients(db, 1)
        SyncQueueRepository.save(db, mark_processing(SyncQueueRepository.list_items(db)[0]))
        orchestrator = SyncOrchestrator(
            session_factory, StaticTokenProvider(None), fake_sheets, fake_calendar, settings, clock=clock
        )

        await orchestrator.start()
        await asyncio.sleep(0)
        await orchestrator.stop()

        assert queue_statuses(db) == [QueueStatus.PENDING]
        assert orchestrator.state.pending_count == 1
        assert fake_sheets.calls == []


class TestEntityPush:
    @pytest.mark.asyncio
    async def test_appointment_lifecycle(self, orchestrator, db, settings, fake_calendar):
        PatientRepository.put(
            db, PatientRecord(id="p1", full_name="Mary Smith", phone="+15551112222", address="12 Oak St")
        )
        service = AppointmentService(db, settings)
        appointment = service.create_appointment(
            AppointmentCreate(patientId="p1", date="2025-03-12", startTime="09:00", duration=45)
        )
        assert appointment.sync_status == "pending"

        await orchestrator.process_queue()
        db.expire_all()
        appointment = AppointmentRepository.get(db, appointment.id)
        assert appointment.sync_status == "synced"
        assert appointment.calendar_event_id == "evt-1"
        assert CalendarLinkRepository.get(db, "evt-1").appointment_id == appointment.id
        body = fake_calendar.bodies["evt-1"]
        assert body["summary"] == "PT: Mary Smith"
        assert body["location"] == "12 Oak St"
        assert body["start"] == {"dateTime": "2025-03-12T09:00:00", "timeZone": "America/New_York"}
        assert body["end"]["dateTime"] == "2025-03-12T09:45:00"

        service.update_appointment(appointment.id, AppointmentUpdate(startTime="10:00"))
        await orchestrator.process_queue()
        assert fake_calendar.calls[-1] == ("update_event", "evt-1")

        db.expire_all()
        service.delete_appointment(appointment.id)
        await orchestrator.process_queue()
        assert fake_calendar.calls[-1] == ("delete_event", "evt-1")
        assert CalendarLinkRepository.by_appointment(db, appointment.id) == []
        assert orchestrator.state.pending_count == 0

    @pytest.mark.asyncio
    async def test_retried_create_requests_the_same_event_id(self, orchestrator, db, settings, fake_calendar, clock):
        PatientRepository.put(db, PatientRecord(id="p1", full_name="Mary Smith"))
        appointment = AppointmentService(db, settings).create_appointment(
            AppointmentCreate(patientId="p1", date="2025-03-12", startTime="09:00")
        )
        appointment_id = appointment.id
        fake_calendar.fail_with = TransientRemoteError("Calendar API error (503)", status_code=503)

        await orchestrator.process_queue()
        fake_calendar.fail_with = None
        clock.advance(61)
        await orchestrator.process_queue()

        [item] = queue_items(db)
        assert item.status == QueueStatus.SYNCED
        assert item.idempotency_key == f"appointment:create:{appointment_id}"
        expected = event_id_for_key(item.idempotency_key)
        assert fake_calendar.requested_ids == [expected, expected]

    @pytest.mark.asyncio
    async def test_update_without_link_recreates_event(self, orchestrator, db, fake_calendar):
        AppointmentRepository.put(db, id="a1", patient_id="p1", date="2025-03-12", start_time="09:00")
        SyncQueueRepository.enqueue(db, SyncAction.UPDATE, EntityKind.APPOINTMENT, {"entityId": "a1"})

        await orchestrator.process_queue()

        assert fake_calendar.call_names() == ["create_event"]
        assert fake_calendar.bodies["evt-1"]["summary"] == "PT: Unknown"

    @pytest.mark.asyncio
    async def test_missing_entity_counts_as_done(self, orchestrator, db, fake_sheets):
        SyncQueueRepository.enqueue(db, SyncAction.UPDATE, EntityKind.PATIENT, {"entityId": "ghost"})

        summary = await orchestrator.process_queue()

        assert summary.succeeded == 1
        assert fake_sheets.calls == []

    @pytest.mark.asyncio
    async def test_patient_delete_and_day_note_push(self, orchestrator, db, settings, fake_sheets):
        SyncQueueRepository.enqueue(db, SyncAction.DELETE, EntityKind.PATIENT, {"entityId": "p1"})
        note = DayNoteService(db, settings).create_note(DayNoteCreate(date="2025-03-12", text="Car service"))

        await orchestrator.process_queue()

        assert fake_sheets.calls == [
            ("delete_patients_by_ids", ["p1"]),
            ("upsert_day_note", note.id),
        ]

    @pytest.mark.asyncio
    async def test_calendar_link_delete(self, orchestrator, db, fake_calendar):
        CalendarLinkRepository.upsert(db, "evt-9", "a1", "cal-1")
        SyncQueueRepository.enqueue(
            db, SyncAction.DELETE, EntityKind.CALENDAR_LINK, {"entityId": "evt-9", "calendarEventId": "evt-9"}
        )

        await orchestrator.process_queue()

        assert fake_calendar.calls == [("delete_event", "evt-9")]
        db.expire_all()
        assert CalendarLinkRepository.get(db, "evt-9") is None


class TestBackfill:
    @pytest.mark.asyncio
    async def test_unlinked_appointments_get_events(self, orchestrator, db, fake_calendar):
        AppointmentRepository.put(db, id="a1", patient_id="p1", date="2025-03-12", start_time="09:00")
        AppointmentRepository.put(db, id="far", patient_id="p1", date="2027-01-01", start_time="09:00")

        assert await orchestrator.backfill_appointments() == 1

        db.expire_all()
        appointment = AppointmentRepository.get(db, "a1")
        assert appointment.sync_status == "synced"
        assert appointment.calendar_event_id == "evt-1"
        assert AppointmentRepository.get(db, "far").calendar_event_id is None

    @pytest.mark.asyncio
    async def test_known_link_is_reused(self, orchestrator, db, fake_calendar):
        AppointmentRepository.put(db, id="a1", patient_id="p1", date="2025-03-12", start_time="09:00")
        CalendarLinkRepository.upsert(db, "evt-7", "a1", "cal-1")

        assert await orchestrator.backfill_appointments() == 1

        assert fake_calendar.calls == []
        db.expire_all()
        assert AppointmentRepository.get(db, "a1").calendar_event_id == "evt-7"

    @pytest.mark.asyncio
    async def test_queued_appointments_are_left_to_the_queue(self, orchestrator, db, fake_calendar):
        AppointmentRepository.put(db, id="a1", patient_id="p1", date="2025-03-12", start_time="09:00")
        SyncQueueRepository.enqueue(db, SyncAction.CREATE, EntityKind.APPOINTMENT, {"entityId": "a1"})

        assert await orchestrator.backfill_appointments() == 0
        assert fake_calendar.calls == []

    @pytest.mark.asyncio
    async def test_cooldown_per_calendar(self, orchestrator, db, fake_calendar, clock):
        assert await orchestrator.backfill_appointments() == 0
        AppointmentRepository.put(db, id="a1", patient_id="p1", date="2025-03-12", start_time="09:00")

        assert await orchestrator.backfill_appointments() is None
        clock.advance(300)
        assert await orchestrator.backfill_appointments() == 1


class TestPull:
    @pytest.mark.asyncio
    async def test_sheet_pull_respects_cooldown_unless_forced(self, orchestrator, fake_sheets, clock):
        await orchestrator.run_cycle()
        await orchestrator.run_cycle()
        assert fake_sheets.call_names().count("fetch_patients") == 1

        await orchestrator.run_cycle(force=True)
        assert fake_sheets.call_names().count("fetch_patients") == 2

        clock.advance(900)
        await orchestrator.run_cycle()
        assert fake_sheets.call_names().count("fetch_patients") == 3

    @pytest.mark.asyncio
    async def test_day_notes_follow_patient_pull(self, orchestrator, fake_sheets):
        await orchestrator.run_cycle()
        await orchestrator.run_cycle()

        assert fake_sheets.call_names().count("fetch_day_notes") == 1

    @pytest.mark.asyncio
    async def test_cooldowns_are_per_instance(self, session_factory, auth, fake_sheets, fake_calendar, settings, clock):
        first = SyncOrchestrator(session_factory, auth, fake_sheets, fake_calendar, settings, clock=clock)
        second = SyncOrchestrator(session_factory, auth, fake_sheets, fake_calendar, settings, clock=clock)

        await first.run_cycle()
        await second.run_cycle()

        assert fake_sheets.call_names().count("fetch_patients") == 2

    @pytest.mark.asyncio
    async def test_calendar_pull_imports_events(self, orchestrator, db, fake_calendar):
        from conftest import event_from_body

        body = {
            "summary": "PT: John Doe",
            "start": {"dateTime": "2025-03-14T13:00:00", "timeZone": "America/New_York"},
            "end": {"dateTime": "2025-03-14T14:00:00", "timeZone": "America/New_York"},
            "extendedProperties": {"private": {}},
        }
        fake_calendar.events["remote-1"] = event_from_body("remote-1", body)
        events = []
        orchestrator.add_listener(lambda name, payload: events.append(name))

        result = await orchestrator.pull_calendar()

        assert result.upserted == 1
        appointment = AppointmentRepository.get(db, "gcal-remote-1")
        assert (appointment.date, appointment.start_time) == ("2025-03-14", "13:00")
        assert PatientRepository.get(db, "gcal-patient-john-doe") is not None
        assert events == ["appointments-synced", "patients-synced"]


    @pytest.mark.asyncio
    async def test_calendar_pull_keeps_appointment_before_window_start(
        self, session_factory, auth, fake_sheets, settings, clock, db
    ):
        class WindowedCalendar(FakeCalendar):
            async def list_events(self, calendar_id, time_min, time_max):
                self._record("list_events", calendar_id)
                lower = time_min.replace(tzinfo=timezone.utc)
                upper = time_max.replace(tzinfo=timezone.utc)
                return [e for e in self.events.values() if e.end > lower and e.start < upper]

        calendar = WindowedCalendar()
        orchestrator = SyncOrchestrator(session_factory, auth, fake_sheets, calendar, settings, clock=clock)
        PatientRepository.put(db, PatientRecord(id="p1", full_name="Mary Smith"))
        # The window opens at 10:00 New York time on 2025-02-08
        AppointmentRepository.put(
            db,
            id="a1",
            patient_id="p1",
            date="2025-02-08",
            start_time="08:00",
            duration=45,
            sync_status="synced",
            calendar_event_id="evt-early",
        )
        CalendarLinkRepository.upsert(db, "evt-early", "a1", "cal-1")
        calendar.events["evt-early"] = RemoteCalendarEvent(
            google_event_id="evt-early",
            summary="PT: Mary Smith",
            start=datetime(2025, 2, 8, 13, 0, tzinfo=timezone.utc),
            end=datetime(2025, 2, 8, 13, 45, tzinfo=timezone.utc),
        )

        result = await orchestrator.pull_calendar()

        assert result.deleted == 0
        db.expire_all()
        assert AppointmentRepository.get(db, "a1") is not None
        assert CalendarLinkRepository.get(db, "evt-early") is not None


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_push_then_remote_delete_propagates(self, orchestrator, db, settings, fake_sheets):
        patient = PatientService(db, settings).create_patient(
            PatientCreate(fullName="Mary Smith", phone="555-111-2222")
        )
        patient_id = patient.id
        assert orchestrator.refresh_pending_count() == 1

        await orchestrator.run_cycle()
        assert orchestrator.state.pending_count == 0
        assert queue_statuses(db) == [QueueStatus.SYNCED]

        # The sheet now carries the pushed row
        fake_sheets.patients = [SheetPatient(id=patient_id, full_name="Mary Smith", phone="+15551112222")]
        await orchestrator.run_cycle(force=True)
        db.expire_all()
        assert PatientRepository.get(db, patient_id) is not None

        # Someone removes the row from the sheet
        fake_sheets.patients = []
        await orchestrator.run_cycle(force=True)
        db.expire_all()
        assert PatientRepository.get(db, patient_id) is None

    @pytest.mark.asyncio
    async def test_failed_push_keeps_local_edit_through_pull(self, orchestrator, db, settings, fake_sheets, clock):
        PatientRepository.put(db, PatientRecord(id="p1", full_name="Mary Smith", address="1 Old St"))
        fake_sheets.patients = [SheetPatient(id="p1", full_name="Mary Smith", address="1 Old St")]
        PatientService(db, settings).update_patient("p1", PatientUpdate(address="99 New Ave"))
        fake_sheets.failures["upsert_patient"] = TransientRemoteError("Sheets API error (503)", status_code=503)

        await orchestrator.run_cycle()

        db.expire_all()
        assert PatientRepository.get(db, "p1").address == "99 New Ave"
        [item] = queue_items(db)
        assert (item.status, item.retry_count) == (QueueStatus.PENDING, 1)

        fake_sheets.failures.clear()
        fake_sheets.patients = [SheetPatient(id="p1", full_name="Mary Smith", address="99 New Ave")]
        clock.advance(61)
        await orchestrator.run_cycle(force=True)

        db.expire_all()
        assert PatientRepository.get(db, "p1").address == "99 New Ave"
        assert queue_statuses(db) == [QueueStatus.SYNCED]

    @pytest.mark.asyncio
    async def test_dedupe_enqueues_sheet_changes(self, orchestrator, db, fake_sheets):
        PatientRepository.put(db, PatientRecord(id="p1", full_name="Mary Smith", phone="5551112222"))
        PatientRepository.put(db, PatientRecord(id="p2", full_name="Mary Smith", phone="+1 555 111 2222"))

        result = await orchestrator.dedupe_patients()

        assert len(result.removedIds) == 1
        assert orchestrator.state.pending_count == 2
        await orchestrator.process_queue()
        assert sorted(fake_sheets.call_names()) == ["delete_patients_by_ids", "upsert_patient"]

    @pytest.mark.asyncio
    async def test_merged_patient_stays_merged_after_calendar_pull(self, orchestrator, db, settings, fake_calendar):
        PatientRepository.put(
            db, PatientRecord(id="p1", full_name="Mary Smith", phone="5551112222", created_at=datetime(2025, 1, 1))
        )
        PatientRepository.put(
            db, PatientRecord(id="p2", full_name="Mary Smith", phone="+1 555 111 2222", created_at=datetime(2025, 2, 1))
        )
        appointment = AppointmentService(db, settings).create_appointment(
            AppointmentCreate(patientId="p2", date="2025-03-12", startTime="09:00")
        )
        appointment_id = appointment.id
        await orchestrator.process_queue()
        patient_key = CALENDAR_METADATA_KEYS["patient_id"]
        assert fake_calendar.bodies["evt-1"]["extendedProperties"]["private"][patient_key] == "p2"

        result = await orchestrator.dedupe_patients()

        assert result.removedIds == ["p2"]
        assert result.movedAppointmentIds == [appointment_id]
        db.expire_all()
        assert AppointmentRepository.get(db, appointment_id).sync_status == "pending"
        assert [(i.entity_kind, i.action) for i in queue_items(db, QueueStatus.PENDING)] == [
            (EntityKind.PATIENT, SyncAction.DELETE),
            (EntityKind.PATIENT, SyncAction.UPDATE),
            (EntityKind.APPOINTMENT, SyncAction.UPDATE),
        ]

        await orchestrator.run_cycle()
        await orchestrator.run_cycle(force=True)

        db.expire_all()
        assert PatientRepository.get(db, "p2") is None
        moved = AppointmentRepository.get(db, appointment_id)
        assert (moved.patient_id, moved.sync_status) == ("p1", "synced")
        assert fake_calendar.bodies["evt-1"]["extendedProperties"]["private"][patient_key] == "p1"
