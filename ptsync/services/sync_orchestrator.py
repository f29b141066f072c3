"""
Sync Orchestrator
Drives the sync cycle: push queued local changes, backfill unlinked
appointments, then pull the spreadsheet and calendar snapshots.

Pushing before pulling keeps a pull from reverting an edit that has not
reached the remote yet. All state (cooldowns, locks, listeners) lives on the
instance so several orchestrators can coexist under test.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from ..config import SyncSettings
from ..domain.appointments.repository import AppointmentRepository, CalendarLinkRepository
from ..domain.appointments.schemas import RecordSyncStatus
from ..domain.day_notes.repository import DayNoteRepository
from ..domain.patients.repository import PatientRepository
from ..domain.patients.schemas import DedupeResult
from ..domain.patients.service import PatientService
from ..domain.reconciliation.calendar import reconcile_calendar_events
from ..domain.reconciliation.snapshot import reconcile_snapshot
from ..domain.sync_queue.queue import (
    is_ready,
    make_idempotency_key,
    mark_failure,
    mark_processing,
    mark_success,
    take_ready_batch,
)
from ..domain.sync_queue.repository import SyncQueueRepository
from ..domain.sync_queue.schemas import EntityKind, QueueItem, QueueStatus, SyncAction
from ..exceptions import AuthUnavailableError, ConfigurationError, RemoteError, RemoteSchemaError
from ..schemas import CalendarReconcileResult, SnapshotResult
from ..shared.time_utils import utcnow
from .calendar_service import build_event_body, event_id_for_key

logger = logging.getLogger(__name__)

SYNC_COMPLETED = "sync-completed"
APPOINTMENTS_SYNCED = "appointments-synced"
PATIENTS_SYNCED = "patients-synced"

UNKNOWN_PATIENT_NAME = "Unknown"

Listener = Callable[[str, dict[str, Any]], Any]


class SyncState(BaseModel):
    """Observable state for the presentation layer"""

    is_syncing: bool = False
    pending_count: int = 0
    last_error: Optional[str] = None
    last_cycle_at: Optional[datetime] = None


class QueueRunResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class CycleResult(BaseModel):
    ran: bool = False
    queue: Optional[QueueRunResult] = None
    backfilled: Optional[int] = None
    patients: Optional[SnapshotResult] = None
    day_notes: Optional[SnapshotResult] = None
    calendar: Optional[CalendarReconcileResult] = None
    errors: list[str] = Field(default_factory=list)


def _cooldown_elapsed(stamps: dict[str, datetime], key: str, seconds: float, now: datetime) -> bool:
    last_run = stamps.get(key)
    return last_run is None or (now - last_run).total_seconds() >= seconds


class SyncOrchestrator:
    """Owns the sync cycle, the queue drain and the cooldown bookkeeping"""

    def __init__(
        self,
        session_factory: sessionmaker,
        auth,
        sheets,
        calendar,
        settings: Optional[SyncSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.auth = auth
        self.sheets = sheets
        self.calendar = calendar
        self.settings = settings or SyncSettings()
        self.clock = clock
        self.state = SyncState()

        self._cycle_running = False
        self._queue_running = False
        self._calendar_lock = asyncio.Lock()
        self._last_sheet_pull: dict[str, datetime] = {}
        self._last_backfill: dict[str, datetime] = {}
        self._listeners: list[Listener] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register callback(event_name, payload); returns an unsubscribe function"""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    async def _notify(self, event_name: str, payload: Optional[dict[str, Any]] = None) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(event_name, payload or {})
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"❌ Sync listener failed for {event_name}: {e}")

    def refresh_pending_count(self) -> int:
        with self.session_factory() as db:
            self.state.pending_count = SyncQueueRepository.count_pending(db)
        return self.state.pending_count

    # ------------------------------------------------------------------
    # Lifecycle and triggers
    # ------------------------------------------------------------------

    def recover(self) -> int:
        """Return items left in processing by a crash to pending"""
        with self.session_factory() as db:
            recovered = SyncQueueRepository.recover_processing(db)
        if recovered:
            logger.warning(f"⚠️ Recovered {recovered} queue items stuck in processing")
        self.refresh_pending_count()
        return recovered

    async def start(self) -> None:
        if self._loop_task and not self._loop_task.done():
            return
        self.recover()
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self.run_forever())
        logger.info(f"✅ Sync orchestrator started (every {self.settings.interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        for task in (self._drain_task, self._loop_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._drain_task = None
        logger.info("✅ Sync orchestrator stopped")

    async def run_forever(self) -> None:
        """Run a cycle now and then on every interval tick until stopped"""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def request_sync(self, force: bool = False) -> CycleResult:
        """Explicit "sync now"; force bypasses the spreadsheet cooldown"""
        return await self.run_cycle(force=force)

    async def on_focus(self) -> CycleResult:
        return await self.run_cycle()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _run_step(self, name: str, step: Awaitable, result: CycleResult):
        try:
            return await step
        except AuthUnavailableError:
            logger.info(f"ℹ️ Skipping {name}: not signed in")
        except Exception as e:
            message = f"{name} failed: {e}"
            logger.error(f"❌ {message}")
            self.state.last_error = message
            result.errors.append(message)
        return None

    async def run_cycle(self, force: bool = False) -> CycleResult:
        """One full cycle; never raises, a new request while running is a no-op"""
        if self._cycle_running:
            logger.info("ℹ️ Sync cycle already running, request ignored")
            return CycleResult(ran=False)

        self._cycle_running = True
        self.state.is_syncing = True
        result = CycleResult(ran=True)

        try:
            token = await self.auth.get_access_token()
            if not token or not self.auth.is_signed_in():
                logger.info("ℹ️ Not signed in, skipping remote sync this cycle")
                return result

            self.state.last_error = None
            logger.info("🔄 Sync cycle started")

            if self.refresh_pending_count() > 0:
                result.queue = await self._run_step("queue drain", self.process_queue(), result)

            result.backfilled = await self._run_step("appointment backfill", self.backfill_appointments(), result)

            result.patients = await self._run_step("patient pull", self.pull_patients(force=force), result)
            if result.patients is not None:
                result.day_notes = await self._run_step("day note pull", self.pull_day_notes(), result)

            result.calendar = await self._run_step("calendar pull", self.pull_calendar(), result)
        except Exception as e:
            # Reaching here means a bug outside the guarded steps
            logger.error(f"❌ Sync cycle aborted: {e}")
            self.state.last_error = str(e)
            result.errors.append(str(e))
        finally:
            self._cycle_running = False
            self.state.is_syncing = False
            self.state.last_cycle_at = self.clock()
            try:
                self.refresh_pending_count()
            except Exception as e:
                logger.error(f"❌ Failed to refresh pending count: {e}")

        await self._notify(SYNC_COMPLETED, {"errors": list(result.errors)})
        logger.info(f"✅ Sync cycle finished ({len(result.errors)} errors, {self.state.pending_count} pending)")
        return result

    # ------------------------------------------------------------------
    # Push: queue drain
    # ------------------------------------------------------------------

    async def process_queue(self) -> QueueRunResult:
        """Send one bounded batch of ready items; failures never abort the batch"""
        summary = QueueRunResult()
        if self._queue_running:
            return summary

        self._queue_running = True
        try:
            with self.session_factory() as db:
                pending = SyncQueueRepository.get_pending(db)
            batch = take_ready_batch(pending, self.settings.max_batch_size, self.clock())

            for item in batch.ready:
                with self.session_factory() as db:
                    item = SyncQueueRepository.save(db, mark_processing(item))

                try:
                    await self._process_item(item)
                except AuthUnavailableError:
                    # Not a delivery failure; leave it for the next signed-in cycle
                    with self.session_factory() as db:
                        SyncQueueRepository.save(db, item.model_copy(update={"status": QueueStatus.PENDING}))
                    logger.info("ℹ️ Lost authentication mid-batch, stopping queue drain")
                    break
                except Exception as e:
                    summary.processed += 1
                    summary.failed += 1
                    self._record_failure(item, e)
                    continue

                with self.session_factory() as db:
                    SyncQueueRepository.save(db, mark_success(item))
                summary.processed += 1
                summary.succeeded += 1

            with self.session_factory() as db:
                remaining = SyncQueueRepository.get_pending(db)
            if any(is_ready(i, self.clock()) for i in remaining):
                self.schedule_drain()
        finally:
            self._queue_running = False
            self.refresh_pending_count()

        if summary.processed:
            logger.info(f"📊 Queue batch: {summary.succeeded} synced, {summary.failed} failed")
        return summary

    def _record_failure(self, item: QueueItem, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        if isinstance(error, RemoteSchemaError):
            # Retrying an unparseable response will not help
            logger.warning(f"⚠️ Queue item {item.id} got an unexpected response: {message}")
            failed = item.model_copy(
                update={
                    "status": QueueStatus.FAILED,
                    "retry_count": item.retry_count + 1,
                    "last_error": message,
                    "next_retry_at": None,
                }
            )
        else:
            failed = mark_failure(item, message, self.clock())
            logger.error(
                f"❌ Queue item {item.id} ({item.entity_kind.value}:{item.action.value}) failed: {message}"
            )

        with self.session_factory() as db:
            SyncQueueRepository.save(db, failed)

    def schedule_drain(self) -> None:
        """Drain the queue shortly, coalescing with a drain already scheduled"""
        if self._drain_task and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_task = loop.create_task(self._drain_later())

    async def _drain_later(self) -> None:
        await asyncio.sleep(self.settings.batch_delay_seconds)
        try:
            await self.process_queue()
        except Exception as e:
            logger.error(f"❌ Follow-up queue drain failed: {e}")

    async def _process_item(self, item: QueueItem) -> None:
        handlers = {
            EntityKind.PATIENT: self._push_patient,
            EntityKind.APPOINTMENT: self._push_appointment,
            EntityKind.DAY_NOTE: self._push_day_note,
            EntityKind.CALENDAR_LINK: self._push_calendar_link,
        }
        await handlers[item.entity_kind](item)

    def _require_spreadsheet(self) -> str:
        if not self.settings.spreadsheet_id:
            raise ConfigurationError("Spreadsheet ID not configured")
        return self.settings.spreadsheet_id

    def _require_calendar(self) -> str:
        if not self.settings.calendar_id:
            raise ConfigurationError("Calendar ID not configured")
        return self.settings.calendar_id

    async def _push_patient(self, item: QueueItem) -> None:
        spreadsheet_id = self._require_spreadsheet()
        entity_id = item.entity_id
        if not entity_id:
            logger.warning(f"⚠️ Patient queue item {item.id} has no entity id")
            return

        if item.action == SyncAction.DELETE:
            await self.sheets.delete_patients_by_ids(spreadsheet_id, [entity_id])
            return

        with self.session_factory() as db:
            patient = PatientRepository.get(db, entity_id)
            record = PatientRepository.to_record(patient) if patient else None
        if record is None:
            logger.info(f"ℹ️ Patient {entity_id} no longer exists locally, nothing to push")
            return
        await self.sheets.upsert_patient(spreadsheet_id, record)

    async def _push_day_note(self, item: QueueItem) -> None:
        spreadsheet_id = self._require_spreadsheet()
        entity_id = item.entity_id
        if not entity_id:
            logger.warning(f"⚠️ Day note queue item {item.id} has no entity id")
            return

        if item.action == SyncAction.DELETE:
            await self.sheets.delete_day_notes_by_ids(spreadsheet_id, [entity_id])
            return

        with self.session_factory() as db:
            note = DayNoteRepository.get(db, entity_id)
            if note is not None:
                db.expunge(note)
        if note is None:
            return
        await self.sheets.upsert_day_note(spreadsheet_id, note)

    async def _push_calendar_link(self, item: QueueItem) -> None:
        calendar_id = self._require_calendar()
        event_id = item.payload.get("calendarEventId") or item.entity_id
        if not event_id:
            return

        await self.calendar.delete_event(calendar_id, event_id)
        with self.session_factory() as db:
            CalendarLinkRepository.delete(db, event_id)

    def _event_body(self, db: Session, appointment) -> dict[str, Any]:
        patient = PatientRepository.get(db, appointment.patient_id)
        return build_event_body(
            appointment,
            patient.full_name if patient else UNKNOWN_PATIENT_NAME,
            patient.address if patient else None,
            patient.phone if patient else None,
            self.settings.timezone,
        )

    def _link_appointment(self, db: Session, appointment_id: str, event_id: str, calendar_id: str) -> None:
        appointment = AppointmentRepository.get(db, appointment_id)
        if appointment is not None:
            AppointmentRepository.update(
                db,
                appointment,
                commit=False,
                calendar_event_id=event_id,
                sync_status=RecordSyncStatus.SYNCED.value,
            )
        CalendarLinkRepository.upsert(db, event_id, appointment_id, calendar_id, commit=False)
        db.commit()

    async def _push_appointment(self, item: QueueItem) -> None:
        calendar_id = self._require_calendar()
        entity_id = item.entity_id
        if not entity_id:
            return

        if item.action == SyncAction.DELETE:
            await self._delete_appointment_event(item, calendar_id, entity_id)
            return

        with self.session_factory() as db:
            appointment = AppointmentRepository.get(db, entity_id)
            if appointment is None:
                logger.info(f"ℹ️ Appointment {entity_id} no longer exists locally, nothing to push")
                return
            body = self._event_body(db, appointment)

            known_event_id = None
            if item.action == SyncAction.UPDATE:
                link = None
                if appointment.calendar_event_id:
                    link = CalendarLinkRepository.get(db, appointment.calendar_event_id)
                if link is None:
                    links = CalendarLinkRepository.by_appointment(db, entity_id)
                    link = links[0] if links else None
                known_event_id = link.google_event_id if link else None

        if known_event_id:
            await self.calendar.update_event(calendar_id, known_event_id, body)
            event_id = known_event_id
        else:
            # Create, or recover an update whose link row is missing
            event_id = await self.calendar.create_event(
                calendar_id, body, event_id=event_id_for_key(make_idempotency_key(item))
            )

        with self.session_factory() as db:
            self._link_appointment(db, entity_id, event_id, calendar_id)

    async def _delete_appointment_event(self, item: QueueItem, calendar_id: str, entity_id: str) -> None:
        with self.session_factory() as db:
            links = CalendarLinkRepository.by_appointment(db, entity_id)
            appointment = AppointmentRepository.get(db, entity_id)
            event_id = (
                item.payload.get("calendarEventId")
                or (links[0].google_event_id if links else None)
                or (appointment.calendar_event_id if appointment else None)
            )

        if event_id:
            await self.calendar.delete_event(calendar_id, event_id)

        with self.session_factory() as db:
            if event_id:
                CalendarLinkRepository.delete(db, event_id, commit=False)
            CalendarLinkRepository.delete_for_appointment(db, entity_id, commit=False)
            db.commit()

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    def _calendar_window(self, now: datetime) -> tuple[datetime, datetime]:
        return (
            now - timedelta(days=self.settings.lookback_days),
            now + timedelta(days=self.settings.lookahead_days),
        )

    def _local_date(self, value: datetime):
        tz = ZoneInfo(self.settings.timezone)
        return value.replace(tzinfo=ZoneInfo("UTC")).astimezone(tz).date()

    async def backfill_appointments(self) -> Optional[int]:
        """Create calendar events for appointments that were never linked"""
        calendar_id = self.settings.calendar_id
        if not calendar_id:
            return None

        now = self.clock()
        if not _cooldown_elapsed(self._last_backfill, calendar_id, self.settings.backfill_cooldown_seconds, now):
            return None

        time_min, time_max = self._calendar_window(now)
        date_min = self._local_date(time_min).isoformat()
        date_max = self._local_date(time_max).isoformat()

        with self.session_factory() as db:
            appointment_ids = [a.id for a in AppointmentRepository.by_date_range(db, date_min, date_max)]
            queued_ids = SyncQueueRepository.pending_entity_ids(db, EntityKind.APPOINTMENT)

        changed = 0
        for appointment_id in appointment_ids:
            if appointment_id in queued_ids:
                continue

            with self.session_factory() as db:
                appointment = AppointmentRepository.get(db, appointment_id)
                if appointment is None:
                    continue
                links = CalendarLinkRepository.by_appointment(db, appointment_id)
                known_event_id = appointment.calendar_event_id or (links[0].google_event_id if links else None)

                if known_event_id:
                    if (
                        appointment.calendar_event_id != known_event_id
                        or appointment.sync_status != RecordSyncStatus.SYNCED.value
                    ):
                        AppointmentRepository.update(
                            db,
                            appointment,
                            calendar_event_id=known_event_id,
                            sync_status=RecordSyncStatus.SYNCED.value,
                        )
                        changed += 1
                    continue

                body = self._event_body(db, appointment)

            try:
                event_id = await self.calendar.create_event(
                    calendar_id,
                    body,
                    event_id=event_id_for_key(
                        f"{EntityKind.APPOINTMENT.value}:{SyncAction.CREATE.value}:{appointment_id}"
                    ),
                )
            except RemoteError as e:
                logger.error(f"❌ Backfill of appointment {appointment_id} failed: {e}")
                continue

            with self.session_factory() as db:
                self._link_appointment(db, appointment_id, event_id, calendar_id)
            changed += 1

        self._last_backfill[calendar_id] = now
        if changed:
            logger.info(f"✅ Backfilled {changed} appointments to calendar {calendar_id}")
            await self._notify(APPOINTMENTS_SYNCED, {"backfilled": changed})
        return changed

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull_patients(self, force: bool = False) -> Optional[SnapshotResult]:
        spreadsheet_id = self.settings.spreadsheet_id
        if not spreadsheet_id:
            return None

        now = self.clock()
        if not force and not _cooldown_elapsed(
            self._last_sheet_pull, spreadsheet_id, self.settings.sheets_cooldown_seconds, now
        ):
            return None

        patients = await self.sheets.fetch_patients(spreadsheet_id)
        with self.session_factory() as db:
            result = reconcile_snapshot(db, spreadsheet_id, patients, EntityKind.PATIENT)

        self._last_sheet_pull[spreadsheet_id] = now
        await self._notify(PATIENTS_SYNCED, result.model_dump())
        return result

    async def pull_day_notes(self) -> Optional[SnapshotResult]:
        """Day notes live on the same spreadsheet; runs only right after a patient pull"""
        spreadsheet_id = self.settings.spreadsheet_id
        if not spreadsheet_id:
            return None

        notes = await self.sheets.fetch_day_notes(spreadsheet_id)
        with self.session_factory() as db:
            return reconcile_snapshot(db, spreadsheet_id, notes, EntityKind.DAY_NOTE)

    async def pull_calendar(self) -> Optional[CalendarReconcileResult]:
        calendar_id = self.settings.calendar_id
        if not calendar_id:
            return None

        if self._calendar_lock.locked():
            logger.info("ℹ️ Calendar pull already running, skipping")
            return None

        async with self._calendar_lock:
            time_min, time_max = self._calendar_window(self.clock())
            events = await self.calendar.list_events(calendar_id, time_min, time_max)

            with self.session_factory() as db:
                result = reconcile_calendar_events(
                    db,
                    calendar_id,
                    events,
                    time_min,
                    time_max,
                    ZoneInfo(self.settings.timezone),
                )

        if result.upserted or result.deleted:
            await self._notify(APPOINTMENTS_SYNCED, result.model_dump())
        if result.importedPatients:
            await self._notify(PATIENTS_SYNCED, {"importedPatients": result.importedPatients})
        return result

    # ------------------------------------------------------------------
    # Explicit interventions
    # ------------------------------------------------------------------

    def retry_failed(self, item_id: int) -> Optional[QueueItem]:
        """Re-enqueue a terminally failed item"""
        with self.session_factory() as db:
            item = SyncQueueRepository.reset_failed(db, item_id)
        if item:
            logger.info(f"🔄 Queue item {item_id} re-enqueued")
            self.refresh_pending_count()
        return item

    def list_queue(self, status: Optional[QueueStatus] = None) -> list[QueueItem]:
        with self.session_factory() as db:
            return SyncQueueRepository.list_items(db, status)

    async def dedupe_patients(self) -> DedupeResult:
        with self.session_factory() as db:
            result = PatientService(db, self.settings).dedupe_and_enqueue()
        self.refresh_pending_count()
        if result.removedIds:
            await self._notify(PATIENTS_SYNCED, result.model_dump())
        return result
