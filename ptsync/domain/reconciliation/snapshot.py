"""
Snapshot reconciliation for sheet-backed entities

Every remote record is upserted locally unless its id has an unsynced queue
item, in which case the local edit wins until it is pushed. A local record is
deleted only when its id was tracked on the previous pass, is missing from
this snapshot and has no unsynced queue item. The tracked id set is then
replaced wholesale.
"""

import logging
from typing import Callable, Sequence, Union

from sqlalchemy.orm import Session

from ...schemas import SheetDayNote, SheetPatient, SnapshotResult
from ..day_notes.repository import DayNoteRepository
from ..day_notes.schemas import normalize_color
from ..patients.repository import PatientRepository
from ..sync_queue.repository import SyncQueueRepository
from ..sync_queue.schemas import EntityKind
from .repository import TrackedIdRepository

logger = logging.getLogger(__name__)

RemoteRecord = Union[SheetPatient, SheetDayNote]


def _upsert_patient(db: Session, remote: SheetPatient) -> None:
    existing = PatientRepository.get(db, remote.id)
    existing_record = PatientRepository.to_record(existing) if existing else None
    PatientRepository.put(db, remote.to_record(existing_record), commit=False)


def _upsert_day_note(db: Session, remote: SheetDayNote) -> None:
    DayNoteRepository.put(
        db,
        commit=False,
        id=remote.id,
        date=remote.date,
        text=remote.text,
        color=normalize_color(remote.color),
        start_minutes=remote.start_minutes,
    )


_HANDLERS: dict[EntityKind, tuple[Callable, Callable]] = {
    EntityKind.PATIENT: (_upsert_patient, PatientRepository.delete),
    EntityKind.DAY_NOTE: (_upsert_day_note, DayNoteRepository.delete),
}


def reconcile_snapshot(
    db: Session,
    owner_key: str,
    remote_records: Sequence[RemoteRecord],
    entity_kind: EntityKind,
) -> SnapshotResult:
    """Apply a full remote snapshot for one owner key and entity kind"""
    entity_kind = EntityKind(entity_kind)
    if entity_kind not in _HANDLERS:
        raise ValueError(f"Snapshot reconciliation does not support {entity_kind.value}")
    upsert, delete = _HANDLERS[entity_kind]

    try:
        pending_ids = SyncQueueRepository.pending_entity_ids(db, entity_kind)

        upserted = 0
        skipped = 0
        for record in remote_records:
            if record.id.strip() in pending_ids:
                logger.info(f"ℹ️ Keeping local {entity_kind.value} {record.id}: unpushed edit still queued")
                skipped += 1
                continue
            upsert(db, record)
            upserted += 1

        current_ids = {record.id.strip() for record in remote_records if record.id and record.id.strip()}
        previously_tracked = TrackedIdRepository.read(db, owner_key, entity_kind)

        deleted = 0
        for entity_id in sorted(previously_tracked - current_ids):
            if entity_id in pending_ids:
                logger.info(f"ℹ️ Keeping {entity_kind.value} {entity_id}: local change still queued")
                continue
            if delete(db, entity_id, commit=False):
                deleted += 1

        TrackedIdRepository.replace(db, owner_key, entity_kind, current_ids, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise

    result = SnapshotResult(upserted=upserted, skipped=skipped, deleted=deleted)
    logger.info(
        f"📊 Reconciled {entity_kind.value} snapshot for {owner_key}: "
        f"{result.upserted} upserted, {result.skipped} skipped, {result.deleted} deleted"
    )
    return result
