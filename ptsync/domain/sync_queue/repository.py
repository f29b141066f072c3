"""Sync queue repository - Database operations for queue items"""

from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import SyncQueueRecord
from ...shared.time_utils import utcnow
from .schemas import ACTIVE_STATUSES, EntityKind, QueueItem, QueueStatus, SyncAction


def _status_values(statuses) -> list[str]:
    return [status.value for status in statuses]


class SyncQueueRepository:
    """Repository for sync queue database operations"""

    @staticmethod
    def to_item(record: SyncQueueRecord) -> QueueItem:
        return QueueItem.model_validate(record)

    @staticmethod
    def enqueue(
        db: Session,
        action: SyncAction,
        entity_kind: EntityKind,
        payload: dict[str, Any],
        commit: bool = True,
    ) -> QueueItem:
        """Append a pending item to the queue"""
        record = SyncQueueRecord(
            action=SyncAction(action).value,
            entity_kind=EntityKind(entity_kind).value,
            payload=dict(payload),
            status=QueueStatus.PENDING.value,
            retry_count=0,
            created_at=utcnow(),
        )
        db.add(record)
        if commit:
            db.commit()
            db.refresh(record)
        else:
            db.flush()
        return SyncQueueRepository.to_item(record)

    @staticmethod
    def get(db: Session, item_id: int) -> Optional[QueueItem]:
        record = db.query(SyncQueueRecord).filter(SyncQueueRecord.id == item_id).first()
        return SyncQueueRepository.to_item(record) if record else None

    @staticmethod
    def list_items(db: Session, status: Optional[QueueStatus] = None) -> list[QueueItem]:
        """List queue items in enqueue order, optionally filtered by status"""
        query = db.query(SyncQueueRecord)
        if status:
            query = query.filter(SyncQueueRecord.status == QueueStatus(status).value)
        return [SyncQueueRepository.to_item(r) for r in query.order_by(SyncQueueRecord.id).all()]

    @staticmethod
    def get_pending(db: Session) -> list[QueueItem]:
        """All pending items (ready or waiting on backoff) in enqueue order"""
        return SyncQueueRepository.list_items(db, QueueStatus.PENDING)

    @staticmethod
    def save(db: Session, item: QueueItem) -> QueueItem:
        """Write an item's mutable state back to its row"""
        record = db.query(SyncQueueRecord).filter(SyncQueueRecord.id == item.id).first()
        if record is None:
            raise LookupError(f"Queue item {item.id} not found")

        record.status = item.status.value
        record.retry_count = item.retry_count
        record.last_error = item.last_error
        record.next_retry_at = item.next_retry_at
        record.idempotency_key = item.idempotency_key
        record.payload = dict(item.payload)

        db.commit()
        db.refresh(record)
        return SyncQueueRepository.to_item(record)

    @staticmethod
    def count_pending(db: Session) -> int:
        """Count items not yet in a terminal state"""
        return (
            db.query(func.count(SyncQueueRecord.id))
            .filter(SyncQueueRecord.status.in_(_status_values(ACTIVE_STATUSES)))
            .scalar()
        ) or 0

    @staticmethod
    def pending_entity_ids(db: Session, entity_kind: EntityKind) -> set[str]:
        """Entity ids referenced by pending or processing items of one kind"""
        records = (
            db.query(SyncQueueRecord)
            .filter(
                SyncQueueRecord.entity_kind == EntityKind(entity_kind).value,
                SyncQueueRecord.status.in_(_status_values(ACTIVE_STATUSES)),
            )
            .all()
        )
        ids = set()
        for record in records:
            entity_id = SyncQueueRepository.to_item(record).entity_id
            if entity_id:
                ids.add(entity_id)
        return ids

    @staticmethod
    def recover_processing(db: Session) -> int:
        """Return items stuck in processing (crash mid-flight) to pending"""
        count = (
            db.query(SyncQueueRecord)
            .filter(SyncQueueRecord.status == QueueStatus.PROCESSING.value)
            .update({SyncQueueRecord.status: QueueStatus.PENDING.value}, synchronize_session=False)
        )
        db.commit()
        return count

    @staticmethod
    def reset_failed(db: Session, item_id: int) -> Optional[QueueItem]:
        """Re-enqueue a terminally failed item for another full set of attempts"""
        record = (
            db.query(SyncQueueRecord)
            .filter(
                SyncQueueRecord.id == item_id,
                SyncQueueRecord.status == QueueStatus.FAILED.value,
            )
            .first()
        )
        if record is None:
            return None

        record.status = QueueStatus.PENDING.value
        record.retry_count = 0
        record.next_retry_at = None
        record.last_error = None
        db.commit()
        db.refresh(record)
        return SyncQueueRepository.to_item(record)
