"""Sync queue schemas - Pydantic models for queue items"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...shared.time_utils import utcnow


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityKind(str, Enum):
    PATIENT = "patient"
    APPOINTMENT = "appointment"
    CALENDAR_LINK = "calendarLink"
    DAY_NOTE = "dayNote"


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    SYNCED = "synced"
    CONFLICT = "conflict"  # Reserved, never assigned


ACTIVE_STATUSES = (QueueStatus.PENDING, QueueStatus.PROCESSING)
TERMINAL_STATUSES = (QueueStatus.SYNCED, QueueStatus.FAILED)


class QueueItem(BaseModel):
    """One requested remote operation"""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    action: SyncAction
    entity_kind: EntityKind
    payload: dict[str, Any] = Field(default_factory=dict)
    status: QueueStatus = QueueStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    idempotency_key: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def entity_id(self) -> Optional[str]:
        value = self.payload.get("entityId")
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return str(value)
        return None


class QueueItemResponse(BaseModel):
    """Queue item as exposed over the API"""

    id: int
    action: str
    entityKind: str
    entityId: Optional[str] = None
    status: str
    retryCount: int
    lastError: Optional[str] = None
    nextRetryAt: Optional[datetime] = None
    idempotencyKey: Optional[str] = None

    @classmethod
    def from_item(cls, item: QueueItem) -> "QueueItemResponse":
        return cls(
            id=item.id,
            action=item.action.value,
            entityKind=item.entity_kind.value,
            entityId=item.entity_id,
            status=item.status.value,
            retryCount=item.retry_count,
            lastError=item.last_error,
            nextRetryAt=item.next_retry_at,
            idempotencyKey=item.idempotency_key,
        )
