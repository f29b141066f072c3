"""
Queue item state transitions

All functions are pure: they return an updated copy and never touch the store.
"""

import itertools
import secrets
import time
from datetime import datetime
from typing import NamedTuple, Optional

from ...shared.time_utils import utcnow
from .backoff import get_next_retry_at, should_stop_retrying
from .schemas import QueueItem, QueueStatus

_fallback_counter = itertools.count(1)


class QueueSnapshot(NamedTuple):
    ready: list[QueueItem]
    deferred: list[QueueItem]
    # Ready items left out because the batch was full
    overflow: list[QueueItem]


def is_ready(item: QueueItem, now: Optional[datetime] = None) -> bool:
    if item.status != QueueStatus.PENDING:
        return False
    if item.next_retry_at is None:
        return True
    return item.next_retry_at <= (now or utcnow())


def take_ready_batch(
    items: list[QueueItem], max_items: int, now: Optional[datetime] = None
) -> QueueSnapshot:
    """Split items into a capped ready batch and everything not yet ready"""
    now = now or utcnow()
    ready: list[QueueItem] = []
    deferred: list[QueueItem] = []
    overflow: list[QueueItem] = []

    for item in items:
        if not is_ready(item, now):
            deferred.append(item)
        elif len(ready) < max_items:
            ready.append(item)
        else:
            overflow.append(item)

    return QueueSnapshot(ready=ready, deferred=deferred, overflow=overflow)


def _generate_fallback_token() -> str:
    return f"{int(time.time() * 1000)}-{next(_fallback_counter)}-{secrets.token_hex(3)}"


def make_idempotency_key(item: QueueItem) -> str:
    if item.idempotency_key:
        return item.idempotency_key

    data_id = item.entity_id or _generate_fallback_token()
    return f"{item.entity_kind.value}:{item.action.value}:{data_id}"


def mark_processing(item: QueueItem) -> QueueItem:
    return item.model_copy(
        update={
            "status": QueueStatus.PROCESSING,
            "idempotency_key": make_idempotency_key(item),
        }
    )


def mark_success(item: QueueItem) -> QueueItem:
    return item.model_copy(
        update={
            "status": QueueStatus.SYNCED,
            "last_error": None,
            "next_retry_at": None,
        }
    )


def mark_failure(
    item: QueueItem, error_message: str, now: Optional[datetime] = None
) -> QueueItem:
    retry_count = item.retry_count + 1

    if should_stop_retrying(retry_count):
        return item.model_copy(
            update={
                "retry_count": retry_count,
                "status": QueueStatus.FAILED,
                "last_error": error_message,
                "next_retry_at": None,
            }
        )

    return item.model_copy(
        update={
            "retry_count": retry_count,
            "status": QueueStatus.PENDING,
            "last_error": error_message,
            "next_retry_at": get_next_retry_at(retry_count, now or utcnow()),
        }
    )
