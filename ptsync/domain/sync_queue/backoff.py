"""
Retry backoff policy for failed queue items

Uses a fixed per-attempt delay table capped at one hour. The item becomes
terminally failed once its retry count reaches MAX_RETRIES.
"""

from datetime import datetime, timedelta
from typing import Optional

from ...shared.time_utils import utcnow

MAX_RETRIES = 5

# Delay before retry N (1-based). Retry 5 never schedules: the item fails first.
RETRY_DELAYS_SECONDS = (
    60,  # 1 min
    5 * 60,  # 5 min
    15 * 60,  # 15 min
    60 * 60,  # 1 hour
)

MAX_BACKOFF_SECONDS = RETRY_DELAYS_SECONDS[-1]


def get_backoff_delay(retry_count: int) -> timedelta:
    """Delay to wait after the given (already incremented) retry count"""
    index = min(max(retry_count, 1), len(RETRY_DELAYS_SECONDS)) - 1
    return timedelta(seconds=RETRY_DELAYS_SECONDS[index])


def get_next_retry_at(retry_count: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + get_backoff_delay(retry_count)


def should_stop_retrying(retry_count: int) -> bool:
    return retry_count >= MAX_RETRIES
