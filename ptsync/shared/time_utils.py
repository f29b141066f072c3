"""Shared time helpers"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now, matching what the local store round-trips"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")
