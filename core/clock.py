"""
core/clock.py -- UTC timestamp helpers shared by every store.

Timestamps are persisted as ISO 8601 strings with a fixed +00:00 offset and
microsecond precision. The fixed format makes string order equal time order,
so stores can compare them in SQL (expires_at > :now) without parsing.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Render a datetime in the canonical stored form. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
