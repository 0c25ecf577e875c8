"""Timezone-aware datetime helpers."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def compact_timestamp(moment: datetime | None = None) -> str:
    """Sortable, path-safe timestamp with microsecond resolution.

    Two snapshots generated within the same second still get distinct names.
    """
    moment = moment or utc_now()
    return moment.strftime("%Y%m%dT%H%M%S%fZ")
