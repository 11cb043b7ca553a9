"""Timestamp helpers."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what SQLite round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def billing_cycle(moment: datetime) -> str:
    """Billing cycle key (``YYYY-MM``) containing ``moment``."""
    return moment.strftime("%Y-%m")
