"""
Timezone utilities for the XP ledger.

Accounting days are calendar dates in the user's own timezone.
"""

from datetime import date, datetime
from typing import Optional

import pytz

from .config import settings


def resolve_timezone(tz_name: Optional[str]) -> pytz.BaseTzInfo:
    """
    Return a pytz timezone for ``tz_name``, falling back to the configured default.

    Unknown names fall back too; a bad profile value must not block XP awards.
    """
    if tz_name:
        try:
            return pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            pass
    return pytz.timezone(settings.default_accounting_timezone)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalise aware ones to UTC."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def accounting_day(moment: datetime, tz_name: Optional[str] = None) -> date:
    """
    Get the accounting day for ``moment`` in the given timezone.

    Args:
        moment: Event timestamp (naive values are treated as UTC)
        tz_name: IANA timezone of the user

    Returns:
        Local calendar date the event belongs to
    """
    return ensure_utc(moment).astimezone(resolve_timezone(tz_name)).date()


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)
