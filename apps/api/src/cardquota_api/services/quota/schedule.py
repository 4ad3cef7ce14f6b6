"""Refresh schedule arithmetic in the quota reference timezone.

Civil dates ("the 5th of the month", "2026-12-31") are interpreted in a single
reference timezone and converted to absolute UTC instants at exactly two
boundaries: :func:`reference_midnight` (civil date -> instant) and
:func:`to_reference_date` (instant -> civil date). Every comparison happens
between aware UTC datetimes.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from cardquota_api.core.settings import settings
from cardquota_api.models.catalog import QuotaRefreshType

MONTHLY_MIN_DAY = 1
MONTHLY_MAX_DAY = 28

DateLike = date | str | None


def reference_timezone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or settings.quota_reference_timezone)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values (SQLite) are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_reference_date(instant: datetime, tz: ZoneInfo | None = None) -> date:
    """Civil date of ``instant`` in the reference timezone."""

    return ensure_utc(instant).astimezone(tz or reference_timezone()).date()


def reference_midnight(civil_date: date, tz: ZoneInfo | None = None) -> datetime:
    """UTC instant of 00:00 on ``civil_date`` in the reference timezone."""

    local = datetime.combine(civil_date, time.min, tzinfo=tz or reference_timezone())
    return local.astimezone(timezone.utc)


def _coerce_date(value: DateLike) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _coerce_refresh_type(value: QuotaRefreshType | str | None) -> QuotaRefreshType | None:
    if value is None or isinstance(value, QuotaRefreshType):
        return value
    try:
        return QuotaRefreshType(str(value).lower())
    except ValueError:
        return None


def clamp_refresh_day(value: int) -> int:
    return max(MONTHLY_MIN_DAY, min(MONTHLY_MAX_DAY, int(value)))


def _next_monthly(day: int, now: datetime, tz: ZoneInfo) -> datetime:
    local_today = now.astimezone(tz).date()
    candidate = reference_midnight(date(local_today.year, local_today.month, day), tz)
    if candidate > now:
        return candidate
    year, month = local_today.year, local_today.month + 1
    if month > 12:
        year, month = year + 1, 1
    return reference_midnight(date(year, month, day), tz)


def _future_or_none(civil_date: date | None, now: datetime, tz: ZoneInfo) -> datetime | None:
    if civil_date is None:
        return None
    instant = reference_midnight(civil_date, tz)
    return instant if instant > now else None


def calculate_next_refresh(
    refresh_type: QuotaRefreshType | str | None,
    refresh_value: int | None,
    refresh_date: DateLike,
    activity_end_date: DateLike,
    *,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> datetime | None:
    """Next reset instant (UTC) for a refresh policy, or ``None`` if none is scheduled.

    ``monthly`` resets on ``refresh_value`` (clamped to 1..28) at local
    midnight, strictly after ``now``. ``date`` and ``activity`` are one-shot:
    they yield the fixed date / campaign end date only while it is in the future.
    """

    policy = _coerce_refresh_type(refresh_type)
    if policy is None:
        return None

    zone = tz or reference_timezone()
    current = ensure_utc(now) if now is not None else utcnow()

    if policy is QuotaRefreshType.MONTHLY:
        if refresh_value is None:
            return None
        return _next_monthly(clamp_refresh_day(refresh_value), current, zone)
    if policy is QuotaRefreshType.DATE:
        return _future_or_none(_coerce_date(refresh_date), current, zone)
    if policy is QuotaRefreshType.ACTIVITY:
        return _future_or_none(_coerce_date(activity_end_date), current, zone)
    return None


def is_refresh_due(next_refresh_at: datetime | None, *, now: datetime | None = None) -> bool:
    """True once ``now`` has reached the stored reset instant."""

    if next_refresh_at is None:
        return False
    current = ensure_utc(now) if now is not None else utcnow()
    return current >= ensure_utc(next_refresh_at)


def describe_refresh(
    refresh_type: QuotaRefreshType | str | None,
    refresh_value: int | None,
    refresh_date: DateLike,
    activity_end_date: DateLike,
    *,
    tz_label: str | None = None,
) -> str:
    """Human readable refresh rule, empty when nothing is scheduled."""

    policy = _coerce_refresh_type(refresh_type)
    label = tz_label or settings.quota_reference_timezone

    if policy is QuotaRefreshType.MONTHLY and refresh_value is not None:
        return f"Monthly on day {clamp_refresh_day(refresh_value)} ({label})"
    if policy is QuotaRefreshType.DATE:
        fixed = _coerce_date(refresh_date)
        return f"{fixed:%Y/%m/%d} ({label})" if fixed else ""
    if policy is QuotaRefreshType.ACTIVITY:
        end = _coerce_date(activity_end_date)
        return f"{end:%Y/%m/%d} ({label})" if end else ""
    return ""


__all__ = [
    "MONTHLY_MAX_DAY",
    "calculate_next_refresh",
    "clamp_refresh_day",
    "describe_refresh",
    "ensure_utc",
    "is_refresh_due",
    "reference_midnight",
    "reference_timezone",
    "to_reference_date",
    "utcnow",
]
