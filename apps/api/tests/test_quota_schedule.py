from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from cardquota_api.models.catalog import QuotaRefreshType
from cardquota_api.services.quota.schedule import (
    calculate_next_refresh,
    clamp_refresh_day,
    describe_refresh,
    ensure_utc,
    is_refresh_due,
    reference_midnight,
    to_reference_date,
)

TAIPEI = ZoneInfo("Asia/Taipei")


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_reference_midnight_converts_local_midnight_to_utc():
    assert reference_midnight(date(2026, 4, 5), TAIPEI) == _utc(2026, 4, 4, 16, 0)


def test_to_reference_date_uses_local_calendar():
    # 17:00 UTC is already the next day in Taipei
    assert to_reference_date(_utc(2026, 3, 4, 17, 0), TAIPEI) == date(2026, 3, 5)
    assert to_reference_date(_utc(2026, 3, 4, 15, 59), TAIPEI) == date(2026, 3, 4)


def test_ensure_utc_treats_naive_values_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)

    assert ensure_utc(naive) == _utc(2026, 1, 1, 12, 0)
    assert ensure_utc(datetime(2026, 1, 1, 20, 0, tzinfo=TAIPEI)) == _utc(2026, 1, 1, 12, 0)


def test_clamp_refresh_day():
    assert clamp_refresh_day(0) == 1
    assert clamp_refresh_day(15) == 15
    assert clamp_refresh_day(31) == 28


def test_monthly_refresh_rolls_to_next_month_once_passed():
    now = _utc(2026, 3, 10, 0, 0)

    result = calculate_next_refresh(QuotaRefreshType.MONTHLY, 5, None, None, now=now, tz=TAIPEI)

    assert result == _utc(2026, 4, 4, 16, 0)


def test_monthly_refresh_later_this_month():
    now = _utc(2026, 3, 10, 0, 0)

    result = calculate_next_refresh("monthly", 20, None, None, now=now, tz=TAIPEI)

    assert result == _utc(2026, 3, 19, 16, 0)


def test_monthly_refresh_is_strictly_after_now():
    boundary = _utc(2026, 3, 4, 16, 0)

    result = calculate_next_refresh(QuotaRefreshType.MONTHLY, 5, None, None, now=boundary, tz=TAIPEI)

    assert result == _utc(2026, 4, 4, 16, 0)
    assert result > boundary


def test_monthly_refresh_wraps_year():
    now = _utc(2026, 12, 20, 0, 0)

    result = calculate_next_refresh(QuotaRefreshType.MONTHLY, 1, None, None, now=now, tz=TAIPEI)

    assert result == _utc(2026, 12, 31, 16, 0)


def test_monthly_refresh_clamps_day_for_february():
    now = _utc(2026, 2, 1, 0, 0)

    result = calculate_next_refresh(QuotaRefreshType.MONTHLY, 31, None, None, now=now, tz=TAIPEI)

    assert result == _utc(2026, 2, 27, 16, 0)


def test_monthly_refresh_without_day_is_unscheduled():
    assert calculate_next_refresh(QuotaRefreshType.MONTHLY, None, None, None, now=_utc(2026, 1, 1)) is None


def test_date_refresh_only_in_future():
    now = _utc(2026, 3, 10, 0, 0)

    future = calculate_next_refresh(QuotaRefreshType.DATE, None, date(2026, 12, 31), None, now=now, tz=TAIPEI)
    past = calculate_next_refresh(QuotaRefreshType.DATE, None, "2026-01-31", None, now=now, tz=TAIPEI)

    assert future == _utc(2026, 12, 30, 16, 0)
    assert past is None


def test_activity_refresh_uses_campaign_end():
    now = _utc(2026, 3, 10, 0, 0)

    result = calculate_next_refresh(QuotaRefreshType.ACTIVITY, None, None, date(2026, 6, 30), now=now, tz=TAIPEI)

    assert result == _utc(2026, 6, 29, 16, 0)
    assert calculate_next_refresh(QuotaRefreshType.ACTIVITY, None, None, None, now=now, tz=TAIPEI) is None


def test_no_policy_means_no_refresh():
    assert calculate_next_refresh(None, 5, None, None, now=_utc(2026, 1, 1)) is None
    assert calculate_next_refresh("weekly", 5, None, None, now=_utc(2026, 1, 1)) is None


def test_is_refresh_due():
    instant = _utc(2026, 4, 4, 16, 0)

    assert is_refresh_due(None, now=instant) is False
    assert is_refresh_due(instant, now=_utc(2026, 4, 4, 15, 59)) is False
    assert is_refresh_due(instant, now=instant) is True
    assert is_refresh_due(datetime(2026, 4, 4, 16, 0), now=_utc(2026, 4, 5)) is True


def test_describe_refresh():
    assert describe_refresh(QuotaRefreshType.MONTHLY, 31, None, None, tz_label="Asia/Taipei") == (
        "Monthly on day 28 (Asia/Taipei)"
    )
    assert describe_refresh("date", None, date(2026, 12, 31), None, tz_label="Asia/Taipei") == (
        "2026/12/31 (Asia/Taipei)"
    )
    assert describe_refresh(QuotaRefreshType.ACTIVITY, None, None, "2026-06-30", tz_label="UTC") == "2026/06/30 (UTC)"
    assert describe_refresh(QuotaRefreshType.ACTIVITY, None, None, None) == ""
    assert describe_refresh(None, None, None, None) == ""
