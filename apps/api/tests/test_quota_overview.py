from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from cardquota_api.models.catalog import CalculationMethod, QuotaRefreshType
from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota import (
    QuotaNotFoundError,
    QuotaService,
    QuotaValidationError,
    SharedRewardResolver,
    TransactionQuotaCoordinator,
)
from cardquota_api.services.quota.overview import format_percentage, parse_used_quota, reference_amount

from factories import (
    add_card,
    add_payment_method,
    add_payment_reward,
    add_scheme,
    add_scheme_reward,
)

NOW = datetime(2026, 10, 18, 4, 0, tzinfo=timezone.utc)


def test_format_percentage():
    assert format_percentage(Decimal("2.5000")) == "2.5"
    assert format_percentage(Decimal("10.0000")) == "10"
    assert format_percentage(Decimal("0.3000")) == "0.3"


def test_reference_amount():
    assert reference_amount(Decimal("70"), Decimal("3")) == Decimal("70") / Decimal("3") * 100
    assert reference_amount(Decimal("-5"), Decimal("3")) == Decimal("0")
    assert reference_amount(None, Decimal("3")) is None
    assert reference_amount(Decimal("10"), Decimal("0")) is None


@pytest.mark.parametrize(
    ("value", "current", "expected"),
    [
        (Decimal("12.5"), Decimal("3"), Decimal("12.5")),
        (7, Decimal("3"), Decimal("7")),
        ("15", Decimal("3"), Decimal("15")),
        ("+5", Decimal("3"), Decimal("8")),
        (" -2 ", Decimal("3"), Decimal("1")),
        ("-10", Decimal("3"), Decimal("0")),
        ("0", Decimal("3"), Decimal("0")),
    ],
)
def test_parse_used_quota(value, current, expected):
    assert parse_used_quota(value, current) == expected


@pytest.mark.parametrize("value", ["abc", "", "+", "--3", Decimal("-1"), -4, True, "NaN", float("inf")])
def test_parse_used_quota_rejects_invalid_input(value):
    with pytest.raises(QuotaValidationError):
        parse_used_quota(value, Decimal("3"))


@pytest.mark.asyncio
async def test_list_quotas_groups_and_entries(session_factory):
    async with session_factory() as session:
        card = await add_card(session, "Cube")
        everyday = await add_scheme(session, card, "Everyday", activity_end_date=date(2026, 12, 31))
        travel = await add_scheme(session, card, "Travel", display_order=1)
        method = await add_payment_method(session, "LINE Pay")
        await add_payment_method(session, "Cash")
        high = await add_scheme_reward(
            session,
            everyday,
            "2",
            limit="300",
            refresh_type=QuotaRefreshType.MONTHLY,
            refresh_value=1,
        )
        base = await add_scheme_reward(
            session,
            everyday,
            "0.3",
            method=CalculationMethod.FLOOR,
            refresh_type=QuotaRefreshType.ACTIVITY,
            display_order=1,
        )
        payment_reward = await add_payment_reward(session, method, "1", limit="100")
        await session.commit()

        await TransactionQuotaCoordinator(session).apply_event(
            scheme_id=everyday.id, payment_method_id=method.id, amount=1000, now=NOW
        )
        await session.commit()

    async with session_factory() as session:
        groups = await QuotaService(session).list_quotas(now=NOW)

    assert [group.name for group in groups] == [
        "Cube-Everyday",
        "Cube-Travel",
        "Cube-Everyday-LINE Pay",
        "LINE Pay",
    ]

    plain, travel_group, linked, payment = groups
    assert plain.scheme_id == everyday.id
    assert plain.payment_method_id is None
    assert plain.reward_composition == "0.3%/2%"
    assert [entry.reward_id for entry in plain.entries] == [base.id, high.id]
    # no ledger row yet for the plain scheme context
    high_entry = plain.entries[1]
    assert high_entry.used_quota == Decimal("0")
    assert high_entry.remaining_quota == Decimal("300")
    assert high_entry.reference_amount == Decimal("15000")
    assert high_entry.refresh_time == "Monthly on day 1 (Asia/Taipei)"
    assert high_entry.next_refresh_at == datetime(2026, 10, 31, 16, 0, tzinfo=timezone.utc)
    assert plain.entries[0].remaining_quota is None
    assert plain.entries[0].reference_amount is None
    assert plain.entries[0].refresh_time == "2026/12/31 (Asia/Taipei)"

    assert travel_group.scheme_id == travel.id
    assert travel_group.entries == []
    assert travel_group.reward_composition == ""

    assert linked.scheme_id == everyday.id
    assert linked.payment_method_id == method.id
    linked_high = next(entry for entry in linked.entries if entry.reward_id == high.id)
    assert linked_high.used_quota == Decimal("20")
    assert linked_high.remaining_quota == Decimal("280")
    assert linked_high.current_amount == Decimal("1000")

    assert payment.payment_method_id == method.id
    assert payment.scheme_id is None
    (payment_entry,) = payment.entries
    assert payment_entry.reward_id == payment_reward.id
    assert payment_entry.used_quota == Decimal("10")
    assert payment_entry.remaining_quota == Decimal("90")
    assert payment_entry.reference_amount == Decimal("9000")


@pytest.mark.asyncio
async def test_list_quotas_shows_shared_scheme_usage(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        root = await add_scheme(session, card, "Root")
        alias = await add_scheme(session, card, "Alias", display_order=1)
        reward = await add_scheme_reward(session, root, "3", limit="100")
        await SharedRewardResolver(session).set_mapping(alias.id, root.id)
        await session.commit()

        await TransactionQuotaCoordinator(session).apply_event(
            scheme_id=alias.id, payment_method_id=None, amount=1000, now=NOW
        )
        await session.commit()

    async with session_factory() as session:
        groups = await QuotaService(session).list_quotas(now=NOW)

    by_scheme = {group.scheme_id: group for group in groups}
    assert by_scheme[alias.id].shared_reward_scheme_id == root.id
    assert by_scheme[root.id].shared_reward_scheme_id is None
    for scheme_id in (root.id, alias.id):
        (entry,) = by_scheme[scheme_id].entries
        assert entry.reward_id == reward.id
        assert entry.used_quota == Decimal("30")


@pytest.mark.asyncio
async def test_adjust_usage_absolute_and_signed_values(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        reward = await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        service = QuotaService(session)
        row = await service.adjust_usage(scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id, used_quota="40")
        assert row.used_quota == Decimal("40")
        assert row.remaining_quota == Decimal("60")

        row = await service.adjust_usage(scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id, used_quota="+5")
        assert row.used_quota == Decimal("45")

        row = await service.adjust_usage(scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id, used_quota="-50")
        assert row.used_quota == Decimal("0")
        assert row.remaining_quota == Decimal("100")

        row = await service.adjust_usage(
            scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id, used_quota=Decimal("120")
        )
        assert row.remaining_quota == Decimal("-20")
        await session.commit()

    assert get_quota_store().snapshot().totals["manual_adjustments"] == 4


@pytest.mark.asyncio
async def test_adjust_usage_from_remaining(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        method = await add_payment_method(session)
        limited = await add_scheme_reward(session, scheme, "3", limit="100")
        unlimited = await add_payment_reward(session, method, "1")
        await session.commit()

        service = QuotaService(session)
        row = await service.adjust_usage(
            scheme_id=scheme.id, payment_method_id=method.id, reward_id=limited.id, remaining_quota=Decimal("25")
        )
        assert row.used_quota == Decimal("75")
        assert row.payment_method_id == method.id

        row = await service.adjust_usage(
            scheme_id=scheme.id, payment_method_id=None, reward_id=limited.id, remaining_quota=Decimal("150")
        )
        assert row.used_quota == Decimal("0")

        with pytest.raises(QuotaValidationError):
            await service.adjust_usage(
                scheme_id=None, payment_method_id=method.id, reward_id=unlimited.id, remaining_quota=Decimal("5")
            )

        row = await service.adjust_usage(
            scheme_id=None, payment_method_id=method.id, reward_id=unlimited.id, used_quota="12"
        )
        assert row.payment_reward_id == unlimited.id
        assert row.scheme_id is None
        assert row.remaining_quota is None
        await session.commit()


@pytest.mark.asyncio
async def test_adjust_usage_errors(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        other = await add_scheme(session, card, "Other")
        method = await add_payment_method(session)
        reward = await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        service = QuotaService(session)
        with pytest.raises(QuotaValidationError):
            await service.adjust_usage(scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id)
        with pytest.raises(QuotaValidationError):
            await service.adjust_usage(scheme_id=None, payment_method_id=None, reward_id=reward.id, used_quota=1)
        with pytest.raises(QuotaNotFoundError):
            await service.adjust_usage(scheme_id=card.id, payment_method_id=None, reward_id=reward.id, used_quota=1)
        with pytest.raises(QuotaNotFoundError):
            await service.adjust_usage(scheme_id=other.id, payment_method_id=None, reward_id=reward.id, used_quota=1)
        with pytest.raises(QuotaNotFoundError):
            await service.adjust_usage(scheme_id=None, payment_method_id=method.id, reward_id=reward.id, used_quota=1)
        with pytest.raises(QuotaValidationError):
            await service.adjust_usage(
                scheme_id=scheme.id, payment_method_id=None, reward_id=reward.id, used_quota="lots"
            )
