from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from cardquota_api.models.catalog import CalculationMethod, QuotaCalculationBasis
from cardquota_api.models.quota import QuotaTracking
from cardquota_api.models.transaction import Transaction
from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota import (
    PaymentContext,
    QuotaLedgerStore,
    QuotaNotFoundError,
    QuotaValidationError,
    SchemeContext,
    SharedRewardResolver,
    TransactionQuotaCoordinator,
)
from cardquota_api.services.transactions import TransactionService

from factories import add_card, add_payment_method, add_payment_reward, add_scheme, add_scheme_reward


async def _ledger_rows(session_factory) -> list[QuotaTracking]:
    async with session_factory() as session:
        return list((await session.execute(select(QuotaTracking))).scalars().all())


@pytest.mark.asyncio
async def test_apply_and_rollback_transaction_basis(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        reward = await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        applied = await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=Decimal("1000"))
        await session.commit()

    assert len(applied) == 1
    adjustment = applied[0]
    assert adjustment.key.context == SchemeContext(scheme.id, None)
    assert adjustment.key.entitlement_id == reward.id
    assert adjustment.created is True
    assert adjustment.delta == Decimal("30")
    assert adjustment.used_quota == Decimal("30")
    assert adjustment.remaining_quota == Decimal("70")
    assert adjustment.current_amount == Decimal("1000")

    async with session_factory() as session:
        rolled_back = await TransactionQuotaCoordinator(session).rollback_event(
            scheme_id=scheme.id, payment_method_id=None, amount=Decimal("1000")
        )
        await session.commit()

    assert rolled_back[0].delta == Decimal("-30")

    rows = await _ledger_rows(session_factory)
    assert len(rows) == 1
    assert rows[0].used_quota == Decimal("0")
    assert rows[0].remaining_quota == Decimal("100")
    assert rows[0].current_amount == Decimal("0")

    totals = get_quota_store().snapshot().totals
    assert totals["applied"] == 1
    assert totals["rolled_back"] == 1


@pytest.mark.asyncio
async def test_statement_basis_credits_marginal_reward(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(
            session,
            scheme,
            "5",
            method=CalculationMethod.FLOOR,
            basis=QuotaCalculationBasis.STATEMENT,
            limit="500",
        )
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        first = await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=199)
        second = await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=199)
        await session.commit()

    assert first[0].delta == Decimal("9")
    assert second[0].delta == Decimal("10")
    assert second[0].used_quota == Decimal("19")
    assert second[0].current_amount == Decimal("398")

    async with session_factory() as session:
        coordinator = TransactionQuotaCoordinator(session)
        reverted = await coordinator.rollback_event(scheme_id=scheme.id, payment_method_id=None, amount=199)
        assert reverted[0].delta == Decimal("-10")
        assert reverted[0].used_quota == Decimal("9")

        reverted = await coordinator.rollback_event(scheme_id=scheme.id, payment_method_id=None, amount=199)
        assert reverted[0].used_quota == Decimal("0")
        assert reverted[0].current_amount == Decimal("0")
        await session.commit()


@pytest.mark.asyncio
async def test_apply_then_rollback_restores_state_for_interleaved_events(session_factory):
    amounts = [Decimal("120.5"), Decimal("999"), Decimal("33.3")]
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "2.5", method=CalculationMethod.CEIL, limit="80")
        await add_scheme_reward(
            session,
            scheme,
            "1.2",
            method=CalculationMethod.ROUND,
            basis=QuotaCalculationBasis.STATEMENT,
            display_order=1,
        )
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        for amount in amounts:
            await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=amount)
        for amount in reversed(amounts):
            await coordinator.rollback_event(scheme_id=scheme.id, payment_method_id=None, amount=amount)
        await session.commit()

    rows = await _ledger_rows(session_factory)
    assert len(rows) == 2
    for row in rows:
        assert row.used_quota == Decimal("0")
        assert row.current_amount == Decimal("0")
    assert sorted(row.remaining_quota is None for row in rows) == [False, True]


@pytest.mark.asyncio
async def test_remaining_can_go_negative_when_overspent(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "10", limit="50")
        await session.commit()

        adjustments = await TransactionQuotaCoordinator(session).apply_event(
            scheme_id=scheme.id, payment_method_id=None, amount=800
        )
        await session.commit()

    assert adjustments[0].used_quota == Decimal("80")
    assert adjustments[0].remaining_quota == Decimal("-30")


@pytest.mark.asyncio
async def test_payment_and_scheme_entitlements_both_apply(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        method = await add_payment_method(session)
        scheme_reward = await add_scheme_reward(session, scheme, "3", limit="100")
        payment_reward = await add_payment_reward(session, method, "1")
        await session.commit()

        adjustments = await TransactionQuotaCoordinator(session).apply_event(
            scheme_id=scheme.id, payment_method_id=method.id, amount=1000
        )
        await session.commit()

    by_reward = {item.key.entitlement_id: item for item in adjustments}
    assert by_reward[scheme_reward.id].key.context == SchemeContext(scheme.id, method.id)
    assert by_reward[scheme_reward.id].used_quota == Decimal("30")
    assert by_reward[payment_reward.id].key.context == PaymentContext(method.id)
    assert by_reward[payment_reward.id].key.is_payment_entitlement is True
    assert by_reward[payment_reward.id].used_quota == Decimal("10")
    assert by_reward[payment_reward.id].remaining_quota is None

    rows = await _ledger_rows(session_factory)
    payment_row = next(row for row in rows if row.payment_reward_id is not None)
    assert payment_row.scheme_id is None
    assert payment_row.payment_method_id == method.id
    scheme_row = next(row for row in rows if row.reward_id is not None)
    assert scheme_row.payment_method_id == method.id


@pytest.mark.asyncio
async def test_zero_or_missing_amount_does_not_touch_ledger(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        assert await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=0) == []
        assert await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=None) == []
        assert await coordinator.rollback_event(scheme_id=scheme.id, payment_method_id=None, amount=None) == []
        await session.commit()

    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
async def test_rollback_skips_missing_rows(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        reverted = await TransactionQuotaCoordinator(session).rollback_event(
            scheme_id=scheme.id, payment_method_id=None, amount=500
        )
        await session.commit()

    assert reverted == []
    assert await _ledger_rows(session_factory) == []


@pytest.mark.asyncio
async def test_rollback_clamps_usage_at_zero(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        await coordinator.apply_event(scheme_id=scheme.id, payment_method_id=None, amount=100)
        reverted = await coordinator.rollback_event(scheme_id=scheme.id, payment_method_id=None, amount=1000)
        await session.commit()

    assert reverted[0].used_quota == Decimal("0")
    assert reverted[0].current_amount == Decimal("0")
    assert reverted[0].remaining_quota == Decimal("100")


@pytest.mark.asyncio
async def test_shared_mapping_redirects_to_root_scheme(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        root = await add_scheme(session, card, name="Root")
        alias = await add_scheme(session, card, name="Alias")
        reward = await add_scheme_reward(session, root, "3", limit="100")
        await SharedRewardResolver(session).set_mapping(alias.id, root.id)
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        await coordinator.apply_event(scheme_id=alias.id, payment_method_id=None, amount=1000)
        adjustments = await coordinator.apply_event(scheme_id=root.id, payment_method_id=None, amount=1000)
        await session.commit()

    assert adjustments[0].used_quota == Decimal("60")
    rows = await _ledger_rows(session_factory)
    assert len(rows) == 1
    assert rows[0].scheme_id == root.id
    assert rows[0].reward_id == reward.id


@pytest.mark.asyncio
async def test_shared_mapping_stays_one_level_deep(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        first = await add_scheme(session, card, name="First")
        second = await add_scheme(session, card, name="Second")
        third = await add_scheme(session, card, name="Third")
        resolver = SharedRewardResolver(session)

        await resolver.set_mapping(second.id, first.id)
        await resolver.set_mapping(third.id, second.id)
        assert await resolver.resolve_target(third.id) == first.id

        await resolver.set_mapping(first.id, third.id)
        assert await resolver.resolve_target(first.id) == first.id

        await resolver.set_mapping(second.id, None)
        targets = await resolver.resolve_targets([first.id, second.id, third.id])
        await session.commit()

    assert targets == {first.id: first.id, second.id: second.id, third.id: first.id}


@pytest.mark.asyncio
async def test_transaction_service_records_and_deletes_events(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "3", limit="100")
        await session.commit()

        service = TransactionService(session)
        result = await service.create_transaction(
            transaction_date=date(2026, 10, 1),
            reason="  Groceries ",
            amount=Decimal("1000"),
            scheme_id=scheme.id,
        )
        await session.commit()
        transaction_id = result.transaction.id

    assert result.transaction.reason == "Groceries"
    assert result.adjustments[0].used_quota == Decimal("30")

    async with session_factory() as session:
        listed = await TransactionService(session).list_transactions()
        assert [item.id for item in listed] == [transaction_id]

        deleted = await TransactionService(session).delete_transaction(transaction_id)
        await session.commit()

    assert deleted.adjustments[0].used_quota == Decimal("0")
    rows = await _ledger_rows(session_factory)
    assert rows[0].remaining_quota == Decimal("100")

    async with session_factory() as session:
        assert await TransactionService(session).list_transactions() == []


@pytest.mark.asyncio
async def test_transaction_service_validation(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await session.commit()

        service = TransactionService(session)
        with pytest.raises(QuotaValidationError):
            await service.create_transaction(transaction_date=date(2026, 10, 1), reason=" ", amount=None)
        with pytest.raises(QuotaValidationError):
            await service.create_transaction(transaction_date=date(2026, 10, 1), reason="Lunch", amount=None)
        with pytest.raises(QuotaValidationError):
            await service.create_transaction(
                transaction_date=date(2026, 10, 1), reason="Lunch", amount=Decimal("-1"), scheme_id=scheme.id
            )
        with pytest.raises(QuotaNotFoundError):
            await service.create_transaction(
                transaction_date=date(2026, 10, 1), reason="Lunch", amount=None, payment_method_id=card.id
            )
        with pytest.raises(QuotaNotFoundError):
            await service.delete_transaction(card.id)


class _FailingLedger(QuotaLedgerStore):
    """Ledger whose row lookup fails after ``fail_after`` successful calls."""

    def __init__(self, db_session, *, fail_after: int) -> None:
        super().__init__(db_session)
        self.calls = 0
        self.fail_after = fail_after

    async def get_or_create(self, key, definition, *, now=None):
        self.calls += 1
        if self.calls > self.fail_after:
            raise RuntimeError("ledger write failed")
        return await super().get_or_create(key, definition, now=now)


@pytest.mark.asyncio
async def test_failed_event_discards_record_and_every_ledger_delta(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        scheme = await add_scheme(session, card)
        await add_scheme_reward(session, scheme, "3", limit="100")
        await add_scheme_reward(session, scheme, "1", limit="50", display_order=1)
        await session.commit()

        await TransactionService(session).create_transaction(
            transaction_date=date(2026, 10, 1), reason="Groceries", amount=Decimal("1000"), scheme_id=scheme.id
        )
        await session.commit()

    async with session_factory() as session:
        ledger = _FailingLedger(session, fail_after=1)
        service = TransactionService(session, coordinator=TransactionQuotaCoordinator(session, ledger=ledger))
        with pytest.raises(RuntimeError):
            await service.create_transaction(
                transaction_date=date(2026, 10, 2), reason="Flight", amount=Decimal("500"), scheme_id=scheme.id
            )
        await session.rollback()

    assert ledger.calls == 2

    async with session_factory() as session:
        transactions = (await session.execute(select(Transaction))).scalars().all()
    assert [item.reason for item in transactions] == ["Groceries"]

    rows = await _ledger_rows(session_factory)
    assert sorted(row.used_quota for row in rows) == [Decimal("10"), Decimal("30")]
    assert all(row.current_amount == Decimal("1000") for row in rows)


@pytest.mark.asyncio
async def test_rollback_follows_mapping_current_at_delete_time(session_factory):
    async with session_factory() as session:
        card = await add_card(session)
        root = await add_scheme(session, card, name="Root")
        alias = await add_scheme(session, card, name="Alias")
        await add_scheme_reward(session, root, "3", limit="100")
        resolver = SharedRewardResolver(session)
        await resolver.set_mapping(alias.id, root.id)
        await session.commit()

        coordinator = TransactionQuotaCoordinator(session)
        await coordinator.apply_event(scheme_id=alias.id, payment_method_id=None, amount=1000)
        await resolver.set_mapping(alias.id, None)
        reverted = await coordinator.rollback_event(scheme_id=alias.id, payment_method_id=None, amount=1000)
        await session.commit()

    # the alias has no entitlements of its own once unmapped
    assert reverted == []
    (row,) = await _ledger_rows(session_factory)
    assert row.scheme_id == root.id
    assert row.used_quota == Decimal("30")
