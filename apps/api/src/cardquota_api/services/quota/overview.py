"""Quota overview read path and manual usage corrections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import (
    CalculationMethod,
    Card,
    CardScheme,
    PaymentMethod,
    PaymentReward,
    QuotaCalculationBasis,
    SchemeReward,
)
from cardquota_api.models.quota import QuotaTracking
from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota.definitions import (
    EntitlementDefinition,
    PaymentContext,
    QuotaKey,
    SchemeContext,
    load_definition,
)
from cardquota_api.services.quota.errors import QuotaNotFoundError, QuotaValidationError
from cardquota_api.services.quota.ledger import ZERO, QuotaLedgerStore, key_for_row, next_refresh_for
from cardquota_api.services.quota.refresh import RefreshSummary, refresh_due_rows
from cardquota_api.services.quota.schedule import describe_refresh, ensure_utc, utcnow
from cardquota_api.services.quota.shared_rewards import SharedRewardResolver
from cardquota_api.services.rewards.calculator import to_decimal

_HUNDRED = Decimal("100")


def format_percentage(value: Decimal) -> str:
    """``Decimal("2.5000")`` -> ``"2.5"`` without scientific notation."""

    normalized = to_decimal(value).normalize()
    return format(normalized, "f")


def reference_amount(remaining: Decimal | None, percentage: Decimal) -> Decimal | None:
    """Spend that would exhaust ``remaining`` at ``percentage``; overspent rows yield 0."""

    if remaining is None or percentage <= ZERO:
        return None
    return max(remaining, ZERO) / percentage * _HUNDRED


def parse_used_quota(value: Decimal | int | float | str, current: Decimal) -> Decimal:
    """Resolve a manual ``usedQuota`` input against the current value.

    Numbers and unsigned strings are absolute; ``"+3"``/``"-3"`` shift the
    current value. Deltas floor at zero, absolute values must be non-negative.
    """

    if isinstance(value, bool):
        raise QuotaValidationError("usedQuota must be a number or a numeric string")
    if isinstance(value, str):
        text = value.strip()
        sign = text[:1] if text[:1] in ("+", "-") else ""
        try:
            amount = Decimal(text[len(sign):])
        except InvalidOperation as exc:
            raise QuotaValidationError(f"Invalid usedQuota value: {value!r}") from exc
        if not amount.is_finite() or (sign and amount < ZERO):
            raise QuotaValidationError(f"Invalid usedQuota value: {value!r}")
        if sign == "+":
            return current + amount
        if sign == "-":
            return max(ZERO, current - amount)
    else:
        try:
            amount = to_decimal(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise QuotaValidationError(f"Invalid usedQuota value: {value!r}") from exc
        if not amount.is_finite():
            raise QuotaValidationError(f"Invalid usedQuota value: {value!r}")

    if amount < ZERO:
        raise QuotaValidationError("usedQuota cannot be negative")
    return amount


@dataclass
class QuotaEntryView:
    reward_id: UUID
    percentage: Decimal
    calculation_method: CalculationMethod
    calculation_basis: QuotaCalculationBasis
    quota_limit: Decimal | None
    used_quota: Decimal
    remaining_quota: Decimal | None
    current_amount: Decimal
    reference_amount: Decimal | None
    refresh_time: str
    next_refresh_at: datetime | None
    last_refresh_at: datetime | None = None


@dataclass
class QuotaGroupView:
    """Entitlements of one scheme, scheme + payment method, or payment method context."""

    name: str
    scheme_id: UUID | None = None
    payment_method_id: UUID | None = None
    shared_reward_scheme_id: UUID | None = None
    entries: List[QuotaEntryView] = field(default_factory=list)

    @property
    def reward_composition(self) -> str:
        return "/".join(f"{format_percentage(entry.percentage)}%" for entry in self.entries)


class QuotaService:
    """Builds the quota view and applies manual corrections to ledger rows."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        resolver: SharedRewardResolver | None = None,
        ledger: QuotaLedgerStore | None = None,
    ) -> None:
        self._db = db_session
        self._resolver = resolver or SharedRewardResolver(db_session)
        self._ledger = ledger or QuotaLedgerStore(db_session)

    async def refresh_due(self, *, now: datetime | None = None) -> RefreshSummary:
        summary = await refresh_due_rows(self._db, now=now)
        if summary.refreshed:
            logger.info("Refreshed due quotas on read", **summary.as_dict())
        return summary

    async def list_quotas(self, *, now: datetime | None = None, refresh: bool = True) -> List[QuotaGroupView]:
        """All quota groups, ordered as cards, schemes and payment methods are displayed."""

        current = ensure_utc(now) if now is not None else utcnow()
        if refresh:
            await self.refresh_due(now=current)

        rows_by_key: Dict[QuotaKey, QuotaTracking] = {
            key_for_row(row): row for row in (await self._db.execute(select(QuotaTracking))).scalars()
        }

        scheme_stmt = (
            select(CardScheme, Card.name)
            .join(Card, Card.id == CardScheme.card_id)
            .order_by(Card.display_order, Card.name, CardScheme.display_order, CardScheme.name)
        )
        schemes = (await self._db.execute(scheme_stmt)).all()
        targets = await self._resolver.resolve_targets(scheme.id for scheme, _ in schemes)
        labels = {scheme.id: f"{card_name}-{scheme.name}" for scheme, card_name in schemes}
        scheme_definitions = await self._scheme_definitions({scheme.id: scheme for scheme, _ in schemes})

        groups: List[QuotaGroupView] = []
        for scheme, _ in schemes:
            target = targets[scheme.id]
            context = SchemeContext(target, None)
            groups.append(
                QuotaGroupView(
                    name=labels[scheme.id],
                    scheme_id=scheme.id,
                    shared_reward_scheme_id=target if target != scheme.id else None,
                    entries=self._entries(context, scheme_definitions.get(target, []), rows_by_key, current),
                )
            )

        payment_methods = (
            (await self._db.execute(select(PaymentMethod).order_by(PaymentMethod.display_order, PaymentMethod.name)))
            .scalars()
            .all()
        )
        payment_names = {method.id: method.name for method in payment_methods}

        linked_contexts = sorted(
            {
                key.context
                for key in rows_by_key
                if isinstance(key.context, SchemeContext) and key.context.payment_method_id is not None
            },
            key=lambda ctx: (labels.get(ctx.scheme_id, ""), payment_names.get(ctx.payment_method_id, "")),
        )
        for context in linked_contexts:
            if context.scheme_id not in labels or context.payment_method_id not in payment_names:
                continue
            groups.append(
                QuotaGroupView(
                    name=f"{labels[context.scheme_id]}-{payment_names[context.payment_method_id]}",
                    scheme_id=context.scheme_id,
                    payment_method_id=context.payment_method_id,
                    entries=self._entries(
                        context, scheme_definitions.get(context.scheme_id, []), rows_by_key, current
                    ),
                )
            )

        payment_definitions = await self._payment_definitions()
        for method in payment_methods:
            definitions = payment_definitions.get(method.id, [])
            if not definitions:
                continue
            groups.append(
                QuotaGroupView(
                    name=method.name,
                    payment_method_id=method.id,
                    entries=self._entries(PaymentContext(method.id), definitions, rows_by_key, current),
                )
            )
        return groups

    async def adjust_usage(
        self,
        *,
        scheme_id: UUID | None,
        payment_method_id: UUID | None,
        reward_id: UUID,
        used_quota: Decimal | int | float | str | None = None,
        remaining_quota: Decimal | int | float | str | None = None,
        now: datetime | None = None,
    ) -> QuotaTracking:
        """Set ``used_quota`` on one ledger row, creating the row when absent.

        With only ``remaining_quota`` given, usage is derived as ``limit - remaining``.
        """

        if used_quota is None and remaining_quota is None:
            raise QuotaValidationError("usedQuota or remainingQuota is required")

        key = await self._key_for(scheme_id=scheme_id, payment_method_id=payment_method_id, reward_id=reward_id)
        definition = await load_definition(self._db, key)
        if definition is None:
            raise QuotaNotFoundError("Reward", reward_id)

        row, _ = await self._ledger.get_or_create(key, definition, now=now)
        current_used = to_decimal(row.used_quota)
        if used_quota is not None:
            new_used = parse_used_quota(used_quota, current_used)
        else:
            new_used = self._used_from_remaining(definition, remaining_quota)

        self._ledger.set_usage(row, definition, new_used)
        await self._db.flush()
        get_quota_store().record_manual_adjustment()
        logger.info(
            "Manually adjusted quota usage",
            quota_id=str(row.id),
            reward_id=str(reward_id),
            previous_used=str(current_used),
            used_quota=str(new_used),
        )
        return row

    async def _key_for(
        self,
        *,
        scheme_id: UUID | None,
        payment_method_id: UUID | None,
        reward_id: UUID,
    ) -> QuotaKey:
        if scheme_id is not None:
            if await self._db.get(CardScheme, scheme_id) is None:
                raise QuotaNotFoundError("Scheme", scheme_id)
            if payment_method_id is not None and await self._db.get(PaymentMethod, payment_method_id) is None:
                raise QuotaNotFoundError("Payment method", payment_method_id)
            target = await self._resolver.resolve_target(scheme_id)
            return QuotaKey(SchemeContext(target, payment_method_id), reward_id)

        if payment_method_id is None:
            raise QuotaValidationError("schemeId or paymentMethodId is required")
        if await self._db.get(PaymentMethod, payment_method_id) is None:
            raise QuotaNotFoundError("Payment method", payment_method_id)
        return QuotaKey(PaymentContext(payment_method_id), reward_id)

    @staticmethod
    def _used_from_remaining(definition: EntitlementDefinition, remaining_quota: object) -> Decimal:
        if definition.quota_limit is None:
            raise QuotaValidationError("remainingQuota cannot be set on an unlimited reward")
        try:
            remaining = to_decimal(remaining_quota)  # type: ignore[arg-type]
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise QuotaValidationError(f"Invalid remainingQuota value: {remaining_quota!r}") from exc
        if not remaining.is_finite():
            raise QuotaValidationError(f"Invalid remainingQuota value: {remaining_quota!r}")
        return max(ZERO, definition.quota_limit - remaining)

    async def _scheme_definitions(
        self, schemes: Dict[UUID, CardScheme]
    ) -> Dict[UUID, List[EntitlementDefinition]]:
        stmt = select(SchemeReward).order_by(SchemeReward.display_order)
        grouped: Dict[UUID, List[EntitlementDefinition]] = {}
        for reward in (await self._db.execute(stmt)).scalars():
            scheme = schemes.get(reward.scheme_id)
            grouped.setdefault(reward.scheme_id, []).append(
                EntitlementDefinition.from_scheme_reward(
                    reward, activity_end_date=scheme.activity_end_date if scheme else None
                )
            )
        return grouped

    async def _payment_definitions(self) -> Dict[UUID, List[EntitlementDefinition]]:
        stmt = select(PaymentReward).order_by(PaymentReward.display_order)
        grouped: Dict[UUID, List[EntitlementDefinition]] = {}
        for reward in (await self._db.execute(stmt)).scalars():
            grouped.setdefault(reward.payment_method_id, []).append(EntitlementDefinition.from_payment_reward(reward))
        return grouped

    @staticmethod
    def _entries(
        context: SchemeContext | PaymentContext,
        definitions: Iterable[EntitlementDefinition],
        rows_by_key: Dict[QuotaKey, QuotaTracking],
        now: datetime,
    ) -> List[QuotaEntryView]:
        entries = []
        for definition in sorted(definitions, key=lambda item: (item.percentage, item.display_order)):
            row = rows_by_key.get(QuotaKey(context, definition.id))
            if row is not None:
                used = to_decimal(row.used_quota)
                remaining = to_decimal(row.remaining_quota) if row.remaining_quota is not None else None
                if definition.quota_limit is None:
                    remaining = None
                current_amount = to_decimal(row.current_amount)
                next_refresh_at = ensure_utc(row.next_refresh_at) if row.next_refresh_at else None
                last_refresh_at = ensure_utc(row.last_refresh_at) if row.last_refresh_at else None
            else:
                used = ZERO
                remaining = definition.quota_limit
                current_amount = ZERO
                next_refresh_at = next_refresh_for(definition, now=now)
                last_refresh_at = None

            entries.append(
                QuotaEntryView(
                    reward_id=definition.id,
                    percentage=definition.percentage,
                    calculation_method=definition.calculation_method,
                    calculation_basis=definition.calculation_basis,
                    quota_limit=definition.quota_limit,
                    used_quota=used,
                    remaining_quota=remaining,
                    current_amount=current_amount,
                    reference_amount=reference_amount(remaining, definition.percentage),
                    refresh_time=describe_refresh(
                        definition.refresh_type,
                        definition.refresh_value,
                        definition.refresh_date,
                        definition.activity_end_date,
                    ),
                    next_refresh_at=next_refresh_at,
                    last_refresh_at=last_refresh_at,
                )
            )
        return entries


__all__ = [
    "QuotaEntryView",
    "QuotaGroupView",
    "QuotaService",
    "format_percentage",
    "parse_used_quota",
    "reference_amount",
]
