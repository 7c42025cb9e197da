# backend/revshare/core/balance.py
"""
Balance projection (read-only).

  available = sum(accrued earnings)
            - sum(pending payout requests)
            - sum(approved payout requests)

Payout amounts come from PayoutRequest.requested_amount, never from the
linked earnings, because payout resolution does not touch earning status.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.platform_settings import SettingsSnapshot
from revshare.models.instructor_earning import EARNING_ACCRUED, EARNING_STATUSES, InstructorEarning
from revshare.models.payout_request import (
    PAYOUT_APPROVED,
    PAYOUT_PENDING,
    PAYOUT_REJECTED,
    PayoutRequest,
)


@dataclass(frozen=True)
class BalanceBreakdown:
    currency: str
    accrued_total: int
    pending_total: int
    approved_total: int

    @property
    def available(self) -> int:
        return self.accrued_total - self.pending_total - self.approved_total


@dataclass
class AmountCount:
    amount: int = 0
    count: int = 0


@dataclass
class EarningsSummary:
    instructor_id: uuid.UUID
    currency: str
    earnings: dict[str, dict] = field(default_factory=dict)
    available: int = 0
    pending: AmountCount = field(default_factory=AmountCount)
    rejected: AmountCount = field(default_factory=AmountCount)
    paid: AmountCount = field(default_factory=AmountCount)
    minimum_payout: int = 0

    @property
    def can_request_payout(self) -> bool:
        return self.available >= self.minimum_payout and self.available > 0


async def _sum_accrued(db: AsyncSession, instructor_id: uuid.UUID, currency: str) -> int:
    stmt = select(func.coalesce(func.sum(InstructorEarning.instructor_amount), 0)).where(
        InstructorEarning.instructor_id == instructor_id,
        InstructorEarning.status == EARNING_ACCRUED,
        InstructorEarning.currency == currency,
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def _payout_totals(db: AsyncSession, instructor_id: uuid.UUID, currency: str) -> dict[str, AmountCount]:
    stmt = (
        select(
            PayoutRequest.status,
            func.coalesce(func.sum(PayoutRequest.requested_amount), 0),
            func.count(PayoutRequest.id),
        )
        .where(PayoutRequest.instructor_id == instructor_id, PayoutRequest.currency == currency)
        .group_by(PayoutRequest.status)
    )
    rows = (await db.execute(stmt)).all()
    return {status: AmountCount(int(total or 0), int(count or 0)) for status, total, count in rows}


async def compute_balance(db: AsyncSession, instructor_id: uuid.UUID, currency: str) -> BalanceBreakdown:
    accrued = await _sum_accrued(db, instructor_id, currency)
    totals = await _payout_totals(db, instructor_id, currency)
    return BalanceBreakdown(
        currency=currency,
        accrued_total=accrued,
        pending_total=totals.get(PAYOUT_PENDING, AmountCount()).amount,
        approved_total=totals.get(PAYOUT_APPROVED, AmountCount()).amount,
    )


async def get_available_balance(db: AsyncSession, instructor_id: uuid.UUID, currency: str) -> int:
    return (await compute_balance(db, instructor_id, currency)).available


async def get_earnings_summary(
    db: AsyncSession,
    instructor_id: uuid.UUID,
    snapshot: SettingsSnapshot,
) -> EarningsSummary:
    currency = snapshot.default_currency

    by_status_stmt = (
        select(
            InstructorEarning.status,
            InstructorEarning.currency,
            func.coalesce(func.sum(InstructorEarning.instructor_amount), 0),
            func.count(InstructorEarning.id),
        )
        .where(InstructorEarning.instructor_id == instructor_id)
        .group_by(InstructorEarning.status, InstructorEarning.currency)
    )
    earnings: dict[str, dict] = {
        s: {"amount": 0, "count": 0, "by_currency": {}} for s in sorted(EARNING_STATUSES)
    }
    for status, cur, total, count in (await db.execute(by_status_stmt)).all():
        bucket = earnings.setdefault(status, {"amount": 0, "count": 0, "by_currency": {}})
        bucket["by_currency"][cur] = {"amount": int(total or 0), "count": int(count or 0)}
        if cur == currency:
            bucket["amount"] += int(total or 0)
            bucket["count"] += int(count or 0)

    accrued_total = earnings[EARNING_ACCRUED]["amount"]
    totals = await _payout_totals(db, instructor_id, currency)
    pending = totals.get(PAYOUT_PENDING, AmountCount())
    approved = totals.get(PAYOUT_APPROVED, AmountCount())
    rejected = totals.get(PAYOUT_REJECTED, AmountCount())

    available = accrued_total - pending.amount - approved.amount
    return EarningsSummary(
        instructor_id=instructor_id,
        currency=currency,
        earnings=earnings,
        # displayed balance never goes negative
        available=max(0, available),
        pending=pending,
        rejected=rejected,
        paid=approved,
        minimum_payout=snapshot.minimum_payout_for(currency),
    )
