# backend/revshare/core/split_calculator.py
"""
Revenue split arithmetic for ONE approved payment.

All amounts are integer minor units. Percentages are Decimals (0..100).

Rules:
  - no discount: instructor = floor(paid * pct / 100); platform gets the rest,
    so the rounding remainder always lands on the platform side.
  - wallet discount: shares are computed on the base (pre-discount) price and
    the discount is taken out of them:
      * absorption allowed -> discount (capped at base) split by percentage weight
      * absorption refused -> discount capped at the platform share, platform only
  - if the declared paid amount does not match base - discount (+-1), the
    discount bookkeeping is ignored and the no-discount rule is applied to the
    amount actually paid. This keeps approvals flowing; it is not an error.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

RECONCILIATION_TOLERANCE = 1

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class PaymentAmounts:
    paid_amount: int
    base_amount: int = 0
    wallet_discount_amount: int = 0
    allows_discount_absorption: bool = True


@dataclass(frozen=True)
class SplitResult:
    paid_amount: int
    instructor_amount: int
    platform_amount: int
    instructor_discount: int = 0
    platform_discount: int = 0
    reconciled: bool = True

    @property
    def total(self) -> int:
        return self.instructor_amount + self.platform_amount


def _floor_share(amount: int, pct: Decimal) -> int:
    return int((Decimal(amount) * pct / HUNDRED).to_integral_value(rounding=ROUND_FLOOR))


def simple_split(paid_amount: int, instructor_pct: Decimal) -> SplitResult:
    instructor_amount = _floor_share(paid_amount, instructor_pct)
    return SplitResult(
        paid_amount=paid_amount,
        instructor_amount=instructor_amount,
        platform_amount=paid_amount - instructor_amount,
    )


def compute_split(
    payment: PaymentAmounts,
    *,
    instructor_pct: Decimal,
    platform_pct: Decimal,
) -> SplitResult:
    instructor_pct = Decimal(instructor_pct)
    platform_pct = Decimal(platform_pct)

    if payment.paid_amount < 0:
        raise ValueError("paid_amount cannot be negative")
    if not (Decimal(0) <= instructor_pct <= HUNDRED):
        raise ValueError("instructor percentage must be within 0..100")

    base = payment.base_amount
    discount = payment.wallet_discount_amount
    if not base or discount <= 0:
        return simple_split(payment.paid_amount, instructor_pct)

    instructor_on_base = _floor_share(base, instructor_pct)
    platform_on_base = base - instructor_on_base

    if payment.allows_discount_absorption:
        effective_discount = min(discount, base)
    else:
        effective_discount = min(discount, platform_on_base)

    expected_paid = base - effective_discount
    if abs(expected_paid - payment.paid_amount) > RECONCILIATION_TOLERANCE:
        fallback = simple_split(payment.paid_amount, instructor_pct)
        return SplitResult(
            paid_amount=fallback.paid_amount,
            instructor_amount=fallback.instructor_amount,
            platform_amount=fallback.platform_amount,
            reconciled=False,
        )

    if payment.allows_discount_absorption:
        weight = instructor_pct + platform_pct or HUNDRED
        platform_discount = int(
            (Decimal(effective_discount) * platform_pct / weight).to_integral_value(rounding=ROUND_HALF_UP)
        )
        instructor_discount = effective_discount - platform_discount
    else:
        platform_discount = effective_discount
        instructor_discount = 0

    return SplitResult(
        paid_amount=expected_paid,
        instructor_amount=max(0, instructor_on_base - instructor_discount),
        platform_amount=max(0, platform_on_base - platform_discount),
        instructor_discount=instructor_discount,
        platform_discount=platform_discount,
    )


def discount_percentage(base_amount: int, wallet_discount_amount: int) -> int:
    """Whole-percent share of the base price covered by the wallet (reporting only)."""
    if base_amount <= 0:
        return 0
    pct = Decimal(wallet_discount_amount) * HUNDRED / Decimal(base_amount)
    return int(pct.to_integral_value(rounding=ROUND_HALF_UP))
