# tests/test_split_calculator.py
from __future__ import annotations

from decimal import Decimal

import pytest

from revshare.core.split_calculator import (
    PaymentAmounts,
    compute_split,
    discount_percentage,
    simple_split,
)

SEVENTY = Decimal("70")
THIRTY = Decimal("30")


def test_plain_payment_splits_seventy_thirty():
    r = compute_split(PaymentAmounts(paid_amount=100_000), instructor_pct=SEVENTY, platform_pct=THIRTY)
    assert r.instructor_amount == 70_000
    assert r.platform_amount == 30_000
    assert r.reconciled is True


def test_wallet_discount_absorbed_by_both_sides():
    r = compute_split(
        PaymentAmounts(
            paid_amount=80_000,
            base_amount=100_000,
            wallet_discount_amount=20_000,
            allows_discount_absorption=True,
        ),
        instructor_pct=SEVENTY,
        platform_pct=THIRTY,
    )
    assert r.platform_discount == 6_000
    assert r.instructor_discount == 14_000
    assert r.instructor_amount == 56_000
    assert r.platform_amount == 24_000
    assert r.total == 80_000


def test_wallet_discount_without_absorption_hits_platform_only():
    r = compute_split(
        PaymentAmounts(
            paid_amount=80_000,
            base_amount=100_000,
            wallet_discount_amount=20_000,
            allows_discount_absorption=False,
        ),
        instructor_pct=SEVENTY,
        platform_pct=THIRTY,
    )
    assert r.instructor_discount == 0
    assert r.platform_discount == 20_000
    assert r.instructor_amount == 70_000
    assert r.platform_amount == 10_000


def test_discount_capped_at_platform_share_when_not_absorbed():
    # platform share on base is 30_000, discount is larger
    r = compute_split(
        PaymentAmounts(
            paid_amount=70_000,
            base_amount=100_000,
            wallet_discount_amount=50_000,
            allows_discount_absorption=False,
        ),
        instructor_pct=SEVENTY,
        platform_pct=THIRTY,
    )
    assert r.reconciled is True
    assert r.platform_discount == 30_000
    assert r.platform_amount == 0
    assert r.instructor_amount == 70_000


def test_mismatched_paid_amount_falls_back_to_simple_split():
    r = compute_split(
        PaymentAmounts(
            paid_amount=90_000,  # should be 80_000
            base_amount=100_000,
            wallet_discount_amount=20_000,
        ),
        instructor_pct=SEVENTY,
        platform_pct=THIRTY,
    )
    assert r.reconciled is False
    assert r.instructor_amount == 63_000
    assert r.platform_amount == 27_000
    assert r.instructor_discount == 0 and r.platform_discount == 0


def test_off_by_one_paid_amount_still_reconciles():
    r = compute_split(
        PaymentAmounts(paid_amount=80_001, base_amount=100_000, wallet_discount_amount=20_000),
        instructor_pct=SEVENTY,
        platform_pct=THIRTY,
    )
    assert r.reconciled is True


def test_rounding_remainder_goes_to_platform():
    r = simple_split(101, Decimal("33.33"))
    assert r.instructor_amount == 33
    assert r.platform_amount == 68


@pytest.mark.parametrize("paid", [1, 7, 99, 1001, 12_345, 999_999, 10_000_001])
@pytest.mark.parametrize("pct", ["0", "12.5", "33.33", "50", "66.67", "70", "99.99", "100"])
def test_amounts_always_sum_to_paid(paid, pct):
    instructor_pct = Decimal(pct)
    r = compute_split(
        PaymentAmounts(paid_amount=paid),
        instructor_pct=instructor_pct,
        platform_pct=Decimal(100) - instructor_pct,
    )
    assert r.instructor_amount >= 0
    assert r.platform_amount >= 0
    assert r.instructor_amount + r.platform_amount == paid


@pytest.mark.parametrize("discount", [1, 333, 5_000, 33_333, 99_999])
def test_absorbed_discount_sums_to_paid_within_one(discount):
    base = 100_000
    r = compute_split(
        PaymentAmounts(paid_amount=base - discount, base_amount=base, wallet_discount_amount=discount),
        instructor_pct=Decimal("66.67"),
        platform_pct=Decimal("33.33"),
    )
    assert r.reconciled is True
    assert abs(r.total - (base - discount)) <= 1


def test_negative_paid_amount_rejected():
    with pytest.raises(ValueError):
        compute_split(PaymentAmounts(paid_amount=-1), instructor_pct=SEVENTY, platform_pct=THIRTY)


def test_discount_percentage_for_reports():
    assert discount_percentage(100_000, 20_000) == 20
    assert discount_percentage(0, 20_000) == 0
