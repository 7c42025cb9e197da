# revshare/api/v1/earnings.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.api.deps.auth import require_admin, require_instructor
from revshare.core.balance import compute_balance, get_earnings_summary
from revshare.core.earning_ledger import correct_earning_status, list_earnings
from revshare.core.earnings_export import export_earnings_csv
from revshare.core.platform_settings import load_settings_snapshot
from revshare.db.session import get_db
from revshare.models.user import User
from revshare.schemas.earnings import (
    AmountCount,
    BalanceOut,
    EarningFilters,
    EarningOut,
    EarningsPageOut,
    EarningsSummaryOut,
    EarningStatusCorrection,
    StatusTotals,
)

router = APIRouter(prefix="/earnings", tags=["earnings"])


def _filters(
    status: Optional[str] = Query(None),
    course_id: Optional[UUID] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
) -> EarningFilters:
    return EarningFilters(status=status, course_id=course_id, start_date=start_date, end_date=end_date)


@router.get("/me", response_model=EarningsPageOut)
async def list_my_earnings(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    filters: EarningFilters = Depends(_filters),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    Instructor earnings, newest first.
    Pagination:
      - limit (1..100)
      - offset (>=0)
    """
    rows, total = await list_earnings(db, user.id, filters, limit=limit, offset=offset)
    return EarningsPageOut(
        items=[EarningOut.model_validate(e) for e in rows],
        limit=limit,
        offset=offset,
        total=total,
    )


@router.get("/me/summary", response_model=EarningsSummaryOut)
async def my_earnings_summary(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
):
    snapshot = await load_settings_snapshot(db)
    summary = await get_earnings_summary(db, user.id, snapshot)
    return EarningsSummaryOut(
        instructor_id=summary.instructor_id,
        currency=summary.currency,
        earnings={
            status: StatusTotals(
                amount=b["amount"],
                count=b["count"],
                by_currency={c: AmountCount(**v) for c, v in b["by_currency"].items()},
            )
            for status, b in summary.earnings.items()
        },
        available=summary.available,
        pending=AmountCount(amount=summary.pending.amount, count=summary.pending.count),
        rejected=AmountCount(amount=summary.rejected.amount, count=summary.rejected.count),
        paid=AmountCount(amount=summary.paid.amount, count=summary.paid.count),
        minimum_payout=summary.minimum_payout,
        can_request_payout=summary.can_request_payout,
    )


@router.get("/me/balance", response_model=BalanceOut)
async def my_balance(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
):
    snapshot = await load_settings_snapshot(db)
    currency = snapshot.default_currency
    b = await compute_balance(db, user.id, currency)
    minimum = snapshot.minimum_payout_for(currency)
    return BalanceOut(
        instructor_id=user.id,
        currency=currency,
        accrued_total=b.accrued_total,
        pending_total=b.pending_total,
        approved_total=b.approved_total,
        available_amount=b.available,
        minimum_payout=minimum,
        can_request_payout=b.available >= minimum and b.available > 0,
    )


@router.get("/me/export")
async def export_my_earnings(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    filters: EarningFilters = Depends(_filters),
):
    body = await export_earnings_csv(db, user.id, filters)
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="earnings-{user.id}.csv"'},
    )


@router.get("", response_model=EarningsPageOut)
async def list_all_earnings(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    instructor_id: Optional[UUID] = Query(None),
    filters: EarningFilters = Depends(_filters),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    rows, total = await list_earnings(db, instructor_id, filters, limit=limit, offset=offset)
    return EarningsPageOut(
        items=[EarningOut.model_validate(e) for e in rows],
        limit=limit,
        offset=offset,
        total=total,
    )


@router.patch("/{earning_id}/status", response_model=EarningOut)
async def correct_status(
    earning_id: UUID,
    payload: EarningStatusCorrection,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    earning = await correct_earning_status(
        db, earning_id, payload.status, admin_id=admin.id, notes=payload.notes
    )
    return EarningOut.model_validate(earning)
