# revshare/api/v1/payments.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.api.deps.auth import require_admin
from revshare.api.deps.services import get_dispatcher
from revshare.core.earning_ledger import process_payment_approval
from revshare.core.notifications import NotificationDispatcher
from revshare.db.session import get_db
from revshare.models.user import User
from revshare.schemas.payments import EarningPairOut, PaymentApprovedEvent

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/approved", response_model=EarningPairOut, status_code=status.HTTP_201_CREATED)
async def payment_approved(
    payload: PaymentApprovedEvent,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Intake for an approved student payment. Writes the earning pair once;
    a replay for the same payment_id answers 409.
    """
    pair = await process_payment_approval(
        db,
        payload,
        dispatcher=dispatcher,
        actor_id=admin.id,
        actor_role="admin",
    )
    ie = pair.instructor
    return EarningPairOut(
        payment_id=ie.payment_id,
        instructor_earning_id=ie.id,
        platform_earning_id=pair.platform.id,
        currency=ie.currency,
        paid_amount=ie.student_paid_amount,
        instructor_amount=ie.instructor_amount,
        platform_amount=ie.platform_amount,
        instructor_discount=ie.instructor_discount,
        platform_discount=ie.platform_discount,
        instructor_percentage=float(ie.instructor_percentage),
        platform_percentage=float(ie.platform_percentage),
        agreement_id=ie.agreement_id,
    )
