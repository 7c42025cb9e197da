# backend/revshare/core/earning_ledger.py
"""
Earning ledger: one InstructorEarning + one PlatformEarning per approved payment.

There is no cross-row transaction. Recording is an ordered sequence of
retry-safe steps, each committed on its own:

  1. instructor earning  (unique payment_id)
  2. platform earning    (unique payment_id)
  3. audit entry         (best-effort)
  4. notification        (best-effort)

Step 2 failing for any reason other than "already there" (a constraint,
a bad value, a lost connection) compensates step 1 so a retry starts clean. Steps 3-4 never undo 1-2.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core import audit_trail
from revshare.core.agreement_resolver import ActiveSplit, get_active_split
from revshare.core.clock import utcnow
from revshare.core.errors import ConflictError, ImmutableRecordError, MissingDependency, ValidationFailed
from revshare.core.notifications import CHANNEL_IN_APP, CATEGORY_SUCCESS, Notification, NotificationDispatcher, dispatch_best_effort
from revshare.core.platform_settings import SettingsSnapshot, load_settings_snapshot
from revshare.core.split_calculator import PaymentAmounts, SplitResult, compute_split, discount_percentage
from revshare.models.instructor_earning import (
    EARNING_ACCRUED,
    EARNING_PAID,
    EARNING_REJECTED,
    EARNING_REQUESTED,
    EARNING_STATUSES,
    InstructorEarning,
)
from revshare.models.platform_earning import PlatformEarning
from revshare.models.user import ROLE_INSTRUCTOR, User
from revshare.schemas.earnings import EarningFilters
from revshare.schemas.payments import PaymentApprovedEvent

logger = logging.getLogger(__name__)

# Administrative correction paths; "paid" is terminal.
ALLOWED_CORRECTIONS: dict[str, set[str]] = {
    EARNING_ACCRUED: {EARNING_REQUESTED, EARNING_PAID, EARNING_REJECTED},
    EARNING_REQUESTED: {EARNING_ACCRUED, EARNING_PAID, EARNING_REJECTED},
    EARNING_REJECTED: {EARNING_ACCRUED, EARNING_PAID},
    EARNING_PAID: set(),
}


@dataclass(frozen=True)
class EarningPair:
    instructor: InstructorEarning
    platform: PlatformEarning


async def _get_instructor_earning(db: AsyncSession, payment_id: uuid.UUID) -> Optional[InstructorEarning]:
    stmt = select(InstructorEarning).where(InstructorEarning.payment_id == payment_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def _get_platform_earning(db: AsyncSession, payment_id: uuid.UUID) -> Optional[PlatformEarning]:
    stmt = select(PlatformEarning).where(PlatformEarning.payment_id == payment_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_earning_pair(db: AsyncSession, payment_id: uuid.UUID) -> Optional[EarningPair]:
    instructor = await _get_instructor_earning(db, payment_id)
    platform = await _get_platform_earning(db, payment_id)
    if instructor is None or platform is None:
        return None
    return EarningPair(instructor=instructor, platform=platform)


def _platform_twin(earning: InstructorEarning) -> PlatformEarning:
    return PlatformEarning(
        payment_id=earning.payment_id,
        instructor_id=earning.instructor_id,
        course_id=earning.course_id,
        agreement_id=earning.agreement_id,
        currency=earning.currency,
        total_amount=earning.student_paid_amount,
        platform_percentage=earning.platform_percentage,
        instructor_percentage=earning.instructor_percentage,
        platform_amount=earning.platform_amount,
        instructor_amount=earning.instructor_amount,
        platform_discount=earning.platform_discount,
        payment_method=earning.payment_method,
    )


def build_instructor_earning(event: PaymentApprovedEvent, split: ActiveSplit, result: SplitResult) -> InstructorEarning:
    return InstructorEarning(
        payment_id=event.payment_id,
        instructor_id=event.instructor_id,
        student_id=event.student_id,
        student_name=event.student_name,
        course_id=event.course_id,
        course_name=event.course_name,
        section_id=event.section_id,
        section_name=event.section_name,
        agreement_id=split.agreement_id,
        agreement_type=split.agreement_type,
        agreement_version=split.version,
        currency=event.currency,
        student_paid_amount=result.paid_amount,
        base_amount=event.base_amount or event.paid_amount,
        wallet_discount_amount=event.wallet_discount_amount,
        discount_percentage=discount_percentage(event.base_amount, event.wallet_discount_amount),
        instructor_percentage=split.instructor_pct,
        platform_percentage=split.platform_pct,
        instructor_amount=result.instructor_amount,
        platform_amount=result.platform_amount,
        instructor_discount=result.instructor_discount,
        platform_discount=result.platform_discount,
        payment_method=event.payment_method,
        status=EARNING_ACCRUED,
        accrued_at=utcnow(),
    )


async def _discard_instructor_side(db: AsyncSession, earning_id: uuid.UUID, payment_id: uuid.UUID) -> None:
    await db.execute(delete(InstructorEarning).where(InstructorEarning.id == earning_id))
    await db.commit()
    logger.warning("Platform earning write failed; removed instructor earning payment=%s", payment_id)


async def _complete_platform_side(db: AsyncSession, earning: InstructorEarning) -> EarningPair:
    # rollback expires the instance; keep the keys
    earning_id, payment_id = earning.id, earning.payment_id
    platform = _platform_twin(earning)
    db.add(platform)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _get_platform_earning(db, payment_id)
        if existing is not None:
            await db.refresh(earning)
            return EarningPair(instructor=earning, platform=existing)
        await _discard_instructor_side(db, earning_id, payment_id)
        raise
    except Exception:
        await db.rollback()
        await _discard_instructor_side(db, earning_id, payment_id)
        raise
    return EarningPair(instructor=earning, platform=platform)


async def record_earning(db: AsyncSession, event: PaymentApprovedEvent, split: ActiveSplit) -> EarningPair:
    """
    Write the earning pair for one payment. A second call for the same
    payment_id raises ConflictError (DUPLICATE_EARNING); a pair left half
    written by an earlier failure is completed instead.
    """
    result = compute_split(
        PaymentAmounts(
            paid_amount=event.paid_amount,
            base_amount=event.base_amount,
            wallet_discount_amount=event.wallet_discount_amount,
            allows_discount_absorption=event.allows_discount_absorption,
        ),
        instructor_pct=split.instructor_pct,
        platform_pct=split.platform_pct,
    )
    if not result.reconciled:
        logger.warning(
            "Wallet discount did not reconcile payment=%s base=%s discount=%s paid=%s; using simple split",
            event.payment_id,
            event.base_amount,
            event.wallet_discount_amount,
            event.paid_amount,
        )

    earning = build_instructor_earning(event, split, result)
    db.add(earning)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _get_instructor_earning(db, event.payment_id)
        if existing is None:
            raise
        if await _get_platform_earning(db, event.payment_id) is not None:
            raise ConflictError(
                "DUPLICATE_EARNING",
                "Earnings were already recorded for this payment",
                payment_id=str(event.payment_id),
            )
        logger.info("Completing half-written earning pair payment=%s", event.payment_id)
        return await _complete_platform_side(db, existing)

    return await _complete_platform_side(db, earning)


async def process_payment_approval(
    db: AsyncSession,
    event: PaymentApprovedEvent,
    *,
    dispatcher: NotificationDispatcher,
    actor_id: uuid.UUID | None = None,
    actor_role: str = "system",
    snapshot: SettingsSnapshot | None = None,
) -> EarningPair:
    """
    payment approved -> resolve split -> compute -> ledger pair -> audit -> notify
    """
    instructor = await db.get(User, event.instructor_id)
    if instructor is None or instructor.role != ROLE_INSTRUCTOR:
        raise MissingDependency("INSTRUCTOR_NOT_FOUND", "Instructor not found", instructor_id=str(event.instructor_id))

    snapshot = snapshot or await load_settings_snapshot(db)
    split = await get_active_split(db, event.instructor_id, snapshot)
    pair = await record_earning(db, event, split)

    logger.info(
        "Recorded earnings payment=%s instructor=%s source=%s paid=%s instructor_amount=%s platform_amount=%s",
        event.payment_id,
        event.instructor_id,
        split.source,
        pair.instructor.student_paid_amount,
        pair.instructor.instructor_amount,
        pair.instructor.platform_amount,
    )

    await audit_trail.append(
        db,
        entity_type="earning",
        entity_id=pair.instructor.id,
        action="create",
        actor_id=actor_id,
        actor_role=actor_role,
        new_state={
            "payment_id": str(event.payment_id),
            "status": pair.instructor.status,
            "instructor_amount": pair.instructor.instructor_amount,
            "platform_amount": pair.instructor.platform_amount,
            "agreement_id": str(split.agreement_id) if split.agreement_id else None,
            "source": split.source,
        },
    )

    await dispatch_best_effort(
        dispatcher,
        Notification(
            recipient_id=event.instructor_id,
            message=(
                f"New earning of {pair.instructor.instructor_amount / 100:,.2f} {event.currency}"
                f" recorded for {event.course_name or 'your course'}"
            ),
            category=CATEGORY_SUCCESS,
            channel=CHANNEL_IN_APP,
        ),
    )
    return pair


async def correct_earning_status(
    db: AsyncSession,
    earning_id: uuid.UUID,
    new_status: str,
    *,
    admin_id: uuid.UUID,
    notes: str | None = None,
) -> InstructorEarning:
    """
    Administrative correction. Payout resolution never calls this; earnings
    stay "accrued" unless an admin moves them explicitly.
    """
    if new_status not in EARNING_STATUSES:
        raise ValidationFailed("INVALID_EARNING_STATUS", f"Unknown earning status {new_status!r}")

    earning = await db.get(InstructorEarning, earning_id)
    if earning is None:
        raise MissingDependency("EARNING_NOT_FOUND", "Earning not found")

    if earning.status == EARNING_PAID:
        raise ImmutableRecordError("EARNING_IMMUTABLE", "Earning is paid and can no longer be modified")

    if new_status not in ALLOWED_CORRECTIONS[earning.status]:
        raise ConflictError(
            "INVALID_EARNING_TRANSITION",
            f"Cannot move earning from {earning.status} to {new_status}",
        )

    previous = {"status": earning.status}
    now = utcnow()
    earning.status = new_status
    if new_status == EARNING_REQUESTED:
        earning.requested_at = now
    elif new_status == EARNING_PAID:
        earning.paid_at = now
    elif new_status == EARNING_REJECTED:
        earning.rejected_at = now
    elif new_status == EARNING_ACCRUED:
        earning.requested_at = None
        earning.payout_request_id = None
    if notes is not None:
        earning.notes = notes

    await db.commit()

    await audit_trail.append(
        db,
        entity_type="earning",
        entity_id=earning.id,
        action="status_change",
        actor_id=admin_id,
        actor_role="admin",
        previous_state=previous,
        new_state={"status": new_status},
        reason=notes,
    )
    return earning


def _apply_filters(stmt, instructor_id: uuid.UUID | None, filters: EarningFilters | None):
    if instructor_id is not None:
        stmt = stmt.where(InstructorEarning.instructor_id == instructor_id)
    if filters is None:
        return stmt
    if filters.status:
        stmt = stmt.where(InstructorEarning.status == filters.status)
    if filters.course_id:
        stmt = stmt.where(InstructorEarning.course_id == filters.course_id)
    if filters.start_date:
        stmt = stmt.where(InstructorEarning.accrued_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(InstructorEarning.accrued_at <= filters.end_date)
    return stmt


async def list_earnings(
    db: AsyncSession,
    instructor_id: uuid.UUID | None,
    filters: EarningFilters | None = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[InstructorEarning], int]:
    limit = max(1, min(limit, 100))
    offset = max(0, offset)

    total_stmt = _apply_filters(select(func.count()).select_from(InstructorEarning), instructor_id, filters)
    total = (await db.execute(total_stmt)).scalar_one()

    stmt = (
        _apply_filters(select(InstructorEarning), instructor_id, filters)
        .order_by(InstructorEarning.accrued_at.desc(), InstructorEarning.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return rows, int(total or 0)


async def iter_earnings_for_export(
    db: AsyncSession,
    instructor_id: uuid.UUID | None,
    filters: EarningFilters | None = None,
) -> Sequence[InstructorEarning]:
    stmt = _apply_filters(select(InstructorEarning), instructor_id, filters).order_by(InstructorEarning.accrued_at.desc())
    return (await db.execute(stmt)).scalars().all()
