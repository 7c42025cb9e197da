# backend/revshare/core/payout_workflow.py
"""
Payout request state machine.

    pending --approve--> approved      (terminal, proof may still be attached)
    pending --reject---> rejected --re_request--> pending
    pending --cancel---> cancelled     (only within the cancel window)

requested_amount is what gets transferred. earning_ids are picked by
select_earnings_for_payout() for traceability only and never feed back into
the amount or the balance.

Every mutation is: validate -> persist (authoritative) -> audit -> notify.
Audit and notification steps are best-effort and never undo the persist.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from revshare.core import audit_trail
from revshare.core.balance import get_available_balance
from revshare.core.clock import as_utc, utcnow
from revshare.core.config import settings
from revshare.core.errors import ConflictError, MissingDependency, NotPermitted, ValidationFailed
from revshare.core.notifications import (
    CATEGORY_BALANCE_REFRESH,
    CATEGORY_ERROR,
    CATEGORY_INFO,
    CATEGORY_SUCCESS,
    CHANNEL_EMAIL,
    CHANNEL_IN_APP,
    CHANNEL_REALTIME,
    Notification,
    NotificationDispatcher,
    dispatch_best_effort,
    dispatch_in_background,
)
from revshare.core.platform_settings import SettingsSnapshot, load_settings_snapshot
from revshare.core.proof_storage import ProofFile, ProofReference, ProofStorage, validate_proof
from revshare.models.instructor_earning import (
    EARNING_ACCRUED,
    EARNING_PAID,
    EARNING_REJECTED,
    InstructorEarning,
)
from revshare.models.payout_request import (
    PAYOUT_APPROVED,
    PAYOUT_CANCELLED,
    PAYOUT_PENDING,
    PAYOUT_REJECTED,
    PAYOUT_STATUSES,
    PayoutRequest,
)
from revshare.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, User
from revshare.schemas.payouts import PayoutRequestCreate

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 20


@dataclass(frozen=True)
class EarningCandidate:
    id: uuid.UUID
    amount: int


@dataclass(frozen=True)
class LinkedEarnings:
    total: int
    count: int


def _money(amount: int, currency: str) -> str:
    return f"{amount / 100:,.2f} {currency}"


def select_earnings_for_payout(candidates: Iterable[EarningCandidate], requested_amount: int) -> list[EarningCandidate]:
    """
    Greedy pick, smallest first, until the running sum covers requested_amount.
    If the candidates never cover it, all of them are returned.

    NOTE: bookkeeping only. The result is stored as earning_ids on the
    request; the transfer amount is requested_amount regardless of what
    these earnings add up to.
    """
    ordered = sorted(candidates, key=lambda c: (c.amount, str(c.id)))
    picked: list[EarningCandidate] = []
    running = 0
    for c in ordered:
        picked.append(c)
        running += c.amount
        if running >= requested_amount:
            break
    return picked


async def get_payout_request(db: AsyncSession, request_id: uuid.UUID) -> PayoutRequest:
    request = await db.get(PayoutRequest, request_id)
    if request is None:
        raise MissingDependency("PAYOUT_NOT_FOUND", "Payout request not found")
    return request


def _ensure_owner(request: PayoutRequest, instructor_id: uuid.UUID) -> None:
    if request.instructor_id != instructor_id:
        raise NotPermitted("NOT_AUTHORIZED", "Not authorized")


async def _find_by_status(db: AsyncSession, instructor_id: uuid.UUID, status: str) -> Optional[PayoutRequest]:
    stmt = (
        select(PayoutRequest)
        .where(PayoutRequest.instructor_id == instructor_id, PayoutRequest.status == status)
        .order_by(PayoutRequest.processed_at.desc(), PayoutRequest.requested_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _unlinked_candidates(db: AsyncSession, instructor_id: uuid.UUID, currency: str) -> list[EarningCandidate]:
    stmt = select(InstructorEarning.id, InstructorEarning.instructor_amount).where(
        InstructorEarning.instructor_id == instructor_id,
        InstructorEarning.status.in_((EARNING_ACCRUED, EARNING_REJECTED)),
        InstructorEarning.payout_request_id.is_(None),
        InstructorEarning.currency == currency,
    )
    return [EarningCandidate(id=row[0], amount=int(row[1])) for row in (await db.execute(stmt)).all()]


def _validate_amount(requested: int, *, minimum: int, available: int, currency: str) -> None:
    if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
        raise ValidationFailed("INVALID_AMOUNT", "Invalid amount. Please enter a valid positive number.")
    if requested < minimum:
        raise ValidationFailed(
            "BELOW_MINIMUM_PAYOUT",
            f"Minimum payout amount is {_money(minimum, currency)}",
            minimum=minimum,
        )
    if requested > available:
        raise ValidationFailed(
            "EXCEEDS_AVAILABLE_BALANCE",
            f"Requested amount ({_money(requested, currency)}) exceeds your available balance "
            f"({_money(available, currency)})",
            available=available,
        )


async def _active_admin_ids(db: AsyncSession) -> list[uuid.UUID]:
    stmt = select(User.id).where(User.role == ROLE_ADMIN, User.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def _notify_admins(db: AsyncSession, dispatcher: NotificationDispatcher, message: str) -> None:
    try:
        admin_ids = await _active_admin_ids(db)
    except Exception:
        logger.exception("Could not load admins for notification")
        return
    for admin_id in admin_ids:
        await dispatch_best_effort(
            dispatcher,
            Notification(recipient_id=admin_id, message=message, category=CATEGORY_INFO, channel=CHANNEL_IN_APP),
        )


async def _refresh_balance(dispatcher: NotificationDispatcher, instructor_id: uuid.UUID) -> None:
    await dispatch_best_effort(
        dispatcher,
        Notification(
            recipient_id=instructor_id,
            message="balance summary changed",
            category=CATEGORY_BALANCE_REFRESH,
            channel=CHANNEL_REALTIME,
        ),
    )


async def create_payout_request(
    db: AsyncSession,
    instructor_id: uuid.UUID,
    payload: PayoutRequestCreate,
    *,
    dispatcher: NotificationDispatcher,
    ip_address: str | None = None,
    user_agent: str | None = None,
    snapshot: SettingsSnapshot | None = None,
) -> PayoutRequest:
    if await _find_by_status(db, instructor_id, PAYOUT_PENDING) is not None:
        raise ConflictError(
            "PAYOUT_ALREADY_PENDING",
            "You already have a pending payout request. Please wait for it to be processed.",
        )
    if await _find_by_status(db, instructor_id, PAYOUT_REJECTED) is not None:
        raise ConflictError(
            "REJECTED_REQUEST_EXISTS",
            "You have a rejected payout request. Re-request it instead of creating a new one.",
        )

    instructor = await db.get(User, instructor_id)
    if instructor is None or instructor.role != ROLE_INSTRUCTOR:
        raise MissingDependency("INSTRUCTOR_NOT_FOUND", "Instructor not found")

    snapshot = snapshot or await load_settings_snapshot(db)
    currency = snapshot.default_currency

    candidates = await _unlinked_candidates(db, instructor_id, currency)
    if not candidates:
        raise ConflictError("NO_EARNINGS_AVAILABLE", "No accrued or rejected earnings available for payout")

    available = await get_available_balance(db, instructor_id, currency)
    requested = payload.requested_amount if payload.requested_amount is not None else available
    _validate_amount(
        requested,
        minimum=snapshot.minimum_payout_for(currency),
        available=available,
        currency=currency,
    )

    selected = select_earnings_for_payout(candidates, requested)

    report = await audit_trail.detect_suspicious(
        db, instructor_id, window_hours=settings.SUSPICIOUS_WINDOW_HOURS
    )
    flags = [report.reason] if report.suspicious and report.reason else []
    if flags:
        logger.warning("Suspicious payout activity instructor=%s flags=%s", instructor_id, flags)

    receiver = payload.receiver
    request = PayoutRequest(
        instructor_id=instructor_id,
        requested_amount=requested,
        currency=currency,
        earning_ids=[str(c.id) for c in selected],
        payment_method=payload.payment_method,
        receiver_name=receiver.receiver_name,
        receiver_phone=receiver.receiver_phone,
        receiver_location=receiver.receiver_location,
        account_details=receiver.account_details,
        status=PAYOUT_PENDING,
        requested_at=utcnow(),
        ip_address=ip_address,
        user_agent=user_agent,
        security_flags=flags,
    )
    db.add(request)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        # lost the race against a concurrent create
        raise ConflictError(
            "PAYOUT_ALREADY_PENDING",
            "You already have a pending payout request. Please wait for it to be processed.",
        )

    logger.info(
        "Payout requested id=%s instructor=%s amount=%s %s earnings=%s",
        request.id,
        instructor_id,
        requested,
        currency,
        len(selected),
    )

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="create",
        actor_id=instructor_id,
        actor_role="instructor",
        new_state=request.snapshot(),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    await _refresh_balance(dispatcher, instructor_id)
    await _notify_admins(
        db,
        dispatcher,
        f"New payout request from {instructor.display_name} for {_money(requested, currency)}",
    )
    return request


async def re_request_payout(
    db: AsyncSession,
    request_id: uuid.UUID,
    instructor_id: uuid.UUID,
    *,
    dispatcher: NotificationDispatcher,
    ip_address: str | None = None,
) -> PayoutRequest:
    """
    rejected -> pending on the same record. Amount, currency and earning_ids
    are left untouched (the ORM guard refuses any attempt to change them).
    """
    request = await get_payout_request(db, request_id)
    _ensure_owner(request, instructor_id)
    if request.status != PAYOUT_REJECTED:
        raise ConflictError("NOT_REJECTED", "Only rejected requests can be re-requested")

    previous = request.snapshot()
    request.status = PAYOUT_PENDING
    request.rejection_reason = None
    request.processed_at = None
    request.processed_by = None
    request.requested_at = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "PAYOUT_ALREADY_PENDING",
            "You already have a pending payout request. Please wait for it to be processed.",
        )

    logger.info("Payout re-requested id=%s instructor=%s", request.id, instructor_id)

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="re_request",
        actor_id=instructor_id,
        actor_role="instructor",
        previous_state=previous,
        new_state=request.snapshot(),
        ip_address=ip_address,
    )

    instructor = await db.get(User, instructor_id)
    name = instructor.display_name if instructor else str(instructor_id)
    await _notify_admins(
        db,
        dispatcher,
        f"Payout re-request from {name} for {_money(request.requested_amount, request.currency)}",
    )
    await _refresh_balance(dispatcher, instructor_id)
    return request


def cancel_deadline(request: PayoutRequest) -> datetime:
    return as_utc(request.requested_at) + timedelta(hours=settings.PAYOUT_CANCEL_WINDOW_HOURS)


def can_be_cancelled(request: PayoutRequest, now: datetime | None = None) -> bool:
    return request.status == PAYOUT_PENDING and (now or utcnow()) <= cancel_deadline(request)


async def cancel_payout_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    instructor_id: uuid.UUID,
    reason: str | None = None,
    *,
    dispatcher: NotificationDispatcher | None = None,
    ip_address: str | None = None,
    now: datetime | None = None,
) -> PayoutRequest:
    request = await get_payout_request(db, request_id)
    _ensure_owner(request, instructor_id)
    if request.status != PAYOUT_PENDING:
        raise ConflictError("NOT_PENDING", "Can only cancel pending requests")
    if not can_be_cancelled(request, now):
        raise ConflictError(
            "CANCEL_WINDOW_EXPIRED",
            f"Cannot cancel request after {settings.PAYOUT_CANCEL_WINDOW_HOURS} hours",
        )

    # 1) release earnings first; a retry after a failure below finds the
    #    request still pending and repeats this harmless update
    linked_ids = [uuid.UUID(str(e)) for e in (request.earning_ids or [])]
    await db.execute(
        update(InstructorEarning)
        .where(
            or_(
                InstructorEarning.id.in_(linked_ids),
                InstructorEarning.payout_request_id == request.id,
            )
        )
        .where(InstructorEarning.status != EARNING_PAID)
        .values(status=EARNING_ACCRUED, requested_at=None, payout_request_id=None, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()

    # 2) the request itself
    previous = request.snapshot()
    request.status = PAYOUT_CANCELLED
    request.cancellation_reason = (reason or "").strip() or None
    await db.commit()

    logger.info("Payout cancelled id=%s instructor=%s", request.id, instructor_id)

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="cancel",
        actor_id=instructor_id,
        actor_role="instructor",
        previous_state=previous,
        new_state=request.snapshot(),
        reason=request.cancellation_reason,
        ip_address=ip_address,
    )
    if dispatcher is not None:
        await _refresh_balance(dispatcher, instructor_id)
    return request


async def _record_email_failure(
    session_factory: async_sessionmaker[AsyncSession] | None,
    request_id: uuid.UUID,
    admin_id: uuid.UUID,
) -> None:
    if session_factory is None:
        return
    async with session_factory() as session:
        await audit_trail.append(
            session,
            entity_type="payout_request",
            entity_id=request_id,
            action="email_failed",
            actor_id=admin_id,
            actor_role="admin",
            previous_state={"email_sent": False},
            new_state={"email_sent": False},
            reason="Failed to send approval email",
        )


def _apply_proof(request: PayoutRequest, ref: ProofReference, admin_id: uuid.UUID) -> None:
    request.proof_original_name = ref.original_name
    request.proof_stored_name = ref.stored_name
    request.proof_url = ref.url
    request.proof_mime_type = ref.mime_type
    request.proof_size = ref.size
    request.proof_uploaded_at = ref.uploaded_at
    request.proof_uploaded_by = admin_id


async def approve_payout_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    admin_id: uuid.UUID,
    proof: ProofFile | None,
    *,
    storage: ProofStorage,
    dispatcher: NotificationDispatcher,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    ip_address: str | None = None,
) -> PayoutRequest:
    """
    pending -> approved with a proof of payment. Linked earnings are not
    touched. The instructor email goes out in the background with a time
    bound; a failed delivery only leaves an email_failed audit entry.
    """
    proof = validate_proof(proof)
    request = await get_payout_request(db, request_id)
    if request.status != PAYOUT_PENDING:
        raise ConflictError("NOT_PENDING", "Only pending requests can be approved")

    ref = await storage.store(request.id, proof)

    previous = request.snapshot()
    request.status = PAYOUT_APPROVED
    request.processed_at = utcnow()
    request.processed_by = admin_id
    _apply_proof(request, ref, admin_id)
    await db.commit()

    logger.info(
        "Payout approved id=%s instructor=%s amount=%s %s by=%s",
        request.id,
        request.instructor_id,
        request.requested_amount,
        request.currency,
        admin_id,
    )

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="approve",
        actor_id=admin_id,
        actor_role="admin",
        previous_state=previous,
        new_state=request.snapshot(),
        ip_address=ip_address,
    )

    amount = _money(request.requested_amount, request.currency)
    await dispatch_best_effort(
        dispatcher,
        Notification(
            recipient_id=request.instructor_id,
            message=f"Your payout request for {amount} has been approved and sent.",
            category=CATEGORY_SUCCESS,
            channel=CHANNEL_IN_APP,
        ),
    )
    await _refresh_balance(dispatcher, request.instructor_id)

    request_ref = request.id
    dispatch_in_background(
        dispatcher,
        Notification(
            recipient_id=request.instructor_id,
            subject=f"Payout Approved - {amount}",
            message=(
                "Your payout request has been approved and processed. "
                f"Proof of payment: {ref.url}. Amount: {amount}"
            ),
            category=CATEGORY_SUCCESS,
            channel=CHANNEL_EMAIL,
        ),
        on_failure=lambda: _record_email_failure(session_factory, request_ref, admin_id),
    )
    return request


async def attach_proof(
    db: AsyncSession,
    request_id: uuid.UUID,
    admin_id: uuid.UUID,
    proof: ProofFile | None,
    *,
    storage: ProofStorage,
) -> PayoutRequest:
    """Replace the proof on an already approved request; nothing else may change."""
    proof = validate_proof(proof)
    request = await get_payout_request(db, request_id)
    if request.status != PAYOUT_APPROVED:
        raise ConflictError("NOT_APPROVED", "Proof can only be attached to approved requests")

    ref = await storage.store(request.id, proof)
    previous = {"proof_stored_name": request.proof_stored_name}
    _apply_proof(request, ref, admin_id)
    await db.commit()

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="upload_proof",
        actor_id=admin_id,
        actor_role="admin",
        previous_state=previous,
        new_state={"proof_stored_name": ref.stored_name},
    )
    return request


async def reject_payout_request(
    db: AsyncSession,
    request_id: uuid.UUID,
    admin_id: uuid.UUID,
    reason: str | None,
    *,
    dispatcher: NotificationDispatcher,
    ip_address: str | None = None,
) -> PayoutRequest:
    reason = (reason or "").strip()
    if len(reason) < MIN_REJECTION_REASON_LENGTH:
        raise ValidationFailed(
            "REJECTION_REASON_TOO_SHORT",
            f"Rejection reason is required (minimum {MIN_REJECTION_REASON_LENGTH} characters)",
        )

    request = await get_payout_request(db, request_id)
    if request.status != PAYOUT_PENDING:
        raise ConflictError("NOT_PENDING", "Only pending requests can be rejected")

    previous = request.snapshot()
    request.status = PAYOUT_REJECTED
    request.rejection_reason = reason
    request.processed_at = utcnow()
    request.processed_by = admin_id
    await db.commit()

    logger.info("Payout rejected id=%s instructor=%s by=%s", request.id, request.instructor_id, admin_id)

    await audit_trail.append(
        db,
        entity_type="payout_request",
        entity_id=request.id,
        action="reject",
        actor_id=admin_id,
        actor_role="admin",
        previous_state=previous,
        new_state=request.snapshot(),
        reason=reason,
        ip_address=ip_address,
    )

    amount = _money(request.requested_amount, request.currency)
    await dispatch_best_effort(
        dispatcher,
        Notification(
            recipient_id=request.instructor_id,
            message=f"Your payout request has been rejected. Reason: {reason}",
            category=CATEGORY_ERROR,
            channel=CHANNEL_IN_APP,
        ),
    )
    await dispatch_best_effort(
        dispatcher,
        Notification(
            recipient_id=request.instructor_id,
            subject="Payout Request Rejected",
            message=(
                f"Your payout request for {amount} has been rejected.\n\nReason: {reason}\n\n"
                "Your funds remain in your available balance and you can re-request the payout."
            ),
            category=CATEGORY_ERROR,
            channel=CHANNEL_EMAIL,
        ),
    )
    await _refresh_balance(dispatcher, request.instructor_id)
    return request


async def list_payout_requests(
    db: AsyncSession,
    *,
    instructor_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[Sequence[PayoutRequest], int]:
    """instructor_id=None lists every instructor (admin view)."""
    if status and status not in PAYOUT_STATUSES:
        raise ValidationFailed("INVALID_STATUS_FILTER", f"Unknown payout status {status!r}")
    limit = max(1, min(limit, 100))
    offset = max(0, offset)

    conditions = []
    if instructor_id is not None:
        conditions.append(PayoutRequest.instructor_id == instructor_id)
    if status:
        conditions.append(PayoutRequest.status == status)

    total = await db.scalar(select(func.count()).select_from(PayoutRequest).where(*conditions))
    rows = (
        await db.execute(
            select(PayoutRequest)
            .where(*conditions)
            .order_by(PayoutRequest.requested_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return rows, int(total or 0)


async def linked_earnings(db: AsyncSession, request: PayoutRequest) -> LinkedEarnings:
    """Reference figure for admins; the transfer amount is requested_amount."""
    ids = [uuid.UUID(str(e)) for e in (request.earning_ids or [])]
    if not ids:
        return LinkedEarnings(0, 0)
    stmt = select(
        func.coalesce(func.sum(InstructorEarning.instructor_amount), 0),
        func.count(InstructorEarning.id),
    ).where(InstructorEarning.id.in_(ids))
    total, count = (await db.execute(stmt)).one()
    return LinkedEarnings(int(total or 0), int(count or 0))
