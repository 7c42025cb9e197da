# backend/revshare/core/agreements.py
"""
Revenue agreement lifecycle: propose -> approve | reject.

Approval expires every other active agreement of the instructor and
activates the new one in the same transaction, so the instructor is never
left without an agreement. The partial unique index on (instructor_id) for
approved+active rows backs this up under concurrent approvals.
"""
from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core import audit_trail
from revshare.core.clock import utcnow
from revshare.core.errors import ConflictError, MissingDependency, NotPermitted, ValidationFailed
from revshare.models.revenue_agreement import (
    AGREEMENT_APPROVED,
    AGREEMENT_EXPIRED,
    AGREEMENT_PENDING,
    AGREEMENT_REJECTED,
    AGREEMENT_STATUSES,
    AGREEMENT_TYPES,
    RevenueAgreement,
)
from revshare.models.user import ROLE_INSTRUCTOR, User

logger = logging.getLogger(__name__)

PERCENTAGE_TOLERANCE = Decimal("0.01")


def validate_percentages(platform_pct: Decimal, instructor_pct: Decimal) -> tuple[Decimal, Decimal]:
    platform_pct = Decimal(str(platform_pct))
    instructor_pct = Decimal(str(instructor_pct))
    for name, value in (("platform", platform_pct), ("instructor", instructor_pct)):
        if value < 0 or value > 100:
            raise ValidationFailed("INVALID_PERCENTAGE", f"{name} percentage must be within 0..100")
    if abs(platform_pct + instructor_pct - 100) > PERCENTAGE_TOLERANCE:
        raise ValidationFailed("PERCENTAGES_MUST_SUM_TO_100", "Platform and instructor percentages must sum to 100%")
    return platform_pct, instructor_pct


async def _latest_agreement(db: AsyncSession, instructor_id: uuid.UUID) -> RevenueAgreement | None:
    stmt = (
        select(RevenueAgreement)
        .where(RevenueAgreement.instructor_id == instructor_id)
        .order_by(RevenueAgreement.version.desc(), RevenueAgreement.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def propose_agreement(
    db: AsyncSession,
    *,
    instructor_id: uuid.UUID,
    platform_pct: Decimal,
    instructor_pct: Decimal,
    created_by: uuid.UUID | None,
    agreement_type: str = "custom",
    admin_notes: str | None = None,
) -> RevenueAgreement:
    platform_pct, instructor_pct = validate_percentages(platform_pct, instructor_pct)
    if agreement_type not in AGREEMENT_TYPES:
        raise ValidationFailed("INVALID_AGREEMENT_TYPE", f"agreement_type must be one of {sorted(AGREEMENT_TYPES)}")

    instructor = await db.get(User, instructor_id)
    if instructor is None or instructor.role != ROLE_INSTRUCTOR:
        raise MissingDependency("INSTRUCTOR_NOT_FOUND", "Instructor not found")

    previous = await _latest_agreement(db, instructor_id)
    agreement = RevenueAgreement(
        instructor_id=instructor_id,
        agreement_type=agreement_type,
        platform_percentage=platform_pct,
        instructor_percentage=instructor_pct,
        status=AGREEMENT_PENDING,
        is_active=False,
        version=(previous.version + 1) if previous else 1,
        previous_agreement_id=previous.id if previous else None,
        admin_notes=admin_notes,
        created_by=created_by,
    )
    db.add(agreement)
    await db.commit()

    await audit_trail.append(
        db,
        entity_type="agreement",
        entity_id=agreement.id,
        action="create",
        actor_id=created_by,
        actor_role="admin",
        new_state={
            "status": agreement.status,
            "platform_percentage": str(platform_pct),
            "instructor_percentage": str(instructor_pct),
            "version": agreement.version,
        },
    )
    return agreement


async def _load_pending(db: AsyncSession, agreement_id: uuid.UUID) -> RevenueAgreement:
    agreement = await db.get(RevenueAgreement, agreement_id)
    if agreement is None:
        raise MissingDependency("AGREEMENT_NOT_FOUND", "Agreement not found")
    if agreement.status != AGREEMENT_PENDING:
        raise ConflictError("AGREEMENT_NOT_PENDING", f"Agreement is {agreement.status}, not pending")
    return agreement


def _check_actor(agreement: RevenueAgreement, actor_id: uuid.UUID, actor_role: str) -> None:
    if actor_role == "instructor" and agreement.instructor_id != actor_id:
        raise NotPermitted("NOT_AUTHORIZED", "Not authorized to act on this agreement")


async def approve_agreement(
    db: AsyncSession,
    agreement_id: uuid.UUID,
    *,
    actor_id: uuid.UUID,
    actor_role: str,
) -> RevenueAgreement:
    agreement = await _load_pending(db, agreement_id)
    _check_actor(agreement, actor_id, actor_role)

    # retire whatever is active now and activate the new one in a single
    # transaction; a failed activation leaves the current agreement in force
    await db.execute(
        update(RevenueAgreement)
        .where(RevenueAgreement.instructor_id == agreement.instructor_id)
        .where(RevenueAgreement.id != agreement.id)
        .where(RevenueAgreement.is_active.is_(True))
        .values(is_active=False, status=AGREEMENT_EXPIRED, updated_at=utcnow())
    )
    # the partial unique index rejects a concurrent twin
    agreement.status = AGREEMENT_APPROVED
    agreement.is_active = True
    agreement.approved_at = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "ACTIVE_AGREEMENT_EXISTS",
            "Another agreement was activated concurrently for this instructor",
        )

    logger.info("Agreement approved id=%s instructor=%s version=%s", agreement.id, agreement.instructor_id, agreement.version)

    await audit_trail.append(
        db,
        entity_type="agreement",
        entity_id=agreement.id,
        action="approve",
        actor_id=actor_id,
        actor_role=actor_role,
        previous_state={"status": AGREEMENT_PENDING, "is_active": False},
        new_state={"status": AGREEMENT_APPROVED, "is_active": True},
    )
    return agreement


async def reject_agreement(
    db: AsyncSession,
    agreement_id: uuid.UUID,
    reason: str,
    *,
    actor_id: uuid.UUID,
    actor_role: str,
) -> RevenueAgreement:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("REJECTION_REASON_REQUIRED", "A rejection reason is required")

    agreement = await _load_pending(db, agreement_id)
    _check_actor(agreement, actor_id, actor_role)

    agreement.status = AGREEMENT_REJECTED
    agreement.is_active = False
    agreement.rejection_reason = reason
    agreement.rejected_at = utcnow()
    await db.commit()

    await audit_trail.append(
        db,
        entity_type="agreement",
        entity_id=agreement.id,
        action="reject",
        actor_id=actor_id,
        actor_role=actor_role,
        previous_state={"status": AGREEMENT_PENDING},
        new_state={"status": AGREEMENT_REJECTED},
        reason=reason,
    )
    return agreement


async def list_agreements(
    db: AsyncSession,
    *,
    instructor_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[Sequence[RevenueAgreement], int]:
    if status and status not in AGREEMENT_STATUSES:
        raise ValidationFailed("INVALID_STATUS_FILTER", f"Unknown agreement status {status!r}")
    limit = max(1, min(limit, 200))
    offset = max(0, offset)

    conditions = []
    if instructor_id is not None:
        conditions.append(RevenueAgreement.instructor_id == instructor_id)
    if status:
        conditions.append(RevenueAgreement.status == status)

    total = await db.scalar(select(func.count()).select_from(RevenueAgreement).where(*conditions))
    rows = (
        await db.execute(
            select(RevenueAgreement)
            .where(*conditions)
            .order_by(RevenueAgreement.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
    ).scalars().all()
    return rows, int(total or 0)
