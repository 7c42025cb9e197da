# tests/test_agreements.py
from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from conftest import create_user, install_trigger
from revshare.core.agreement_resolver import SOURCE_AGREEMENT, SOURCE_GLOBAL_DEFAULT, get_active_split
from revshare.core.agreements import (
    approve_agreement,
    list_agreements,
    propose_agreement,
    reject_agreement,
    validate_percentages,
)
from revshare.core.errors import ConflictError, MissingDependency, NotPermitted, ValidationFailed
from revshare.core.platform_settings import load_settings_snapshot
from revshare.models.revenue_agreement import RevenueAgreement
from revshare.models.user import ROLE_INSTRUCTOR, ROLE_STUDENT


async def propose(db, instructor, admin, platform="25", instructor_pct="75"):
    return await propose_agreement(
        db,
        instructor_id=instructor.id,
        platform_pct=Decimal(platform),
        instructor_pct=Decimal(instructor_pct),
        created_by=admin.id,
    )


def test_percentages_must_sum_to_hundred():
    assert validate_percentages(Decimal("33.33"), Decimal("66.67")) == (Decimal("33.33"), Decimal("66.67"))
    # within tolerance
    validate_percentages(Decimal("30.005"), Decimal("70"))

    with pytest.raises(ValidationFailed) as exc:
        validate_percentages(Decimal("30"), Decimal("60"))
    assert exc.value.code == "PERCENTAGES_MUST_SUM_TO_100"

    with pytest.raises(ValidationFailed):
        validate_percentages(Decimal("-10"), Decimal("110"))


@pytest.mark.asyncio
async def test_no_agreement_falls_back_to_global_default(db, instructor):
    split = await get_active_split(db, instructor.id, await load_settings_snapshot(db))
    assert split.source == SOURCE_GLOBAL_DEFAULT
    assert split.platform_pct == Decimal("30")
    assert split.instructor_pct == Decimal("70")
    assert split.agreement_id is None


@pytest.mark.asyncio
async def test_pending_agreement_is_not_active(db, instructor, admin):
    agreement = await propose(db, instructor, admin)
    assert agreement.status == "pending"
    assert agreement.version == 1

    split = await get_active_split(db, instructor.id, await load_settings_snapshot(db))
    assert split.source == SOURCE_GLOBAL_DEFAULT


@pytest.mark.asyncio
async def test_approval_supersedes_previous_agreement(db, instructor, admin):
    first = await propose(db, instructor, admin, "25", "75")
    await approve_agreement(db, first.id, actor_id=admin.id, actor_role="admin")

    second = await propose(db, instructor, admin, "20", "80")
    assert second.version == 2
    assert second.previous_agreement_id == first.id

    await approve_agreement(db, second.id, actor_id=instructor.id, actor_role="instructor")

    await db.refresh(first)
    assert first.status == "expired"
    assert first.is_active is False

    split = await get_active_split(db, instructor.id, await load_settings_snapshot(db))
    assert split.source == SOURCE_AGREEMENT
    assert split.agreement_id == second.id
    assert split.version == 2

    active = (
        await db.execute(
            select(RevenueAgreement).where(
                RevenueAgreement.instructor_id == instructor.id,
                RevenueAgreement.is_active.is_(True),
            )
        )
    ).scalars().all()
    assert [a.id for a in active] == [second.id]


@pytest.mark.asyncio
async def test_one_active_agreement_enforced_by_storage(db, instructor, admin):
    first = await propose(db, instructor, admin)
    await approve_agreement(db, first.id, actor_id=admin.id, actor_role="admin")

    db.add(
        RevenueAgreement(
            instructor_id=instructor.id,
            platform_percentage=Decimal("10"),
            instructor_percentage=Decimal("90"),
            status="approved",
            is_active=True,
            version=9,
        )
    )
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_reject_requires_reason_and_pending(db, instructor, admin):
    agreement = await propose(db, instructor, admin)
    with pytest.raises(ValidationFailed):
        await reject_agreement(db, agreement.id, "  ", actor_id=instructor.id, actor_role="instructor")

    rejected = await reject_agreement(
        db, agreement.id, "Split too low", actor_id=instructor.id, actor_role="instructor"
    )
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Split too low"

    with pytest.raises(ConflictError):
        await approve_agreement(db, agreement.id, actor_id=admin.id, actor_role="admin")


@pytest.mark.asyncio
async def test_other_instructor_cannot_approve(db, instructor, admin):
    other = await create_user(db, ROLE_INSTRUCTOR)
    agreement = await propose(db, instructor, admin)
    with pytest.raises(NotPermitted):
        await approve_agreement(db, agreement.id, actor_id=other.id, actor_role="instructor")


@pytest.mark.asyncio
async def test_agreement_for_non_instructor_is_missing_dependency(db, admin):
    student = await create_user(db, ROLE_STUDENT)
    with pytest.raises(MissingDependency):
        await propose(db, student, admin)


@pytest.mark.asyncio
async def test_failed_activation_keeps_current_agreement(db, engine, instructor, admin):
    first = await propose(db, instructor, admin, "25", "75")
    await approve_agreement(db, first.id, actor_id=admin.id, actor_role="admin")
    second = await propose(db, instructor, admin, "20", "80")
    first_id, second_id, instructor_id, admin_id = first.id, second.id, instructor.id, admin.id

    await install_trigger(
        engine,
        "activation_down",
        "revenue_agreements",
        when="BEFORE UPDATE OF is_active",
        condition="WHEN NEW.is_active = 1",
    )

    with pytest.raises(ConflictError):
        await approve_agreement(db, second_id, actor_id=admin_id, actor_role="admin")

    split = await get_active_split(db, instructor_id, await load_settings_snapshot(db))
    assert split.source == SOURCE_AGREEMENT
    assert split.agreement_id == first_id


@pytest.mark.asyncio
async def test_unknown_status_filter_is_rejected(db):
    with pytest.raises(ValidationFailed) as exc:
        await list_agreements(db, status="active")
    assert exc.value.code == "INVALID_STATUS_FILTER"
