# revshare/api/v1/agreements.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.api.deps.auth import require_admin, require_instructor, require_instructor_or_admin
from revshare.core.agreement_resolver import get_active_split
from revshare.core.agreements import approve_agreement, list_agreements, propose_agreement, reject_agreement
from revshare.core.platform_settings import load_settings_snapshot
from revshare.db.session import get_db
from revshare.models.user import ROLE_ADMIN, User
from revshare.schemas.agreements import ActiveSplitOut, AgreementCreate, AgreementOut, AgreementReject

router = APIRouter(prefix="/agreements", tags=["agreements"])


@router.post("", response_model=AgreementOut, status_code=status.HTTP_201_CREATED)
async def propose(
    payload: AgreementCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    agreement = await propose_agreement(
        db,
        instructor_id=payload.instructor_id,
        platform_pct=payload.platform_percentage,
        instructor_pct=payload.instructor_percentage,
        created_by=admin.id,
        agreement_type=payload.agreement_type,
        admin_notes=payload.admin_notes,
    )
    return AgreementOut.model_validate(agreement)


@router.get("", response_model=list[AgreementOut])
async def list_all(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    instructor_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    rows, _ = await list_agreements(
        db, instructor_id=instructor_id, status=status_filter, limit=limit, offset=offset
    )
    return [AgreementOut.model_validate(a) for a in rows]


@router.get("/me", response_model=list[AgreementOut])
async def list_mine(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
):
    rows, _ = await list_agreements(db, instructor_id=user.id)
    return [AgreementOut.model_validate(a) for a in rows]


@router.get("/me/active-split", response_model=ActiveSplitOut)
async def my_active_split(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
):
    split = await get_active_split(db, user.id, await load_settings_snapshot(db))
    return ActiveSplitOut(
        instructor_id=user.id,
        platform_percentage=split.platform_pct,
        instructor_percentage=split.instructor_pct,
        agreement_id=split.agreement_id,
        version=split.version,
        source=split.source,
    )


@router.put("/{agreement_id}/approve", response_model=AgreementOut)
async def approve(
    agreement_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor_or_admin),
):
    """
    The owning instructor accepts the proposal (admins may approve on their behalf).
    """
    role = "admin" if user.role == ROLE_ADMIN else "instructor"
    agreement = await approve_agreement(db, agreement_id, actor_id=user.id, actor_role=role)
    return AgreementOut.model_validate(agreement)


@router.put("/{agreement_id}/reject", response_model=AgreementOut)
async def reject(
    agreement_id: UUID,
    payload: AgreementReject,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor_or_admin),
):
    role = "admin" if user.role == ROLE_ADMIN else "instructor"
    agreement = await reject_agreement(db, agreement_id, payload.reason, actor_id=user.id, actor_role=role)
    return AgreementOut.model_validate(agreement)
