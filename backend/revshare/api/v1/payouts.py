# revshare/api/v1/payouts.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from revshare.api.deps.auth import require_admin, require_instructor, require_instructor_or_admin
from revshare.api.deps.services import (
    client_ip,
    client_user_agent,
    get_dispatcher,
    get_proof_storage,
    get_session_factory,
)
from revshare.core import audit_trail
from revshare.core.errors import NotPermitted
from revshare.core.notifications import NotificationDispatcher
from revshare.core.payout_workflow import (
    approve_payout_request,
    attach_proof,
    cancel_payout_request,
    create_payout_request,
    get_payout_request,
    linked_earnings,
    list_payout_requests,
    re_request_payout,
    reject_payout_request,
)
from revshare.core.proof_storage import ProofFile, ProofStorage
from revshare.db.session import get_db
from revshare.models.payout_request import PayoutRequest
from revshare.models.user import ROLE_ADMIN, User
from revshare.schemas.payouts import (
    AdminPayoutRequestOut,
    AdminPayoutRequestPageOut,
    AuditEntryOut,
    PayoutCancel,
    PayoutReject,
    PayoutRequestCreate,
    PayoutRequestOut,
    PayoutRequestPageOut,
)

router = APIRouter(prefix="/payouts", tags=["payouts"])


async def _read_proof(upload: Optional[UploadFile]) -> Optional[ProofFile]:
    if upload is None:
        return None
    content = await upload.read()
    return ProofFile(
        filename=upload.filename or "proof",
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )


async def _admin_view(db: AsyncSession, request: PayoutRequest) -> AdminPayoutRequestOut:
    linked = await linked_earnings(db, request)
    out = AdminPayoutRequestOut.model_validate(request)
    out.linked_earnings_sum = linked.total
    out.linked_earnings_count = linked.count
    return out


# -----------------------------
# Instructor
# -----------------------------
@router.post("", response_model=PayoutRequestOut, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: PayoutRequestCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    payout = await create_payout_request(
        db,
        user.id,
        payload,
        dispatcher=dispatcher,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return PayoutRequestOut.model_validate(payout)


@router.get("/me", response_model=PayoutRequestPageOut)
async def list_my_requests(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    rows, total = await list_payout_requests(
        db, instructor_id=user.id, status=status_filter, limit=limit, offset=offset
    )
    return PayoutRequestPageOut(
        items=[PayoutRequestOut.model_validate(r) for r in rows],
        limit=limit,
        offset=offset,
        total=total,
    )


@router.put("/{request_id}/re-request", response_model=PayoutRequestOut)
async def re_request(
    request_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    payout = await re_request_payout(
        db, request_id, user.id, dispatcher=dispatcher, ip_address=client_ip(request)
    )
    return PayoutRequestOut.model_validate(payout)


@router.put("/{request_id}/cancel", response_model=PayoutRequestOut)
async def cancel(
    request_id: UUID,
    payload: PayoutCancel,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    payout = await cancel_payout_request(
        db,
        request_id,
        user.id,
        payload.reason,
        dispatcher=dispatcher,
        ip_address=client_ip(request),
    )
    return PayoutRequestOut.model_validate(payout)


# -----------------------------
# Admin
# -----------------------------
@router.get("", response_model=AdminPayoutRequestPageOut)
async def list_all_requests(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    instructor_id: Optional[UUID] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    linked_earnings_sum is for reference only; the amount transferred is
    requested_amount.
    """
    rows, total = await list_payout_requests(
        db, instructor_id=instructor_id, status=status_filter, limit=limit, offset=offset
    )
    return AdminPayoutRequestPageOut(
        items=[await _admin_view(db, r) for r in rows],
        limit=limit,
        offset=offset,
        total=total,
    )


@router.get("/{request_id}", response_model=AdminPayoutRequestOut)
async def get_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_instructor_or_admin),
):
    payout = await get_payout_request(db, request_id)
    if user.role != ROLE_ADMIN and payout.instructor_id != user.id:
        raise NotPermitted("NOT_AUTHORIZED", "Not authorized")
    return await _admin_view(db, payout)


@router.put("/{request_id}/approve", response_model=PayoutRequestOut)
async def approve(
    request_id: UUID,
    request: Request,
    proof: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    storage: ProofStorage = Depends(get_proof_storage),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    payout = await approve_payout_request(
        db,
        request_id,
        admin.id,
        await _read_proof(proof),
        storage=storage,
        dispatcher=dispatcher,
        session_factory=session_factory,
        ip_address=client_ip(request),
    )
    return PayoutRequestOut.model_validate(payout)


@router.put("/{request_id}/proof", response_model=PayoutRequestOut)
async def replace_proof(
    request_id: UUID,
    proof: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    storage: ProofStorage = Depends(get_proof_storage),
):
    payout = await attach_proof(db, request_id, admin.id, await _read_proof(proof), storage=storage)
    return PayoutRequestOut.model_validate(payout)


@router.put("/{request_id}/reject", response_model=PayoutRequestOut)
async def reject(
    request_id: UUID,
    payload: PayoutReject,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    payout = await reject_payout_request(
        db,
        request_id,
        admin.id,
        payload.reason,
        dispatcher=dispatcher,
        ip_address=client_ip(request),
    )
    return PayoutRequestOut.model_validate(payout)


@router.get("/{request_id}/audit", response_model=list[AuditEntryOut])
async def request_audit_trail(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    limit: int = Query(50, ge=1, le=200),
):
    entries = await audit_trail.get_trail(db, "payout_request", request_id, limit=limit)
    return [AuditEntryOut.model_validate(e) for e in entries]


@router.get("/audit/actors/{actor_id}", response_model=list[AuditEntryOut])
async def actor_audit_trail(
    actor_id: UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
    limit: int = Query(100, ge=1, le=200),
):
    entries = await audit_trail.get_actor_actions(db, actor_id, limit=limit)
    return [AuditEntryOut.model_validate(e) for e in entries]
