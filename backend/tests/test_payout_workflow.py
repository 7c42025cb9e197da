# tests/test_payout_workflow.py
from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import add_earning, create_user, set_minimum_payout
from revshare.core.audit_trail import get_trail
from revshare.core.balance import get_available_balance
from revshare.core.clock import utcnow
from revshare.core.errors import (
    ConflictError,
    ImmutableRecordError,
    NotPermitted,
    ValidationFailed,
)
from revshare.core.notifications import CATEGORY_BALANCE_REFRESH, wait_for_background_notifications
from revshare.core.payout_workflow import (
    EarningCandidate,
    approve_payout_request,
    attach_proof,
    cancel_payout_request,
    create_payout_request,
    linked_earnings,
    list_payout_requests,
    re_request_payout,
    reject_payout_request,
    select_earnings_for_payout,
)
from revshare.core.proof_storage import ProofFile
from revshare.models.instructor_earning import InstructorEarning
from revshare.models.payout_audit_log import PayoutAuditLog
from revshare.models.payout_request import PayoutRequest
from revshare.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR
from revshare.schemas.payouts import PayoutRequestCreate, ReceiverDetails

REJECTION_REASON = "Receiver phone number does not match the account"


def payout_payload(amount: int | None = None) -> PayoutRequestCreate:
    return PayoutRequestCreate(
        payment_method="bank_transfer",
        receiver=ReceiverDetails(receiver_name="Rana Haddad", receiver_phone="+963900000000"),
        requested_amount=amount,
    )


def pdf_proof() -> ProofFile:
    return ProofFile(filename="receipt.pdf", content_type="application/pdf", content=b"%PDF-1.4 test")


async def funded_instructor(db, amounts=(30_000, 50_000)):
    """Instructor with accrued earnings and a 10_000 SYP minimum payout."""
    await set_minimum_payout(db, "SYP", 10_000)
    instructor = await create_user(db, ROLE_INSTRUCTOR)
    for amount in amounts:
        await add_earning(db, instructor.id, amount)
    return instructor


# ---------------------------------------------------------
# Selection (pure)
# ---------------------------------------------------------
def test_selection_is_greedy_smallest_first():
    a, b, c = (EarningCandidate(uuid.uuid4(), amt) for amt in (50_000, 10_000, 30_000))
    picked = select_earnings_for_payout([a, b, c], 35_000)
    assert [p.amount for p in picked] == [10_000, 30_000]


def test_selection_returns_everything_when_short():
    cands = [EarningCandidate(uuid.uuid4(), 1_000) for _ in range(3)]
    assert len(select_earnings_for_payout(cands, 10_000)) == 3


# ---------------------------------------------------------
# Create
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_create_request_for_part_of_balance(db, dispatcher):
    instructor = await funded_instructor(db)
    assert await get_available_balance(db, instructor.id, "SYP") == 80_000

    req = await create_payout_request(db, instructor.id, payout_payload(50_000), dispatcher=dispatcher)

    assert req.status == "pending"
    assert req.requested_amount == 50_000
    assert req.currency == "SYP"
    # tracking only: 30_000 + 50_000 selected, amount stays 50_000
    assert len(req.earning_ids) == 2
    assert await get_available_balance(db, instructor.id, "SYP") == 30_000
    assert any(n.category == CATEGORY_BALANCE_REFRESH for n in dispatcher.sent)


@pytest.mark.asyncio
async def test_create_defaults_to_full_balance(db, dispatcher):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(), dispatcher=dispatcher)
    assert req.requested_amount == 80_000


@pytest.mark.asyncio
async def test_second_request_while_pending_conflicts(db, dispatcher):
    instructor = await funded_instructor(db)
    await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    with pytest.raises(ConflictError) as exc:
        await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    assert exc.value.code == "PAYOUT_ALREADY_PENDING"


@pytest.mark.asyncio
async def test_pending_uniqueness_enforced_by_storage(db, dispatcher):
    instructor = await funded_instructor(db)
    await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    db.add(
        PayoutRequest(
            instructor_id=instructor.id,
            requested_amount=10_000,
            currency="SYP",
            earning_ids=[],
            payment_method="cash",
            receiver_name="x",
            receiver_phone="1",
            status="pending",
        )
    )
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount, code",
    [
        (0, "INVALID_AMOUNT"),
        (-5, "INVALID_AMOUNT"),
        (5_000, "BELOW_MINIMUM_PAYOUT"),
        (90_000, "EXCEEDS_AVAILABLE_BALANCE"),
    ],
)
async def test_bad_amounts_are_validation_errors(db, dispatcher, amount, code):
    instructor = await funded_instructor(db)
    with pytest.raises(ValidationFailed) as exc:
        await create_payout_request(db, instructor.id, payout_payload(amount), dispatcher=dispatcher)
    assert exc.value.code == code
    assert await db.scalar(select(func.count()).select_from(PayoutRequest)) == 0


@pytest.mark.asyncio
async def test_no_earnings_is_a_conflict(db, dispatcher, instructor):
    with pytest.raises(ConflictError) as exc:
        await create_payout_request(db, instructor.id, payout_payload(), dispatcher=dispatcher)
    assert exc.value.code == "NO_EARNINGS_AVAILABLE"


@pytest.mark.asyncio
async def test_admins_are_notified_of_new_request(db, dispatcher):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    assert admin.id in {n.recipient_id for n in dispatcher.sent}


@pytest.mark.asyncio
async def test_suspicious_activity_is_flagged_not_blocked(db, dispatcher):
    instructor = await funded_instructor(db, amounts=(100_000,))
    for _ in range(3):
        req = await create_payout_request(
            db, instructor.id, payout_payload(10_000), dispatcher=dispatcher, ip_address="10.0.0.1"
        )
        await cancel_payout_request(db, req.id, instructor.id, "changed my mind")

    req = await create_payout_request(
        db, instructor.id, payout_payload(10_000), dispatcher=dispatcher, ip_address="10.0.0.1"
    )
    assert req.status == "pending"
    assert req.security_flags == ["Multiple requests from same IP"]


# ---------------------------------------------------------
# Reject / re-request
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_short_rejection_reason_is_validation_error(db, dispatcher):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    with pytest.raises(ValidationFailed) as exc:
        await reject_payout_request(db, req.id, admin.id, "wrong", dispatcher=dispatcher)
    assert exc.value.code == "REJECTION_REASON_TOO_SHORT"
    await db.refresh(req)
    assert req.status == "pending"


@pytest.mark.asyncio
async def test_reject_then_re_request_keeps_amount_and_earnings(db, dispatcher):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(50_000), dispatcher=dispatcher)
    amount, earning_ids = req.requested_amount, list(req.earning_ids)

    await reject_payout_request(db, req.id, admin.id, REJECTION_REASON, dispatcher=dispatcher)
    assert req.status == "rejected"
    assert req.rejection_reason == REJECTION_REASON
    # rejected amounts are back in the balance
    assert await get_available_balance(db, instructor.id, "SYP") == 80_000

    # a fresh request is refused while the rejected one exists
    with pytest.raises(ConflictError):
        await create_payout_request(db, instructor.id, payout_payload(10_000), dispatcher=dispatcher)

    again = await re_request_payout(db, req.id, instructor.id, dispatcher=dispatcher)
    assert again.id == req.id
    assert again.status == "pending"
    assert again.requested_amount == amount
    assert again.earning_ids == earning_ids
    assert again.rejection_reason is None
    assert again.processed_at is None


@pytest.mark.asyncio
async def test_re_request_only_from_rejected(db, dispatcher):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    with pytest.raises(ConflictError):
        await re_request_payout(db, req.id, instructor.id, dispatcher=dispatcher)


@pytest.mark.asyncio
async def test_locked_fields_cannot_change_on_re_request(db, dispatcher):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    await reject_payout_request(db, req.id, admin.id, REJECTION_REASON, dispatcher=dispatcher)

    req.status = "pending"
    req.requested_amount = 30_000
    with pytest.raises(ImmutableRecordError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_other_instructor_cannot_touch_request(db, dispatcher):
    instructor = await funded_instructor(db)
    intruder = await create_user(db, ROLE_INSTRUCTOR)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    with pytest.raises(NotPermitted):
        await cancel_payout_request(db, req.id, intruder.id)


# ---------------------------------------------------------
# Cancel
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_cancel_reverts_linked_earnings(db, dispatcher):
    instructor = await funded_instructor(db)
    instructor_id = instructor.id
    req = await create_payout_request(db, instructor.id, payout_payload(50_000), dispatcher=dispatcher)

    # an admin correction linked one of them in the meantime
    linked = await db.get(InstructorEarning, uuid.UUID(req.earning_ids[0]))
    linked.status = "requested"
    linked.payout_request_id = req.id
    await db.commit()

    await cancel_payout_request(db, req.id, instructor.id, "Need to change receiver")
    assert req.status == "cancelled"
    assert req.cancellation_reason == "Need to change receiver"

    db.expire_all()
    rows = (await db.execute(select(InstructorEarning))).scalars().all()
    assert {e.status for e in rows} == {"accrued"}
    assert all(e.payout_request_id is None for e in rows)
    assert await get_available_balance(db, instructor_id, "SYP") == 80_000


@pytest.mark.asyncio
async def test_cancel_after_window_is_conflict(db, dispatcher):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    with pytest.raises(ConflictError) as exc:
        await cancel_payout_request(
            db, req.id, instructor.id, now=utcnow() + timedelta(hours=30)
        )
    assert exc.value.code == "CANCEL_WINDOW_EXPIRED"
    await db.refresh(req)
    assert req.status == "pending"


@pytest.mark.asyncio
async def test_cancel_only_pending(db, dispatcher):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    await cancel_payout_request(db, req.id, instructor.id)
    with pytest.raises(ConflictError):
        await cancel_payout_request(db, req.id, instructor.id)


# ---------------------------------------------------------
# Approve
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_approve_requires_proof(db, dispatcher, storage):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    with pytest.raises(ValidationFailed) as exc:
        await approve_payout_request(db, req.id, admin.id, None, storage=storage, dispatcher=dispatcher)
    assert exc.value.code == "PROOF_REQUIRED"

    with pytest.raises(ValidationFailed) as exc:
        await approve_payout_request(
            db,
            req.id,
            admin.id,
            ProofFile("x.exe", "application/x-msdownload", b"MZ"),
            storage=storage,
            dispatcher=dispatcher,
        )
    assert exc.value.code == "PROOF_TYPE_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_approve_stores_proof_and_leaves_earnings(db, dispatcher, storage):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    instructor_id = instructor.id
    req = await create_payout_request(db, instructor.id, payout_payload(50_000), dispatcher=dispatcher)

    approved = await approve_payout_request(
        db, req.id, admin.id, pdf_proof(), storage=storage, dispatcher=dispatcher
    )
    await wait_for_background_notifications()

    assert approved.status == "approved"
    assert approved.processed_by == admin.id
    assert approved.proof_stored_name.startswith(f"{req.id}_proof_")
    assert approved.proof_stored_name.endswith(".pdf")
    assert (storage.base_dir / approved.proof_stored_name).read_bytes() == b"%PDF-1.4 test"

    db.expire_all()
    statuses = (await db.execute(select(InstructorEarning.status))).scalars().all()
    assert set(statuses) == {"accrued"}
    assert await get_available_balance(db, instructor_id, "SYP") == 30_000
    assert any(n.channel == "email" for n in dispatcher.sent)


@pytest.mark.asyncio
async def test_approved_request_is_immutable_except_proof(db, dispatcher, storage):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    request_id, admin_id = req.id, admin.id
    await approve_payout_request(db, request_id, admin_id, pdf_proof(), storage=storage, dispatcher=dispatcher)
    await wait_for_background_notifications()

    req.requested_amount = 1
    with pytest.raises(ImmutableRecordError):
        await db.commit()
    await db.rollback()

    replaced = await attach_proof(
        db,
        request_id,
        admin_id,
        ProofFile("transfer.png", "image/png", b"\x89PNG"),
        storage=storage,
    )
    assert replaced.proof_mime_type == "image/png"
    assert replaced.requested_amount == 20_000

    with pytest.raises(ConflictError):
        await reject_payout_request(db, request_id, admin_id, REJECTION_REASON, dispatcher=dispatcher)


@pytest.mark.asyncio
async def test_email_failure_is_audited_not_raised(db, sessionmaker, dispatcher, storage):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    dispatcher.fail = True
    approved = await approve_payout_request(
        db,
        req.id,
        admin.id,
        pdf_proof(),
        storage=storage,
        dispatcher=dispatcher,
        session_factory=sessionmaker,
    )
    await wait_for_background_notifications()
    assert approved.status == "approved"

    actions = [e.action for e in await get_trail(db, "payout_request", req.id)]
    assert "email_failed" in actions
    assert "approve" in actions


# ---------------------------------------------------------
# Listing
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_list_and_linked_earnings(db, dispatcher):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(40_000), dispatcher=dispatcher)

    rows, total = await list_payout_requests(db, instructor_id=instructor.id, status="pending")
    assert total == 1 and rows[0].id == req.id

    rows, total = await list_payout_requests(db, status="approved")
    assert total == 0

    linked = await linked_earnings(db, req)
    # 30_000 + 50_000 selected to cover 40_000
    assert linked.total == 80_000
    assert linked.count == 2


@pytest.mark.asyncio
async def test_every_transition_is_audited(db, dispatcher):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    await reject_payout_request(db, req.id, admin.id, REJECTION_REASON, dispatcher=dispatcher)
    await re_request_payout(db, req.id, instructor.id, dispatcher=dispatcher)
    await cancel_payout_request(db, req.id, instructor.id)

    trail = await get_trail(db, "payout_request", req.id)
    assert sorted(e.action for e in trail) == ["cancel", "create", "re_request", "reject"]
    reject_entry = next(e for e in trail if e.action == "reject")
    assert "status" in reject_entry.changed_fields
    assert reject_entry.reason == REJECTION_REASON
    assert await db.scalar(select(func.count()).select_from(PayoutAuditLog)) == 4


# ---------------------------------------------------------
# Audit outage
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_audit_outage_does_not_fail_create(db, dispatcher, audit_store_down):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(50_000), dispatcher=dispatcher)

    assert req.status == "pending"
    assert req.requested_amount == 50_000
    assert any(n.category == CATEGORY_BALANCE_REFRESH for n in dispatcher.sent)
    assert await db.scalar(select(func.count()).select_from(PayoutAuditLog)) == 0


@pytest.mark.asyncio
async def test_audit_outage_does_not_fail_resolution(db, dispatcher, storage, audit_store_down):
    admin = await create_user(db, ROLE_ADMIN)
    instructor = await funded_instructor(db)

    first = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)
    rejected = await reject_payout_request(db, first.id, admin.id, REJECTION_REASON, dispatcher=dispatcher)
    assert rejected.status == "rejected"

    again = await re_request_payout(db, first.id, instructor.id, dispatcher=dispatcher)
    approved = await approve_payout_request(
        db, again.id, admin.id, pdf_proof(), storage=storage, dispatcher=dispatcher
    )
    await wait_for_background_notifications()
    assert approved.status == "approved"
    assert approved.proof_stored_name is not None


@pytest.mark.asyncio
async def test_audit_outage_does_not_fail_cancel(db, dispatcher, audit_store_down):
    instructor = await funded_instructor(db)
    req = await create_payout_request(db, instructor.id, payout_payload(20_000), dispatcher=dispatcher)

    cancelled = await cancel_payout_request(db, req.id, instructor.id, "Wrong receiver")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Wrong receiver"
    assert await get_available_balance(db, instructor.id, "SYP") == 80_000


@pytest.mark.asyncio
async def test_unknown_status_filter_is_rejected(db):
    with pytest.raises(ValidationFailed) as exc:
        await list_payout_requests(db, status="paid")
    assert exc.value.code == "INVALID_STATUS_FILTER"
