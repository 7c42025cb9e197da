# backend/revshare/models/payout_request.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, Uuid, event, inspect, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.core.errors import ImmutableRecordError
from revshare.db.base import Base

PAYOUT_PENDING = "pending"
PAYOUT_APPROVED = "approved"
PAYOUT_REJECTED = "rejected"
PAYOUT_CANCELLED = "cancelled"
PAYOUT_STATUSES = {PAYOUT_PENDING, PAYOUT_APPROVED, PAYOUT_REJECTED, PAYOUT_CANCELLED}

# Only these may change once a request is approved
PROOF_FIELDS = frozenset(
    {
        "proof_original_name",
        "proof_stored_name",
        "proof_url",
        "proof_mime_type",
        "proof_size",
        "proof_uploaded_at",
        "proof_uploaded_by",
        "updated_at",
    }
)

# Locked when a rejected request goes back to pending
LOCKED_ON_RE_REQUEST = frozenset({"requested_amount", "currency", "earning_ids"})

_json = JSON().with_variant(JSONB(), "postgresql")


class PayoutRequest(Base):
    """
    Instructor-initiated claim for a manual funds transfer.

    requested_amount is the authoritative transfer amount. earning_ids only
    record which earnings were selected for traceability; their sum may be
    larger than requested_amount and is never used to compute the payout.

    At most ONE pending request per instructor (partial unique index).
    """

    __tablename__ = "payout_requests"
    __table_args__ = (
        Index("ix_payout_requests_instructor_status_requested", "instructor_id", "status", "requested_at"),
        Index("ix_payout_requests_status_requested", "status", "requested_at"),
        Index(
            "uq_payout_requests_pending_instructor",
            "instructor_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        CheckConstraint("requested_amount > 0", name="ck_payout_requests_amount_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    requested_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    # list[str] of InstructorEarning ids (tracking only)
    earning_ids: Mapped[list[str]] = mapped_column(_json, nullable=False, default=list)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    receiver_name: Mapped[str] = mapped_column(String(100), nullable=False)
    receiver_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    receiver_location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    account_details: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # pending | approved | rejected | cancelled
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PAYOUT_PENDING, index=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # proof of payment (admin upload on approval)
    proof_original_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    proof_stored_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    proof_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    proof_mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    proof_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    proof_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    proof_uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    security_flags: Mapped[list[str]] = mapped_column(_json, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view used for audit previous/new state."""
        return {
            "id": str(self.id),
            "instructor_id": str(self.instructor_id),
            "status": self.status,
            "requested_amount": self.requested_amount,
            "currency": self.currency,
            "earning_ids": list(self.earning_ids or []),
            "payment_method": self.payment_method,
            "security_flags": list(self.security_flags or []),
            "rejection_reason": self.rejection_reason,
            "cancellation_reason": self.cancellation_reason,
            "proof_stored_name": self.proof_stored_name,
        }


@event.listens_for(PayoutRequest, "before_update")
def _guard_payout_request(mapper, connection, target: PayoutRequest) -> None:
    state = inspect(target)
    changed = {attr.key for attr in state.attrs if attr.history.has_changes()}
    if not changed:
        return

    hist = state.attrs.status.history
    previous = hist.deleted[0] if hist.deleted else target.status

    if previous == PAYOUT_APPROVED:
        illegal = changed - PROOF_FIELDS
        if illegal:
            raise ImmutableRecordError(
                "PAYOUT_IMMUTABLE",
                "Approved payout requests can only receive proof attachments",
                fields=sorted(illegal),
            )

    if previous == PAYOUT_REJECTED and target.status == PAYOUT_PENDING:
        locked = changed & LOCKED_ON_RE_REQUEST
        if locked:
            raise ImmutableRecordError(
                "PAYOUT_LOCKED",
                "Cannot change locked payout amount or earnings when re-requesting",
                fields=sorted(locked),
            )
