# backend/revshare/models/instructor_earning.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.core.errors import ImmutableRecordError
from revshare.db.base import Base

EARNING_ACCRUED = "accrued"
EARNING_REQUESTED = "requested"
EARNING_PAID = "paid"
EARNING_REJECTED = "rejected"
EARNING_STATUSES = {EARNING_ACCRUED, EARNING_REQUESTED, EARNING_PAID, EARNING_REJECTED}


class InstructorEarning(Base):
    """
    Instructor-facing half of the earning pair written once per approved payment.

    Amounts are integer minor units (cents). Invariant written by the ledger:
      instructor_amount + platform_amount == student_paid_amount (+-1)

    NOTE:
      - payment_id is the idempotency key (unique).
      - Once status == "paid" the row is frozen (see _guard_paid_earning).
      - status is informational after payout resolution; payouts never move it.
    """

    __tablename__ = "instructor_earnings"
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_instructor_earnings_payment"),
        Index("ix_instructor_earnings_instructor_status", "instructor_id", "status"),
        Index("ix_instructor_earnings_instructor_course", "instructor_id", "course_id"),
        Index("ix_instructor_earnings_payout_request", "payout_request_id"),
        CheckConstraint(
            "instructor_amount >= 0 AND platform_amount >= 0 AND student_paid_amount >= 0",
            name="ck_instructor_earnings_non_negative",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # catalog references are owned by other services; names are snapshots for reports
    student_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    student_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    course_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    section_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    section_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    # agreement used at computation time
    agreement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("revenue_agreements.id", ondelete="SET NULL"),
        nullable=True,
    )
    agreement_type: Mapped[str] = mapped_column(String(20), nullable=False, default="global")
    agreement_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    student_paid_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    base_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    wallet_discount_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    discount_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    instructor_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    platform_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    instructor_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    instructor_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    platform_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default="other")

    # accrued | requested | paid | rejected
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=EARNING_ACCRUED, index=True)
    payout_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("payout_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    accrued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


@event.listens_for(InstructorEarning, "before_update")
def _guard_paid_earning(mapper, connection, target: InstructorEarning) -> None:
    state = inspect(target)
    if not any(attr.history.has_changes() for attr in state.attrs):
        return

    hist = state.attrs.status.history
    previous = hist.deleted[0] if hist.deleted else target.status
    if previous == EARNING_PAID:
        raise ImmutableRecordError(
            "EARNING_IMMUTABLE",
            "Earning is paid and can no longer be modified",
            earning_id=str(target.id),
        )
