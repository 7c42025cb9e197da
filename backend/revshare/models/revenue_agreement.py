# backend/revshare/models/revenue_agreement.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.db.base import Base

AGREEMENT_PENDING = "pending"
AGREEMENT_APPROVED = "approved"
AGREEMENT_REJECTED = "rejected"
AGREEMENT_EXPIRED = "expired"
AGREEMENT_STATUSES = {AGREEMENT_PENDING, AGREEMENT_APPROVED, AGREEMENT_REJECTED, AGREEMENT_EXPIRED}

# global = mirrors platform defaults at signing time, custom = negotiated split
AGREEMENT_TYPES = {"global", "custom"}


class RevenueAgreement(Base):
    """
    Instructor/platform revenue split contract.

    At most ONE approved+active agreement per instructor; enforced by the
    partial unique index below, not only by approve_agreement().
    """

    __tablename__ = "revenue_agreements"
    __table_args__ = (
        Index("ix_revenue_agreements_instructor_status", "instructor_id", "status"),
        Index(
            "uq_revenue_agreements_active_instructor",
            "instructor_id",
            unique=True,
            postgresql_where=text("is_active AND status = 'approved'"),
            sqlite_where=text("is_active = 1 AND status = 'approved'"),
        ),
        CheckConstraint(
            "platform_percentage >= 0 AND platform_percentage <= 100 "
            "AND instructor_percentage >= 0 AND instructor_percentage <= 100",
            name="ck_revenue_agreements_percentage_bounds",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    agreement_type: Mapped[str] = mapped_column(String(20), nullable=False, default="custom")

    platform_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    instructor_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AGREEMENT_PENDING, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_agreement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("revenue_agreements.id", ondelete="SET NULL"),
        nullable=True,
    )

    rejection_reason: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(String(5000), nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
