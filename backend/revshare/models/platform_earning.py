# backend/revshare/models/platform_earning.py
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.db.base import Base


class PlatformEarning(Base):
    """
    Platform-facing half of the earning pair (commission kept by the platform).
    Shares payment_id with its InstructorEarning twin; both are unique on it.
    """

    __tablename__ = "platform_earnings"
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_platform_earnings_payment"),
        Index("ix_platform_earnings_instructor_created", "instructor_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    payment_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    agreement_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("revenue_agreements.id", ondelete="SET NULL"),
        nullable=True,
    )

    currency: Mapped[str] = mapped_column(String(10), nullable=False)

    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    instructor_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    platform_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    instructor_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_discount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False, default="other")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
