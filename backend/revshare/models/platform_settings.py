# backend/revshare/models/platform_settings.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.db.base import Base


class PlatformSettings(Base):
    """
    Admin-editable platform settings (single row, id=1).
    Any column left NULL falls back to the environment defaults in Settings.
    """

    __tablename__ = "platform_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)

    platform_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    instructor_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)

    default_currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # {"SYP": 1000000, "USD": 1000} in minor units
    minimum_payouts: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
