# backend/revshare/schemas/payments.py
from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from revshare.core.platform_settings import SUPPORTED_CURRENCIES


class PaymentApprovedEvent(BaseModel):
    """
    Emitted by the payments service once a student payment is approved.
    All amounts are minor units (cents).
    """

    payment_id: UUID
    course_id: UUID
    instructor_id: UUID

    paid_amount: int = Field(ge=0)
    currency: str
    base_amount: int = Field(default=0, ge=0)
    wallet_discount_amount: int = Field(default=0, ge=0)
    allows_discount_absorption: bool = True

    # report snapshots (optional; catalog is owned elsewhere)
    student_id: Optional[UUID] = None
    student_name: Optional[str] = Field(default=None, max_length=200)
    course_name: Optional[str] = Field(default=None, max_length=300)
    section_id: Optional[UUID] = None
    section_name: Optional[str] = Field(default=None, max_length=300)
    payment_method: str = Field(default="other", max_length=50)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        c = (v or "").strip().upper()
        if c not in SUPPORTED_CURRENCIES:
            raise ValueError(f"Unsupported currency. Allowed: {', '.join(SUPPORTED_CURRENCIES)}")
        return c


class EarningPairOut(BaseModel):
    payment_id: UUID
    instructor_earning_id: UUID
    platform_earning_id: UUID
    currency: str
    paid_amount: int
    instructor_amount: int
    platform_amount: int
    instructor_discount: int
    platform_discount: int
    instructor_percentage: float
    platform_percentage: float
    agreement_id: Optional[UUID] = None
