# backend/revshare/schemas/earnings.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class EarningOut(BaseModel):
    id: UUID
    payment_id: UUID
    instructor_id: UUID

    student_name: Optional[str] = None
    course_id: UUID
    course_name: Optional[str] = None
    section_name: Optional[str] = None

    currency: str
    student_paid_amount: int
    base_amount: int
    wallet_discount_amount: int
    instructor_percentage: Decimal
    platform_percentage: Decimal
    instructor_amount: int
    platform_amount: int
    instructor_discount: int
    platform_discount: int

    agreement_id: Optional[UUID] = None
    agreement_type: str
    agreement_version: int

    status: str
    payout_request_id: Optional[UUID] = None
    payment_method: str
    accrued_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EarningsPageOut(BaseModel):
    items: List[EarningOut]
    limit: int
    offset: int
    total: int


class AmountCount(BaseModel):
    amount: int = 0
    count: int = 0


class StatusTotals(AmountCount):
    by_currency: Dict[str, AmountCount] = Field(default_factory=dict)


class BalanceOut(BaseModel):
    instructor_id: UUID
    currency: str
    accrued_total: int
    pending_total: int
    approved_total: int
    available_amount: int
    minimum_payout: int
    can_request_payout: bool


class EarningsSummaryOut(BaseModel):
    instructor_id: UUID
    currency: str

    earnings: Dict[str, StatusTotals]

    available: int
    pending: AmountCount
    rejected: AmountCount
    paid: AmountCount

    minimum_payout: int
    can_request_payout: bool


class EarningStatusCorrection(BaseModel):
    status: str
    notes: Optional[str] = Field(default=None, max_length=2000)


class EarningFilters(BaseModel):
    status: Optional[str] = None
    course_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
