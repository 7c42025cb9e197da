# backend/revshare/schemas/agreements.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AgreementCreate(BaseModel):
    instructor_id: UUID
    platform_percentage: Decimal = Field(ge=0, le=100)
    instructor_percentage: Decimal = Field(ge=0, le=100)
    agreement_type: str = "custom"
    admin_notes: Optional[str] = Field(default=None, max_length=5000)


class AgreementReject(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class AgreementOut(BaseModel):
    id: UUID
    instructor_id: UUID
    agreement_type: str
    platform_percentage: Decimal
    instructor_percentage: Decimal
    status: str
    is_active: bool
    version: int
    previous_agreement_id: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActiveSplitOut(BaseModel):
    instructor_id: UUID
    platform_percentage: Decimal
    instructor_percentage: Decimal
    agreement_id: Optional[UUID] = None
    version: int
    source: str
