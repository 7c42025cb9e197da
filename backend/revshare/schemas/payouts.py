# backend/revshare/schemas/payouts.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = value.strip()
    return v or None


class ReceiverDetails(BaseModel):
    receiver_name: str = Field(min_length=1, max_length=100)
    receiver_phone: str = Field(min_length=1, max_length=20)
    receiver_location: Optional[str] = Field(default=None, max_length=200)
    account_details: Optional[str] = Field(default=None, max_length=500)

    @field_validator("receiver_name", "receiver_phone")
    @classmethod
    def required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("receiver_location", "account_details")
    @classmethod
    def optional_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v)


class PayoutRequestCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    payment_method: str = Field(min_length=1, max_length=50)
    receiver: ReceiverDetails
    # omitted => full available balance
    requested_amount: Optional[int] = None


class PayoutCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class PayoutReject(BaseModel):
    reason: str = Field(max_length=1000)


class PayoutRequestOut(BaseModel):
    id: UUID
    instructor_id: UUID
    requested_amount: int
    currency: str
    earning_ids: List[str]
    payment_method: str

    receiver_name: str
    receiver_phone: str
    receiver_location: Optional[str] = None
    account_details: Optional[str] = None

    status: str
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    proof_original_name: Optional[str] = None
    proof_url: Optional[str] = None
    proof_mime_type: Optional[str] = None
    proof_size: Optional[int] = None
    proof_uploaded_at: Optional[datetime] = None

    requested_at: datetime
    processed_at: Optional[datetime] = None
    processed_by: Optional[UUID] = None
    security_flags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class AdminPayoutRequestOut(PayoutRequestOut):
    # reference only: the payout amount is requested_amount
    linked_earnings_sum: int = 0
    linked_earnings_count: int = 0


class PayoutRequestPageOut(BaseModel):
    items: List[PayoutRequestOut]
    limit: int
    offset: int
    total: int


class AdminPayoutRequestPageOut(BaseModel):
    items: List[AdminPayoutRequestOut]
    limit: int
    offset: int
    total: int


class AuditEntryOut(BaseModel):
    id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    actor_id: Optional[UUID] = None
    actor_role: str
    previous_state: Optional[dict] = None
    new_state: Optional[dict] = None
    changed_fields: List[str] = Field(default_factory=list)
    reason: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)
