# backend/revshare/core/agreement_resolver.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.platform_settings import SettingsSnapshot
from revshare.models.revenue_agreement import AGREEMENT_APPROVED, RevenueAgreement

SOURCE_AGREEMENT = "agreement"
SOURCE_GLOBAL_DEFAULT = "global_default"


@dataclass(frozen=True)
class ActiveSplit:
    platform_pct: Decimal
    instructor_pct: Decimal
    agreement_id: Optional[uuid.UUID]
    version: int
    source: str
    agreement_type: str = "global"


async def get_active_agreement(db: AsyncSession, instructor_id: uuid.UUID) -> Optional[RevenueAgreement]:
    stmt = (
        select(RevenueAgreement)
        .where(RevenueAgreement.instructor_id == instructor_id)
        .where(RevenueAgreement.is_active.is_(True))
        .where(RevenueAgreement.status == AGREEMENT_APPROVED)
        .order_by(RevenueAgreement.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_active_split(
    db: AsyncSession,
    instructor_id: uuid.UUID,
    snapshot: SettingsSnapshot,
) -> ActiveSplit:
    """
    Newest approved+active agreement wins; otherwise the global default from
    the snapshot the caller loaded for this operation. Read-only.
    """
    agreement = await get_active_agreement(db, instructor_id)
    if agreement is not None:
        return ActiveSplit(
            platform_pct=Decimal(agreement.platform_percentage),
            instructor_pct=Decimal(agreement.instructor_percentage),
            agreement_id=agreement.id,
            version=agreement.version or 1,
            source=SOURCE_AGREEMENT,
            agreement_type=agreement.agreement_type,
        )

    return ActiveSplit(
        platform_pct=snapshot.platform_percentage,
        instructor_pct=snapshot.instructor_percentage,
        agreement_id=None,
        version=1,
        source=SOURCE_GLOBAL_DEFAULT,
    )
