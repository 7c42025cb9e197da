# backend/revshare/core/audit_trail.py
"""
Append-only audit trail for ledger and payout mutations.

append() is fire-and-forget from the caller's point of view: the primary
mutation is already committed when it runs, so a failed audit write is
logged and swallowed, never raised. Entries are written through a session
of their own; the caller's session and the instances it holds stay as they
were. The returned entry is detached.
"""
from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from revshare.core.clock import utcnow
from revshare.models.payout_audit_log import ACTOR_ROLES, ENTITY_TYPES, PayoutAuditLog

logger = logging.getLogger(__name__)

MAX_REQUESTS_IN_WINDOW = 3
MAX_REQUESTS_FROM_SINGLE_ADDRESS = 2

REASON_TOO_MANY_REQUESTS = "Multiple payout requests in short time"
REASON_SAME_ADDRESS = "Multiple requests from same IP"


@dataclass(frozen=True)
class SuspicionReport:
    suspicious: bool
    reason: Optional[str] = None
    count: int = 0


def changed_fields(previous: dict[str, Any] | None, new: dict[str, Any] | None) -> list[str]:
    previous = previous or {}
    new = new or {}
    return sorted(k for k in set(previous) | set(new) if previous.get(k) != new.get(k))


async def append(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: uuid.UUID,
    action: str,
    actor_id: uuid.UUID | None,
    actor_role: str,
    previous_state: dict[str, Any] | None = None,
    new_state: dict[str, Any] | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> PayoutAuditLog | None:
    if entity_type not in ENTITY_TYPES or actor_role not in ACTOR_ROLES:
        logger.error(
            "Refusing audit entry with unknown entity_type=%s actor_role=%s action=%s",
            entity_type,
            actor_role,
            action,
        )
        return None

    entry = PayoutAuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        previous_state=previous_state,
        new_state=new_state,
        changed_fields=changed_fields(previous_state, new_state),
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    # own session: a failed write must not roll back or expire the caller's objects
    try:
        async with AsyncSession(bind=db.bind, expire_on_commit=False) as audit_db:
            audit_db.add(entry)
            await audit_db.commit()
    except Exception:
        logger.exception(
            "Failed to write audit log entity_type=%s entity_id=%s action=%s",
            entity_type,
            entity_id,
            action,
        )
        return None
    return entry


async def get_trail(
    db: AsyncSession,
    entity_type: str,
    entity_id: uuid.UUID,
    limit: int = 50,
) -> Sequence[PayoutAuditLog]:
    stmt = (
        select(PayoutAuditLog)
        .where(PayoutAuditLog.entity_type == entity_type)
        .where(PayoutAuditLog.entity_id == entity_id)
        .order_by(PayoutAuditLog.timestamp.desc())
        .limit(max(1, limit))
    )
    return (await db.execute(stmt)).scalars().all()


async def get_actor_actions(db: AsyncSession, actor_id: uuid.UUID, limit: int = 100) -> Sequence[PayoutAuditLog]:
    stmt = (
        select(PayoutAuditLog)
        .where(PayoutAuditLog.actor_id == actor_id)
        .order_by(PayoutAuditLog.timestamp.desc())
        .limit(max(1, limit))
    )
    return (await db.execute(stmt)).scalars().all()


def evaluate_suspicious(ip_addresses: Iterable[str | None]) -> SuspicionReport:
    """
    ip_addresses: one entry per payout request created inside the window.
    """
    addresses = list(ip_addresses)
    if len(addresses) > MAX_REQUESTS_IN_WINDOW:
        return SuspicionReport(True, REASON_TOO_MANY_REQUESTS, len(addresses))

    per_address = Counter(a for a in addresses if a)
    top = max(per_address.values(), default=0)
    if top > MAX_REQUESTS_FROM_SINGLE_ADDRESS:
        return SuspicionReport(True, REASON_SAME_ADDRESS, top)

    return SuspicionReport(False)


async def detect_suspicious(
    db: AsyncSession,
    instructor_id: uuid.UUID,
    window_hours: int = 24,
    now: datetime | None = None,
) -> SuspicionReport:
    cutoff = (now or utcnow()) - timedelta(hours=window_hours)
    stmt = (
        select(PayoutAuditLog.ip_address)
        .where(PayoutAuditLog.actor_id == instructor_id)
        .where(PayoutAuditLog.entity_type == "payout_request")
        .where(PayoutAuditLog.action == "create")
        .where(PayoutAuditLog.timestamp >= cutoff)
    )
    rows = (await db.execute(stmt)).scalars().all()
    return evaluate_suspicious(rows)
