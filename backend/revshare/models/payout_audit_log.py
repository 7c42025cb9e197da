# backend/revshare/models/payout_audit_log.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DDL, JSON, DateTime, Index, String, Uuid, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from revshare.core.clock import utcnow
from revshare.core.errors import ImmutableRecordError
from revshare.db.base import Base

ENTITY_TYPES = {"earning", "payout_request", "user_settings", "agreement"}
ACTOR_ROLES = {"admin", "instructor", "system"}

_json = JSON().with_variant(JSONB(), "postgresql")


class PayoutAuditLog(Base):
    """
    Append-only audit trail of every mutating ledger/payout operation.

    Updates and deletes fail twice over:
      - ORM: before_update / before_delete listeners raise.
      - PostgreSQL: trigger installed on create (and by the Alembic revision).
    """

    __tablename__ = "payout_audit_logs"
    __table_args__ = (
        Index("ix_payout_audit_logs_entity_timestamp", "entity_type", "entity_id", "timestamp"),
        Index("ix_payout_audit_logs_actor_timestamp", "actor_id", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # earning | payout_request | user_settings | agreement
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # create | update | approve | reject | cancel | re_request | upload_proof | status_change | email_failed
    action: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)

    previous_state: Mapped[Optional[dict[str, Any]]] = mapped_column(_json, nullable=True)
    new_state: Mapped[Optional[dict[str, Any]]] = mapped_column(_json, nullable=True)
    changed_fields: Mapped[list[str]] = mapped_column(_json, nullable=False, default=list)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


@event.listens_for(PayoutAuditLog, "before_update")
def _refuse_update(mapper, connection, target: PayoutAuditLog) -> None:
    raise ImmutableRecordError("AUDIT_LOG_IMMUTABLE", "Audit logs cannot be modified")


@event.listens_for(PayoutAuditLog, "before_delete")
def _refuse_delete(mapper, connection, target: PayoutAuditLog) -> None:
    raise ImmutableRecordError("AUDIT_LOG_IMMUTABLE", "Audit logs cannot be deleted")


APPEND_ONLY_FUNCTION = DDL(
    """
    CREATE OR REPLACE FUNCTION payout_audit_logs_append_only() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'payout_audit_logs is append-only';
    END;
    $$ LANGUAGE plpgsql;
    """
)

APPEND_ONLY_TRIGGER = DDL(
    """
    CREATE TRIGGER trg_payout_audit_logs_append_only
    BEFORE UPDATE OR DELETE ON payout_audit_logs
    FOR EACH ROW EXECUTE FUNCTION payout_audit_logs_append_only();
    """
)

event.listen(
    PayoutAuditLog.__table__,
    "after_create",
    APPEND_ONLY_FUNCTION.execute_if(dialect="postgresql"),
)
event.listen(
    PayoutAuditLog.__table__,
    "after_create",
    APPEND_ONLY_TRIGGER.execute_if(dialect="postgresql"),
)
