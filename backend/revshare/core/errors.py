# backend/revshare/core/errors.py
"""
Domain errors raised by the ledger and payout workflow.

Every error carries:
  - kind: validation | conflict | missing_dependency | forbidden
  - code: stable machine-readable identifier (e.g. PAYOUT_ALREADY_PENDING)

The API layer maps kind -> HTTP status in one place (see revshare.main).
"""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, code: str, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "kind": self.kind, "message": self.message, **self.extra}


class ValidationFailed(LedgerError):
    kind = "validation"
    status_code = 422


class ConflictError(LedgerError):
    kind = "conflict"
    status_code = 409


class ImmutableRecordError(ConflictError):
    pass


class MissingDependency(LedgerError):
    kind = "missing_dependency"
    status_code = 404


class NotPermitted(LedgerError):
    kind = "forbidden"
    status_code = 403
