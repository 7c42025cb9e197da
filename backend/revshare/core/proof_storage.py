# backend/revshare/core/proof_storage.py
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePath
from typing import Optional, Protocol

from revshare.core.clock import utcnow
from revshare.core.config import settings
from revshare.core.errors import ValidationFailed

ALLOWED_PROOF_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "application/pdf",
    "application/x-rar-compressed",
    "application/vnd.rar",
    "application/x-rar",
    "application/octet-stream",
    "application/zip",
    "application/x-zip-compressed",
}


@dataclass(frozen=True)
class ProofFile:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class ProofReference:
    original_name: str
    stored_name: str
    url: str
    mime_type: str
    size: int
    uploaded_at: datetime


class ProofStorage(Protocol):
    async def store(self, request_id: uuid.UUID, proof: ProofFile) -> ProofReference: ...


def validate_proof(proof: Optional[ProofFile], max_bytes: int | None = None) -> ProofFile:
    if proof is None or not proof.content:
        raise ValidationFailed("PROOF_REQUIRED", "Proof of payment file is required")

    limit = max_bytes if max_bytes is not None else settings.PAYOUT_PROOF_MAX_BYTES
    if proof.size > limit:
        raise ValidationFailed("PROOF_TOO_LARGE", f"File size cannot exceed {limit} bytes", size=proof.size)

    if proof.content_type not in ALLOWED_PROOF_MIME_TYPES:
        raise ValidationFailed("PROOF_TYPE_NOT_ALLOWED", f"Unsupported proof file type {proof.content_type!r}")
    return proof


class LocalProofStorage:
    """
    Writes proofs to a local directory and serves them under url_prefix.
    Stored name: <request id>_proof_<epoch ms><original extension>
    """

    def __init__(self, base_dir: str | Path | None = None, url_prefix: str = "/uploads/payout-proofs") -> None:
        self.base_dir = Path(base_dir or settings.PAYOUT_PROOF_DIR)
        self.url_prefix = url_prefix.rstrip("/")

    async def store(self, request_id: uuid.UUID, proof: ProofFile) -> ProofReference:
        now = utcnow()
        ext = PurePath(proof.filename or "").suffix.lower()
        stored_name = f"{request_id}_proof_{int(now.timestamp() * 1000)}{ext}"
        target = self.base_dir / stored_name

        def _write() -> None:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(proof.content)

        await asyncio.to_thread(_write)

        return ProofReference(
            original_name=proof.filename,
            stored_name=stored_name,
            url=f"{self.url_prefix}/{stored_name}",
            mime_type=proof.content_type,
            size=proof.size,
            uploaded_at=now,
        )
