"""
Collaborators injected into the routers. Tests override these through
app.dependency_overrides.
"""
from __future__ import annotations

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from revshare.core.notifications import LoggingDispatcher, NotificationDispatcher
from revshare.core.proof_storage import LocalProofStorage, ProofStorage
from revshare.db.session import AsyncSessionLocal

_dispatcher = LoggingDispatcher()
_storage = LocalProofStorage()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def get_proof_storage() -> ProofStorage:
    return _storage


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def client_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")
