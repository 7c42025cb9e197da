from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from revshare.api.deps.services import get_dispatcher, get_proof_storage, get_session_factory
from revshare.core.notifications import RecordingDispatcher, wait_for_background_notifications
from revshare.core.proof_storage import LocalProofStorage
from revshare.core.security import create_access_token
from revshare.db.session import engine_options, get_db

# Ensure Base + models are registered before create_all
from revshare.db.base import Base
import revshare.models  # noqa: F401
from revshare.models.instructor_earning import EARNING_ACCRUED, InstructorEarning
from revshare.models.platform_settings import PlatformSettings
from revshare.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, User


# ---------------------------------------------------------
# Engine: one throwaway SQLite file per test
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def engine(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    engine = create_async_engine(url, echo=False, **engine_options(url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


async def install_trigger(engine, name: str, table: str, when: str = "BEFORE INSERT", condition: str = "") -> None:
    """SQLite trigger that aborts matching writes, to simulate a failing store."""
    async with engine.begin() as conn:
        await conn.exec_driver_sql(
            f"CREATE TRIGGER {name} {when} ON {table} {condition} "
            f"BEGIN SELECT RAISE(ABORT, '{name}'); END"
        )


@pytest_asyncio.fixture()
async def audit_store_down(engine):
    """Every audit insert fails from here on."""
    await install_trigger(engine, "audit_store_down", "payout_audit_logs")


@pytest.fixture()
def sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ---------------------------------------------------------
# DB session for setup / assertions
# ---------------------------------------------------------
@pytest_asyncio.fixture()
async def db(sessionmaker):
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Collaborators
# ---------------------------------------------------------
@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def storage(tmp_path) -> LocalProofStorage:
    return LocalProofStorage(base_dir=tmp_path / "proofs")


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, dispatcher, storage):
    from revshare.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    fastapi_app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    fastapi_app.dependency_overrides[get_proof_storage] = lambda: storage
    fastapi_app.dependency_overrides[get_session_factory] = lambda: sessionmaker
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    # approval emails run as background tasks
    await wait_for_background_notifications()


# ---------------------------------------------------------
# Factories
# ---------------------------------------------------------
async def create_user(db, role: str = ROLE_INSTRUCTOR, name: str | None = None) -> User:
    user = User(
        email=f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        name=name or role.title(),
        role=role,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


async def add_earning(
    db,
    instructor_id: uuid.UUID,
    instructor_amount: int,
    *,
    currency: str = "SYP",
    status: str = EARNING_ACCRUED,
) -> InstructorEarning:
    """Earning row written directly (70/30 split implied by instructor_amount)."""
    paid = instructor_amount * 10 // 7
    earning = InstructorEarning(
        payment_id=uuid.uuid4(),
        instructor_id=instructor_id,
        course_id=uuid.uuid4(),
        course_name="Algebra I",
        currency=currency,
        student_paid_amount=paid,
        base_amount=paid,
        instructor_percentage=Decimal("70"),
        platform_percentage=Decimal("30"),
        instructor_amount=instructor_amount,
        platform_amount=paid - instructor_amount,
        status=status,
    )
    db.add(earning)
    await db.commit()
    return earning


async def set_minimum_payout(db, currency: str, amount: int) -> PlatformSettings:
    row = PlatformSettings(id=1, minimum_payouts={currency: amount})
    db.add(row)
    await db.commit()
    return row


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest_asyncio.fixture()
async def instructor(db) -> User:
    return await create_user(db, ROLE_INSTRUCTOR, name="Rana Instructor")


@pytest_asyncio.fixture()
async def admin(db) -> User:
    return await create_user(db, ROLE_ADMIN, name="Ops Admin")
