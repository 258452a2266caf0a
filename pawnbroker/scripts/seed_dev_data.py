from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
import os
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pawnbroker.config import settings
from pawnbroker.models import DebtorRecord, User
from pawnbroker.security import ADMIN, APPROVER, CALL_CENTRE, CUSTOMER, MANAGEMENT, PROCESSOR, SUPER_ADMIN, hash_password


@dataclass(frozen=True)
class SeedUserSpec:
    email: str
    role: str
    first_name: str
    last_name: str


DEMO_USERS: tuple[SeedUserSpec, ...] = (
    SeedUserSpec(email="super@demo.local", role=SUPER_ADMIN, first_name="Demo", last_name="Vendor"),
    SeedUserSpec(email="admin@demo.local", role=ADMIN, first_name="Demo", last_name="Admin"),
    SeedUserSpec(email="support@demo.local", role=CALL_CENTRE, first_name="Demo", last_name="Support"),
    SeedUserSpec(email="processor@demo.local", role=PROCESSOR, first_name="Demo", last_name="Processor"),
    SeedUserSpec(email="approver@demo.local", role=APPROVER, first_name="Demo", last_name="Approver"),
    SeedUserSpec(email="management@demo.local", role=MANAGEMENT, first_name="Demo", last_name="Manager"),
    SeedUserSpec(email="customer@demo.local", role=CUSTOMER, first_name="Demo", last_name="Customer"),
)

DEMO_DEBTORS = (
    {"client_name": "Tendai Moyo", "national_id_number": "63-123456-A-42", "account_status": "Arrears", "amount_outstanding": Decimal("420.00")},
    {"client_name": "Rudo Chikwava", "national_id_number": "08-765432-B-17", "account_status": "Paid up", "amount_outstanding": Decimal("0.00")},
)


async def _get_or_create_user(session: AsyncSession, *, spec: SeedUserSpec, password: str) -> User:
    res = await session.execute(select(User).where(User.email == spec.email, User.status != "deleted"))
    user = res.scalar_one_or_none()

    if user is None:
        user = User(
            email=spec.email,
            roles=[spec.role],
            first_name=spec.first_name,
            last_name=spec.last_name,
            password_hash=hash_password(password),
            status="active",
            email_verified=True,
        )
        session.add(user)
        await session.flush()
    else:
        # keep demo accounts usable across reseeds
        user.status = "active"
        user.roles = [spec.role]
        user.first_name = user.first_name or spec.first_name
        user.last_name = user.last_name or spec.last_name

    return user


async def _ensure_debtors(session: AsyncSession) -> None:
    for row in DEMO_DEBTORS:
        res = await session.execute(
            select(DebtorRecord).where(DebtorRecord.national_id_number == row["national_id_number"]).limit(1)
        )
        if res.scalar_one_or_none() is None:
            session.add(DebtorRecord(**row))


@dataclass(frozen=True)
class SeedResult:
    user_ids: dict[str, uuid.UUID]


async def seed_dev_data(database_url: str | None = None) -> SeedResult:
    password = os.getenv("SEED_PASSWORD", "ChangeMe123!")
    engine = create_async_engine(database_url or settings.database_url, pool_pre_ping=True)
    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    async with session_maker() as session:
        async with session.begin():
            user_ids: dict[str, uuid.UUID] = {}
            for spec in DEMO_USERS:
                user = await _get_or_create_user(session, spec=spec, password=password)
                user_ids[spec.email] = user.id
            await _ensure_debtors(session)

    await engine.dispose()
    return SeedResult(user_ids=user_ids)


def main() -> None:
    asyncio.run(seed_dev_data())


if __name__ == "__main__":
    main()
