from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.models import LoanTerm


async def latest(session: AsyncSession, *, loan_id: uuid.UUID) -> LoanTerm | None:
    r = await session.execute(
        select(LoanTerm).where(LoanTerm.loan_id == loan_id).order_by(LoanTerm.term_no.desc()).limit(1)
    )
    return r.scalar_one_or_none()


async def latest_approved(session: AsyncSession, *, loan_id: uuid.UUID) -> LoanTerm | None:
    r = await session.execute(
        select(LoanTerm)
        .where(LoanTerm.loan_id == loan_id, LoanTerm.approved_at.is_not(None))
        .order_by(LoanTerm.term_no.desc())
        .limit(1)
    )
    return r.scalar_one_or_none()


async def next_term_no(session: AsyncSession, *, loan_id: uuid.UUID) -> int:
    r = await session.execute(select(func.max(LoanTerm.term_no)).where(LoanTerm.loan_id == loan_id))
    current = r.scalar_one_or_none()
    return (current or 0) + 1


async def timeline(session: AsyncSession, *, loan_id: uuid.UUID) -> list[LoanTerm]:
    r = await session.execute(select(LoanTerm).where(LoanTerm.loan_id == loan_id).order_by(LoanTerm.term_no.asc()))
    return list(r.scalars().all())
