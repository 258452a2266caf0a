from __future__ import annotations

from decimal import Decimal
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.models import Bid

ACTIVE_DISPUTES = ("raised", "under_review")


async def max_amount(session: AsyncSession, *, auction_id: uuid.UUID) -> Decimal | None:
    r = await session.execute(select(func.max(Bid.amount)).where(Bid.auction_id == auction_id))
    return r.scalar_one_or_none()


async def count_for_auction(session: AsyncSession, *, auction_id: uuid.UUID) -> int:
    r = await session.execute(select(func.count()).select_from(Bid).where(Bid.auction_id == auction_id))
    return int(r.scalar_one())


async def ranked(session: AsyncSession, *, auction_id: uuid.UUID) -> list[Bid]:
    """Highest amount first; ties by earliest placement, then lowest id."""
    r = await session.execute(
        select(Bid)
        .where(Bid.auction_id == auction_id)
        .order_by(Bid.amount.desc(), Bid.placed_at.asc(), Bid.id.asc())
    )
    return list(r.scalars().all())


async def has_open_dispute(session: AsyncSession, *, auction_id: uuid.UUID, bidder_id: uuid.UUID) -> bool:
    r = await session.execute(
        select(Bid.id)
        .where(
            Bid.auction_id == auction_id,
            Bid.bidder_id == bidder_id,
            Bid.dispute_status.in_(ACTIVE_DISPUTES),
        )
        .limit(1)
    )
    return r.scalar_one_or_none() is not None
