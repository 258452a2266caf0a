from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.models import BidPayment

IN_FLIGHT = ("initiated", "pending")


async def find_by_reference(
    session: AsyncSession,
    *,
    reference: str | None,
    poll_url: str | None = None,
) -> BidPayment | None:
    """Match a gateway reference: provider_txn_id, then receipt_no, then poll_url."""

    candidates = []
    if reference:
        candidates += [(BidPayment.provider_txn_id, reference), (BidPayment.receipt_no, reference)]
    if poll_url:
        candidates.append((BidPayment.poll_url, poll_url))

    for column, value in candidates:
        r = await session.execute(select(BidPayment).where(column == value).limit(1))
        payment = r.scalar_one_or_none()
        if payment is not None:
            return payment
    return None


async def success_for_bid(session: AsyncSession, *, bid_id: uuid.UUID) -> BidPayment | None:
    r = await session.execute(
        select(BidPayment).where(BidPayment.bid_id == bid_id, BidPayment.status == "success").limit(1)
    )
    return r.scalar_one_or_none()


async def in_flight_for_bid(session: AsyncSession, *, bid_id: uuid.UUID) -> BidPayment | None:
    r = await session.execute(
        select(BidPayment).where(BidPayment.bid_id == bid_id, BidPayment.status.in_(IN_FLIGHT)).limit(1)
    )
    return r.scalar_one_or_none()
