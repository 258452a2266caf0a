from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.auction import BidRead, DisputeRaise, DisputeResolve, DisputeReview
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/bids", tags=["bids"])


@router.get("/me")
async def my_bids_endpoint(
    request: Request,
    auction_id: uuid.UUID | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.bids.my_bids(session, actor=actor, auction_id=auction_id, page=page, limit=limit)
    return ok(request, page_of(result, BidRead))


@router.get("/stats")
async def bid_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.bids.stats(session, actor=actor))


@router.get("/{bid_id}")
async def get_bid_endpoint(
    request: Request,
    bid_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    bid = await services.bids.get(session, bid_id=bid_id, actor=actor)
    return ok(request, BidRead.model_validate(bid))


@router.post("/{bid_id}/dispute")
async def raise_dispute_endpoint(
    request: Request,
    bid_id: uuid.UUID,
    payload: DisputeRaise,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    bid = await services.bids.raise_dispute(session, bid_id=bid_id, reason=payload.reason, actor=actor)
    return ok(request, BidRead.model_validate(bid), message="Dispute raised")


@router.post("/{bid_id}/dispute/review")
async def review_dispute_endpoint(
    request: Request,
    bid_id: uuid.UUID,
    payload: DisputeReview | None = None,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    bid = await services.bids.review(session, bid_id=bid_id, notes=payload.notes if payload else None, actor=actor)
    return ok(request, BidRead.model_validate(bid), message="Dispute under review")


@router.post("/{bid_id}/dispute/resolve")
async def resolve_dispute_endpoint(
    request: Request,
    bid_id: uuid.UUID,
    payload: DisputeResolve,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    bid = await services.bids.resolve(
        session, bid_id=bid_id, outcome=payload.outcome, notes=payload.notes, actor=actor
    )
    return ok(request, BidRead.model_validate(bid), message=f"Dispute {bid.dispute_status.replace('_', ' ')}")
