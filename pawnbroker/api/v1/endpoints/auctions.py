from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.auction import (
    AuctionCreate,
    AuctionDetailRead,
    AuctionRead,
    AuctionStatusUpdate,
    AuctionUpdate,
    BidCreate,
    BidRead,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/auctions", tags=["auctions"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_auction_endpoint(
    request: Request,
    payload: AuctionCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    auction = await services.auctions.create(session, data=payload, actor=actor)
    return ok(request, AuctionRead.model_validate(auction), message="Auction created")


@router.get("")
async def list_auctions_endpoint(
    request: Request,
    status: str | None = Query(None, description="draft | live | closed | cancelled"),
    asset_id: uuid.UUID | None = Query(None),
    auction_type: str | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.auctions.list_auctions(
        session, status=status, asset_id=asset_id, auction_type=auction_type, page=page, limit=limit
    )
    return ok(request, page_of(result, AuctionRead))


@router.get("/live")
async def live_auctions_endpoint(
    request: Request,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.auctions.live(session, page=page, limit=limit)
    return ok(request, page_of(result, AuctionRead))


@router.get("/stats")
async def auction_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.auctions.stats(session, actor=actor))


@router.get("/{auction_id}")
async def get_auction_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    auction, current_bid, bid_count = await services.auctions.get_detail(session, auction_id=auction_id)
    payload = AuctionRead.model_validate(auction).model_dump()
    return ok(request, AuctionDetailRead(**payload, current_bid=current_bid, bid_count=bid_count))


@router.put("/{auction_id}")
async def update_auction_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    payload: AuctionUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    auction = await services.auctions.update(session, auction_id=auction_id, data=payload, actor=actor)
    return ok(request, AuctionRead.model_validate(auction), message="Auction updated")


@router.put("/{auction_id}/status")
async def update_auction_status_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    payload: AuctionStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    auction = await services.auctions.update_status(session, auction_id=auction_id, status=payload.status, actor=actor)
    return ok(request, AuctionRead.model_validate(auction), message=f"Auction is now {auction.status}")


@router.post("/{auction_id}/bid", status_code=status.HTTP_201_CREATED)
async def place_bid_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    payload: BidCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    bid = await services.auctions.place_bid(session, auction_id=auction_id, amount=payload.amount, actor=actor)
    return ok(request, BidRead.model_validate(bid), message="Bid accepted")


@router.get("/{auction_id}/bids")
async def auction_bids_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.auctions.bids(session, auction_id=auction_id, page=page, limit=limit)
    return ok(request, page_of(result, BidRead))


@router.delete("/{auction_id}")
async def delete_auction_endpoint(
    request: Request,
    auction_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.auctions.delete(session, auction_id=auction_id, actor=actor)
    return ok(request, message="Auction deleted")
