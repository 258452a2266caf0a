import asyncio
from datetime import timedelta
from decimal import Decimal
import re

import pytest
from sqlalchemy import select

from pawnbroker.errors import BusinessRuleError, InvalidStateError, UnauthenticatedError
from pawnbroker.models import Auction, Bid
from pawnbroker.schemas.auction import AuctionCreate
from pawnbroker.security import Actor
from tests.conftest import T0
from tests.factories import actor_of, auth_headers, make_asset, make_loan, make_user


async def _live_auction(session, services, *, reserve=None, asset_status="overdue"):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    admin = actor_of(await make_user(session, "admin_pawn_limited"))
    asset = await make_asset(session, owner, status=asset_status)
    auction = await services.auctions.create(
        session,
        data=AuctionCreate(
            asset_id=asset.id,
            starting_bid=Decimal("500"),
            reserve_price=reserve,
            starts_at=T0,
            ends_at=T0 + timedelta(hours=1),
        ),
        actor=officer,
    )
    auction = await services.auctions.update_status(session, auction_id=auction.id, status="live", actor=admin)
    return owner, asset, auction, admin


@pytest.mark.anyio
async def test_auction_happy_path(session, services, clock, notifier):
    owner, asset, auction, admin = await _live_auction(session, services)
    assert re.fullmatch(r"AUCTION-2501-\d{4}", auction.auction_no)
    await session.refresh(asset)
    assert asset.status == "auction"

    u2 = actor_of(await make_user(session, "customer"))
    u3_user = await make_user(session, "customer")
    u3 = actor_of(u3_user)

    clock.set(T0 + timedelta(minutes=5))
    first = await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("550"), actor=u2)
    assert first.amount == Decimal("550.00")

    clock.set(T0 + timedelta(minutes=6))
    with pytest.raises(BusinessRuleError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("540"), actor=u2)

    clock.set(T0 + timedelta(minutes=10))
    top = await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("700"), actor=u3)

    _, current, count = await services.auctions.get_detail(session, auction_id=auction.id)
    assert current == Decimal("700.00")
    assert count == 2

    with pytest.raises(BusinessRuleError):
        await services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)

    clock.set(T0 + timedelta(hours=1, seconds=1))
    closed = await services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)
    assert closed.status == "closed"
    assert closed.winner_id == u3.id
    assert closed.winning_bid_id == top.id
    assert closed.winning_bid_amount == Decimal("700.00")

    await session.refresh(asset)
    await session.refresh(top)
    assert asset.status == "sold"
    assert top.payment_status == "pending"
    assert notifier.sent[-1].kind == "auction.won"
    assert notifier.sent[-1].to == u3_user.email

    with pytest.raises(InvalidStateError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("900"), actor=u2)


@pytest.mark.anyio
async def test_bidding_rules(session, services, clock):
    owner, asset, auction, admin = await _live_auction(session, services)
    bidder = actor_of(await make_user(session, "customer"))
    clock.advance(minutes=1)

    with pytest.raises(BusinessRuleError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("900"), actor=actor_of(owner))
    with pytest.raises(BusinessRuleError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("500"), actor=bidder)
    with pytest.raises(UnauthenticatedError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("600"), actor=Actor(id=None))

    clock.set(T0 + timedelta(hours=1))
    with pytest.raises(InvalidStateError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("600"), actor=bidder)


@pytest.mark.anyio
async def test_reserve_not_met_returns_asset(session, services, clock):
    owner, asset, auction, admin = await _live_auction(session, services, reserve=Decimal("1000"))
    clock.advance(minutes=1)
    await services.auctions.place_bid(
        session, auction_id=auction.id, amount=Decimal("800"), actor=actor_of(await make_user(session))
    )

    clock.set(T0 + timedelta(hours=2))
    closed = await services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)
    assert closed.winner_id is None
    await session.refresh(asset)
    assert asset.status == "overdue"


@pytest.mark.anyio
async def test_close_sells_the_defaulted_loan(session, services, clock):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    admin = actor_of(await make_user(session, "admin_pawn_limited"))
    asset = await make_asset(session, owner, status="auction")
    loan = await make_loan(session, asset, start=T0 - timedelta(days=60), status="auction")

    auction = await services.auctions.create(
        session,
        data=AuctionCreate(asset_id=asset.id, starting_bid=Decimal("500"), starts_at=T0, ends_at=T0 + timedelta(hours=1)),
        actor=officer,
    )
    await services.auctions.update_status(session, auction_id=auction.id, status="live", actor=admin)
    clock.advance(minutes=1)
    await services.auctions.place_bid(
        session, auction_id=auction.id, amount=Decimal("650"), actor=actor_of(await make_user(session))
    )
    clock.set(T0 + timedelta(hours=1))
    await services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)

    await session.refresh(loan)
    await session.refresh(asset)
    assert loan.status == "sold"
    assert asset.status == "sold"
    assert asset.active_loan_id is None


@pytest.mark.anyio
async def test_only_eligible_assets_are_auctioned(session, services):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, owner, status="active")
    with pytest.raises(BusinessRuleError):
        await services.auctions.create(
            session,
            data=AuctionCreate(asset_id=asset.id, starting_bid=Decimal("500"), starts_at=T0, ends_at=T0 + timedelta(hours=1)),
            actor=officer,
        )


@pytest.mark.anyio
async def test_cancel_returns_asset_to_overdue(session, services):
    owner, asset, auction, admin = await _live_auction(session, services)
    await services.auctions.update_status(session, auction_id=auction.id, status="cancelled", actor=admin)
    await session.refresh(asset)
    assert asset.status == "overdue"


@pytest.mark.anyio
async def test_redraft_refused_while_asset_has_another_open_auction(session, services):
    owner, asset, first, admin = await _live_auction(session, services)
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    await services.auctions.update_status(session, auction_id=first.id, status="cancelled", actor=admin)

    second = await services.auctions.create(
        session,
        data=AuctionCreate(asset_id=asset.id, starting_bid=Decimal("400"), starts_at=T0, ends_at=T0 + timedelta(hours=2)),
        actor=officer,
    )
    with pytest.raises(BusinessRuleError) as exc:
        await services.auctions.update_status(session, auction_id=first.id, status="draft", actor=admin)
    assert exc.value.detail == {"auction_id": str(second.id)}

    open_auctions = (
        await session.execute(
            select(Auction).where(Auction.asset_id == asset.id, Auction.status.in_(("draft", "live")))
        )
    ).scalars().all()
    assert [a.id for a in open_auctions] == [second.id]

    # with the competing auction gone the old one can be redrafted
    await services.auctions.update_status(session, auction_id=second.id, status="cancelled", actor=admin)
    redrafted = await services.auctions.update_status(session, auction_id=first.id, status="draft", actor=admin)
    assert redrafted.status == "draft"
    await session.refresh(asset)
    assert asset.status == "auction"


@pytest.mark.anyio
async def test_concurrent_equal_bids_accept_exactly_one(session_factory, session, services, clock):
    owner, asset, auction, admin = await _live_auction(session, services)
    a = actor_of(await make_user(session))
    b = actor_of(await make_user(session))
    clock.advance(minutes=1)

    async def bid(actor):
        async with session_factory() as s:
            return await services.auctions.place_bid(s, auction_id=auction.id, amount=Decimal("600"), actor=actor)

    results = await asyncio.gather(bid(a), bid(b), return_exceptions=True)
    accepted = [r for r in results if isinstance(r, Bid)]
    rejected = [r for r in results if isinstance(r, BusinessRuleError)]
    assert len(accepted) == 1
    assert len(rejected) == 1

    rows = (await session.execute(select(Bid).where(Bid.auction_id == auction.id))).scalars().all()
    assert [r.amount for r in rows] == [Decimal("600.00")]


@pytest.mark.anyio
async def test_bid_over_http(client, session, clock):
    owner = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    admin = await make_user(session, "admin_pawn_limited")
    bidder = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="overdue")

    r = await client.post(
        "/api/v1/auctions",
        json={
            "asset_id": str(asset.id),
            "starting_bid": "500.00",
            "starts_at": T0.isoformat(),
            "ends_at": (T0 + timedelta(hours=1)).isoformat(),
        },
        headers=auth_headers(officer),
    )
    assert r.status_code == 201, r.text
    auction_id = r.json()["data"]["id"]

    r = await client.put(f"/api/v1/auctions/{auction_id}/status", json={"status": "live"}, headers=auth_headers(admin))
    assert r.status_code == 200, r.text

    clock.advance(minutes=2)
    r = await client.post(f"/api/v1/auctions/{auction_id}/bid", json={"amount": "450.00"}, headers=auth_headers(bidder))
    assert r.status_code == 400
    assert r.json()["kind"] == "business_rule"

    r = await client.post(f"/api/v1/auctions/{auction_id}/bid", json={"amount": "525.00"}, headers=auth_headers(bidder))
    assert r.status_code == 201, r.text

    r = await client.get(f"/api/v1/auctions/{auction_id}", headers=auth_headers(bidder))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["current_bid"] == "525.00"
    assert data["bid_count"] == 1
