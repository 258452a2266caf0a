from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError
from pawnbroker.models import AuditLog
from pawnbroker.schemas.auction import AuctionCreate
from pawnbroker.schemas.bid_payment import BidPaymentCreate
from tests.conftest import T0
from tests.factories import actor_of, auth_headers, make_asset, make_closed_auction, make_payment, make_user


async def _staff(session):
    return (
        actor_of(await make_user(session, "loan_officer_processor")),
        actor_of(await make_user(session, "loan_officer_approval")),
        actor_of(await make_user(session, "admin_pawn_limited")),
    )


async def _actions(session, entity_id) -> list[str]:
    r = await session.execute(
        select(AuditLog.action).where(AuditLog.entity_id == str(entity_id))
    )
    return list(r.scalars())


@pytest.mark.anyio
async def test_dispute_blocks_payment_until_resolved(session, services, clock):
    officer, approver, admin = await _staff(session)
    owner = await make_user(session, "customer")
    winner_user = await make_user(session, "customer")
    winner = actor_of(winner_user)
    asset = await make_asset(session, owner, status="overdue")

    auction = await services.auctions.create(
        session,
        data=AuctionCreate(asset_id=asset.id, starting_bid=Decimal("500"), starts_at=T0, ends_at=T0 + timedelta(hours=1)),
        actor=officer,
    )
    await services.auctions.update_status(session, auction_id=auction.id, status="live", actor=admin)
    clock.advance(minutes=10)
    bid = await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("700"), actor=winner)

    bid = await services.bids.raise_dispute(session, bid_id=bid.id, reason="Item description was wrong", actor=winner)
    assert bid.dispute_status == "raised"
    assert bid.dispute_raised_by == winner_user.id

    # an open dispute keeps the bidder out of further bidding
    with pytest.raises(BusinessRuleError):
        await services.auctions.place_bid(session, auction_id=auction.id, amount=Decimal("750"), actor=winner)

    bid = await services.bids.review(session, bid_id=bid.id, actor=officer, notes="Checking photos")
    assert bid.dispute_status == "under_review"

    clock.set(T0 + timedelta(hours=1))
    auction = await services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)
    assert auction.winning_bid_id == bid.id

    pay = BidPaymentCreate(bid_id=bid.id, amount=Decimal("700"), method="cash")
    with pytest.raises(BusinessRuleError) as exc:
        await services.bid_payments.create(session, data=pay, actor=winner)
    assert exc.value.detail == {"dispute_status": "under_review"}

    bid = await services.bids.resolve(session, bid_id=bid.id, outcome="resolved_valid", actor=approver)
    assert bid.dispute_resolved_by == approver.id
    payment = await services.bid_payments.create(session, data=pay, actor=winner)
    assert payment.status == "pending"

    assert sorted(await _actions(session, bid.id)) == ["bid.dispute_raise", "bid.dispute_resolve", "bid.dispute_review", "bid.place"]


@pytest.mark.anyio
async def test_invalid_dispute_refunds_successful_payment(session, services):
    officer, approver, admin = await _staff(session)
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="sold")
    auction, bid = await make_closed_auction(session, asset, winner, at=T0, dispute_status="under_review")
    payment = await make_payment(session, bid, status="success")

    with pytest.raises(InvalidStateError):
        await services.bid_payments.refund(session, payment_id=payment.id, actor=admin)

    bid = await services.bids.resolve(
        session, bid_id=bid.id, outcome="resolved_invalid", actor=approver, notes="Bidder misrepresented"
    )
    assert bid.payment_status == "cancelled"
    assert bid.paid_amount == Decimal("0")

    await session.refresh(payment)
    await session.refresh(auction)
    assert payment.status == "refunded"
    assert payment.meta["refund"]["reason"] == "Bidder misrepresented"
    assert auction.meta["payment_refunded"] is True

    # one resolution, one entry: the refund is recorded inside it
    assert await _actions(session, payment.id) == []
    entry = (await session.execute(select(AuditLog).where(AuditLog.entity_id == str(bid.id)))).scalar_one()
    assert entry.action == "bid.dispute_resolve"
    assert entry.actor_id == approver.id
    assert entry.meta["refunded_payment_id"] == str(payment.id)
    assert entry.meta["refund"]["manual"] is True
    assert entry.meta["payment"]["before"]["status"] == "success"
    assert entry.meta["payment"]["after"]["status"] == "refunded"


@pytest.mark.anyio
async def test_staff_cannot_force_success_during_dispute(session, services):
    _, _, admin = await _staff(session)
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="sold")
    auction, bid = await make_closed_auction(session, asset, winner, at=T0, dispute_status="raised")
    payment = await make_payment(session, bid, status="pending")

    with pytest.raises(InvalidStateError) as exc:
        await services.bid_payments.update_status(session, payment_id=payment.id, status="success", actor=admin)
    assert exc.value.detail == {"dispute_status": "raised"}

    payment = await services.bid_payments.update_status(session, payment_id=payment.id, status="cancelled", actor=admin)
    assert payment.status == "cancelled"


@pytest.mark.anyio
async def test_held_gateway_success_lands_after_valid_resolution(session, services, gateway):
    officer, approver, _ = await _staff(session)
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="sold")
    auction, bid = await make_closed_auction(session, asset, winner, at=T0, dispute_status="raised")
    payment = await make_payment(session, bid, status="pending", method="ecocash", poll_url="https://gateway.test/poll/3")
    gateway.poll_status = "Paid"

    payment = await services.bid_payments.check_status(session, payment_id=payment.id, actor=actor_of(winner))
    assert payment.status == "pending"
    assert payment.meta["held_status"] == "success"

    await services.bids.review(session, bid_id=bid.id, actor=officer)
    await services.bids.resolve(session, bid_id=bid.id, outcome="resolved_valid", actor=approver)

    payment = await services.bid_payments.check_status(session, payment_id=payment.id, actor=actor_of(winner))
    assert payment.status == "success"
    assert "held_status" not in payment.meta
    await session.refresh(bid)
    assert bid.payment_status == "paid"


@pytest.mark.anyio
async def test_dispute_guards(session, services):
    officer, approver, _ = await _staff(session)
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    stranger = actor_of(await make_user(session, "customer"))
    asset = await make_asset(session, owner, status="sold")
    auction, bid = await make_closed_auction(session, asset, winner, at=T0)

    with pytest.raises(InvalidStateError):
        await services.bids.raise_dispute(session, bid_id=bid.id, reason="Too late now", actor=actor_of(winner))
    with pytest.raises(ForbiddenError):
        await services.bids.raise_dispute(session, bid_id=bid.id, reason="Not my bid", actor=stranger)
    with pytest.raises(InvalidStateError):
        await services.bids.review(session, bid_id=bid.id, actor=officer)

    bid.dispute_status = "raised"
    await session.commit()
    with pytest.raises(ForbiddenError):
        await services.bids.review(session, bid_id=bid.id, actor=stranger)
    with pytest.raises(InvalidStateError):
        await services.bids.resolve(session, bid_id=bid.id, outcome="resolved_valid", actor=approver)

    await services.bids.review(session, bid_id=bid.id, actor=officer)
    with pytest.raises(ForbiddenError):
        await services.bids.resolve(session, bid_id=bid.id, outcome="resolved_valid", actor=officer)


@pytest.mark.anyio
async def test_dispute_on_closed_auction_over_http(client, session):
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="sold")
    auction, bid = await make_closed_auction(session, asset, winner, at=T0)

    r = await client.post(
        f"/api/v1/bids/{bid.id}/dispute", json={"reason": "Wrong item"}, headers=auth_headers(winner)
    )
    assert r.status_code == 400
    assert r.json()["kind"] == "invalid_state"

    r = await client.post(f"/api/v1/bids/{bid.id}/dispute", json={"reason": "x"}, headers=auth_headers(winner))
    assert r.status_code == 400
    assert r.json()["kind"] == "validation"
