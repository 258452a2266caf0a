from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud, identifiers
from pawnbroker.clock import Clock, utcnow
from pawnbroker.config import settings
from pawnbroker.crud import bid as bid_queries
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError, UnauthenticatedError, ValidationError
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.models import Auction, Bid, Loan, User
from pawnbroker.money import money
from pawnbroker.schemas.auction import AuctionCreate, AuctionUpdate
from pawnbroker.security import ADMIN_ROLES, OFFICER_ROLES, Actor
from pawnbroker.services.asset_status import AUCTION_ELIGIBLE_STATUSES, move_asset
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.notifications import Notification, Notifier, notify

logger = logging.getLogger("pawnbroker.auctions")

AUCTION_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"live", "cancelled"}),
    "live": frozenset({"closed", "cancelled"}),
    "cancelled": frozenset({"draft"}),
    "closed": frozenset(),
}
OPEN_AUCTION_STATUSES = ("draft", "live")
EDITABLE = frozenset({"draft", "cancelled"})

STATUS_VERBS = {"live": "start", "closed": "close", "cancelled": "cancel", "draft": "redraft"}


class AuctionService:
    def __init__(
        self,
        *,
        audit: AuditJournal,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        locks: KeyedLocks = default_locks,
    ) -> None:
        self.audit = audit
        self.notifier = notifier
        self.clock = clock
        self.locks = locks

    async def _open_auction_for_asset(self, session: AsyncSession, asset_id: uuid.UUID) -> Auction | None:
        r = await session.execute(
            select(Auction).where(Auction.asset_id == asset_id, Auction.status.in_(OPEN_AUCTION_STATUSES)).limit(1)
        )
        return r.scalar_one_or_none()

    async def create(self, session: AsyncSession, *, data: AuctionCreate, actor: Actor) -> Auction:
        actor.require(OFFICER_ROLES, "create auctions")
        now = self.clock()
        if data.starts_at < now:
            raise ValidationError("starts_at cannot be in the past", field="starts_at")

        async with self.locks.hold(f"asset:{data.asset_id}"):
            asset = await crud.assets.get_or_404(session, id=data.asset_id, for_update=True)
            if asset.status not in AUCTION_ELIGIBLE_STATUSES:
                raise BusinessRuleError(
                    f"An asset in status {asset.status} cannot be auctioned",
                    field="asset_id",
                    detail={"eligible": sorted(AUCTION_ELIGIBLE_STATUSES)},
                )
            existing = await self._open_auction_for_asset(session, asset.id)
            if existing is not None:
                raise BusinessRuleError(
                    f"Asset already has a {existing.status} auction",
                    field="asset_id",
                    detail={"auction_id": str(existing.id)},
                )

            auction = Auction(
                auction_no=await identifiers.generate_unique(session, Auction.auction_no, identifiers.auction_no, now=now),
                asset_id=asset.id,
                starting_bid=money(data.starting_bid),
                reserve_price=money(data.reserve_price) if data.reserve_price is not None else None,
                currency=data.currency or settings.default_currency,
                auction_type=data.auction_type,
                starts_at=data.starts_at,
                ends_at=data.ends_at,
                status="draft",
                created_by=actor.id,
                meta={},
            )
            session.add(auction)
            move_asset(asset, "auction", now=now)
            await session.flush()

            await self.audit.append(
                session,
                actor=actor,
                action="auction.create",
                entity_type="auction",
                entity_id=auction.id,
                after=auction,
                meta={"asset_status": asset.status},
            )
            await session.commit()
        return auction

    async def get(self, session: AsyncSession, *, auction_id: uuid.UUID) -> Auction:
        return await crud.auctions.get_or_404(session, id=auction_id)

    async def get_detail(self, session: AsyncSession, *, auction_id: uuid.UUID) -> tuple[Auction, Decimal, int]:
        """The auction with its current bid (or starting bid) and bid count."""

        auction = await self.get(session, auction_id=auction_id)
        top = await bid_queries.max_amount(session, auction_id=auction.id)
        count = await bid_queries.count_for_auction(session, auction_id=auction.id)
        return auction, money(top if top is not None else auction.starting_bid), count

    async def list_auctions(
        self,
        session: AsyncSession,
        *,
        status: str | None = None,
        asset_id: uuid.UUID | None = None,
        auction_type: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        q = select(Auction)
        if status:
            q = q.where(Auction.status == status)
        if asset_id is not None:
            q = q.where(Auction.asset_id == asset_id)
        if auction_type:
            q = q.where(Auction.auction_type == auction_type)
        return await paginate(session, q.order_by(Auction.starts_at.desc(), Auction.id), page=page, limit=limit)

    async def live(self, session: AsyncSession, *, page: int = 1, limit: int = 20) -> Page:
        now = self.clock()
        q = (
            select(Auction)
            .where(Auction.status == "live", Auction.starts_at <= now, Auction.ends_at > now)
            .order_by(Auction.ends_at.asc(), Auction.id)
        )
        return await paginate(session, q, page=page, limit=limit)

    async def bids(self, session: AsyncSession, *, auction_id: uuid.UUID, page: int = 1, limit: int = 20) -> Page:
        await crud.auctions.get_or_404(session, id=auction_id)
        q = (
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.amount.desc(), Bid.placed_at.asc(), Bid.id.asc())
        )
        return await paginate(session, q, page=page, limit=limit)

    async def update(self, session: AsyncSession, *, auction_id: uuid.UUID, data: AuctionUpdate, actor: Actor) -> Auction:
        actor.require(OFFICER_ROLES, "edit auctions")
        async with self.locks.hold(f"auction:{auction_id}"):
            auction = await crud.auctions.get_or_404(session, id=auction_id, for_update=True)
            if auction.status not in EDITABLE:
                raise InvalidStateError(f"A {auction.status} auction cannot be edited", field="status")

            changes = data.model_dump(exclude_unset=True)
            starts_at = changes.get("starts_at", auction.starts_at)
            ends_at = changes.get("ends_at", auction.ends_at)
            starting_bid = changes.get("starting_bid", auction.starting_bid)
            reserve = changes.get("reserve_price", auction.reserve_price)
            if ends_at <= starts_at:
                raise ValidationError("ends_at must be after starts_at", field="ends_at")
            if "starts_at" in changes and starts_at < self.clock():
                raise ValidationError("starts_at cannot be in the past", field="starts_at")
            if reserve is not None and starting_bid is not None and reserve < starting_bid:
                raise ValidationError("reserve_price must be >= starting_bid", field="reserve_price")

            before = snapshot(auction)
            if not crud.auctions.apply(auction, changes):
                return auction
            await self.audit.append(
                session, actor=actor, action="auction.update", entity_type="auction", entity_id=auction.id, before=before, after=auction
            )
            await session.commit()
        return auction

    async def update_status(self, session: AsyncSession, *, auction_id: uuid.UUID, status: str, actor: Actor) -> Auction:
        actor.require(ADMIN_ROLES, "change auction status")
        winner_email = None
        async with self.locks.hold(f"auction:{auction_id}"):
            auction = await crud.auctions.get_or_404(session, id=auction_id, for_update=True)
            if status not in AUCTION_TRANSITIONS.get(auction.status, frozenset()):
                raise InvalidStateError.transition("auction", auction.status, status)

            asset = await crud.assets.get_or_404(session, id=auction.asset_id, for_update=True)
            now = self.clock()
            before = snapshot(auction)
            meta: dict = {}

            if status == "live":
                if now >= auction.ends_at:
                    raise BusinessRuleError("Auction window has already ended", field="ends_at")
                if auction.starts_at > now:
                    auction.starts_at = now
            elif status == "closed":
                if now < auction.ends_at:
                    raise BusinessRuleError("Auction cannot close before ends_at", field="ends_at")
                meta = await self._settle_close(session, auction, asset, now=now)
                winner_email = meta.pop("winner_email", None)
            elif status == "cancelled":
                move_asset(asset, "overdue", now=now)
            elif status == "draft":
                other = await self._open_auction_for_asset(session, asset.id)
                if other is not None and other.id != auction.id:
                    raise BusinessRuleError(
                        f"Asset already has a {other.status} auction",
                        field="asset_id",
                        detail={"auction_id": str(other.id)},
                    )
                move_asset(asset, "auction", now=now)

            auction.status = status
            await self.audit.append(
                session,
                actor=actor,
                action=f"auction.{STATUS_VERBS[status]}",
                entity_type="auction",
                entity_id=auction.id,
                before=before,
                after=auction,
                meta={"asset_status": asset.status, **meta},
            )
            await session.commit()

        if winner_email:
            notify(
                self.notifier,
                Notification(
                    kind="auction.won",
                    to=winner_email,
                    subject=f"You won auction {auction.auction_no}",
                    body=(
                        f"Your bid of {auction.currency} {auction.winning_bid_amount} won auction "
                        f"{auction.auction_no}. Please complete payment."
                    ),
                    context={"auction_id": str(auction.id), "bid_id": str(auction.winning_bid_id)},
                ),
            )
        return auction

    async def _settle_close(self, session: AsyncSession, auction: Auction, asset, *, now: datetime) -> dict:
        """Pick the winner and cascade to bid, asset and loan."""

        auction.closed_at = now
        ranked = await bid_queries.ranked(session, auction_id=auction.id)
        top = ranked[0] if ranked else None

        if top is None or (auction.reserve_price is not None and top.amount < auction.reserve_price):
            move_asset(asset, "overdue", now=now)
            logger.info("auction closed without winner auction_no=%s bids=%s", auction.auction_no, len(ranked))
            return {"winner": None, "bid_count": len(ranked), "reserve_met": False}

        auction.winner_id = top.bidder_id
        auction.winning_bid_id = top.id
        auction.winning_bid_amount = top.amount
        top.payment_status = "pending"

        loan_id = asset.active_loan_id
        move_asset(asset, "sold", now=now)
        sold_loans = []
        r = await session.execute(select(Loan).where(Loan.asset_id == asset.id, Loan.status == "auction").with_for_update())
        for loan in r.scalars().all():
            loan.status = "sold"
            loan.closed_at = now
            sold_loans.append(str(loan.id))
        if loan_id is not None and str(loan_id) not in sold_loans:
            logger.warning("asset %s sold while loan %s was not in auction status", asset.asset_no, loan_id)

        winner = await session.get(User, top.bidder_id)
        logger.info("auction closed auction_no=%s winner=%s amount=%s", auction.auction_no, top.bidder_id, top.amount)
        return {
            "winner": top.bidder_id,
            "winning_bid_id": top.id,
            "bid_count": len(ranked),
            "reserve_met": True,
            "sold_loans": sold_loans,
            "winner_email": winner.email if winner else None,
        }

    async def place_bid(self, session: AsyncSession, *, auction_id: uuid.UUID, amount: Decimal, actor: Actor) -> Bid:
        if actor.id is None:
            raise UnauthenticatedError("Sign in to place a bid")
        amount = money(amount)

        async with self.locks.hold(f"auction:{auction_id}"):
            auction = await crud.auctions.get_or_404(session, id=auction_id, for_update=True)
            now = self.clock()
            if auction.status != "live":
                raise InvalidStateError(f"Bids are not accepted on a {auction.status} auction", field="auction_id")
            if not (auction.starts_at <= now < auction.ends_at):
                raise InvalidStateError("Auction is outside its bidding window", field="auction_id")

            asset = await crud.assets.get_or_404(session, id=auction.asset_id)
            if asset.owner_id == actor.id:
                raise BusinessRuleError("Owners cannot bid on their own asset", field="auction_id")
            if await bid_queries.has_open_dispute(session, auction_id=auction.id, bidder_id=actor.id):
                raise BusinessRuleError("You have an open dispute on this auction", field="auction_id")

            top = await bid_queries.max_amount(session, auction_id=auction.id)
            floor = money(top if top is not None else auction.starting_bid)
            if amount <= floor:
                raise BusinessRuleError(
                    f"Bid must be greater than {floor}", field="amount", detail={"current_bid": str(floor)}
                )

            bid = Bid(
                auction_id=auction.id,
                bidder_id=actor.id,
                amount=amount,
                currency=auction.currency,
                placed_at=now,
                meta={"channel": actor.channel},
            )
            session.add(bid)
            try:
                await session.flush()
            except IntegrityError as exc:
                await session.rollback()
                raise BusinessRuleError(f"A bid of {amount} already exists", field="amount") from exc

            await self.audit.append(
                session,
                actor=actor,
                action="bid.place",
                entity_type="bid",
                entity_id=bid.id,
                after=bid,
                meta={"auction_id": auction.id, "previous_max": floor},
            )
            await session.commit()
        return bid

    async def delete(self, session: AsyncSession, *, auction_id: uuid.UUID, actor: Actor) -> None:
        actor.require(ADMIN_ROLES, "delete auctions")
        async with self.locks.hold(f"auction:{auction_id}"):
            auction = await crud.auctions.get_or_404(session, id=auction_id, for_update=True)
            if auction.status not in EDITABLE:
                raise InvalidStateError(f"A {auction.status} auction cannot be deleted", field="status")
            if await bid_queries.count_for_auction(session, auction_id=auction.id):
                raise BusinessRuleError("Auctions with bids cannot be deleted", field="auction_id")

            asset = await crud.assets.get_or_404(session, id=auction.asset_id, for_update=True)
            move_asset(asset, "overdue", now=self.clock())
            await self.audit.append(
                session,
                actor=actor,
                action="auction.delete",
                entity_type="auction",
                entity_id=auction.id,
                before=auction,
                meta={"asset_status": asset.status},
            )
            await session.delete(auction)
            await session.commit()

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        if not actor.is_staff:
            raise ForbiddenError("Not allowed to view auction statistics")
        by_status = await crud.auctions.count_by(session, Auction.status)
        bids = await session.execute(select(func.count()).select_from(Bid))
        sold = await session.execute(
            select(func.count(), func.coalesce(func.sum(Auction.winning_bid_amount), 0)).where(
                Auction.status == "closed", Auction.winner_id.is_not(None)
            )
        )
        sold_count, sold_total = sold.one()
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "total_bids": int(bids.scalar_one()),
            "sold": int(sold_count),
            "gross_winning_amount": money(sold_total),
        }
