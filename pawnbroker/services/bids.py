from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud import bid_payment as payment_queries
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError, UnauthenticatedError
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.models import Bid
from pawnbroker.money import ZERO
from pawnbroker.security import APPROVER_ROLES, OFFICER_ROLES, Actor
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.bid_payments import BidPaymentService

DISPUTE_TRANSITIONS: dict[str, frozenset[str]] = {
    "none": frozenset({"raised"}),
    "raised": frozenset({"under_review"}),
    "under_review": frozenset({"resolved_valid", "resolved_invalid"}),
    "resolved_valid": frozenset(),
    "resolved_invalid": frozenset(),
}
DISPUTE_VERBS = {
    "raised": "dispute_raise",
    "under_review": "dispute_review",
    "resolved_valid": "dispute_resolve",
    "resolved_invalid": "dispute_resolve",
}


class DisputeService:
    """Bid lookups and the dispute sub-protocol."""

    def __init__(
        self,
        *,
        audit: AuditJournal,
        payments: BidPaymentService,
        clock: Clock = utcnow,
        locks: KeyedLocks = default_locks,
    ) -> None:
        self.audit = audit
        self.payments = payments
        self.clock = clock
        self.locks = locks

    async def get(self, session: AsyncSession, *, bid_id: uuid.UUID, actor: Actor) -> Bid:
        bid = await crud.bids.get_or_404(session, id=bid_id)
        if actor.is_customer_only and bid.bidder_id != actor.id:
            raise ForbiddenError("You can only access your own bids")
        return bid

    async def my_bids(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        auction_id: uuid.UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if actor.id is None:
            raise UnauthenticatedError("Sign in to see your bids")
        q = select(Bid).where(Bid.bidder_id == actor.id)
        if auction_id is not None:
            q = q.where(Bid.auction_id == auction_id)
        return await paginate(session, q.order_by(Bid.placed_at.desc(), Bid.id), page=page, limit=limit)

    def _check_transition(self, bid: Bid, target: str) -> None:
        if target not in DISPUTE_TRANSITIONS.get(bid.dispute_status, frozenset()):
            raise InvalidStateError.transition("dispute", bid.dispute_status, target)

    async def raise_dispute(self, session: AsyncSession, *, bid_id: uuid.UUID, reason: str, actor: Actor) -> Bid:
        async with self.locks.hold(f"bid:{bid_id}"):
            bid = await crud.bids.get_or_404(session, id=bid_id, for_update=True)
            if bid.bidder_id != actor.id:
                raise ForbiddenError("You can only dispute your own bid")
            self._check_transition(bid, "raised")
            auction = await crud.auctions.get_or_404(session, id=bid.auction_id)
            if auction.status in ("closed", "cancelled"):
                raise InvalidStateError(f"Disputes cannot be raised on a {auction.status} auction", field="bid_id")
            if bid.payment_status in ("paid", "refunded"):
                raise BusinessRuleError("Disputes cannot be raised after payment", field="bid_id")

            before = snapshot(bid)
            bid.dispute_status = "raised"
            bid.dispute_reason = reason
            bid.dispute_raised_by = actor.id
            bid.dispute_raised_at = self.clock()
            await self._record(session, bid, before, actor=actor, meta={"reason": reason})
            await session.commit()
        return bid

    async def review(self, session: AsyncSession, *, bid_id: uuid.UUID, actor: Actor, notes: str | None = None) -> Bid:
        actor.require(OFFICER_ROLES, "review disputes")
        async with self.locks.hold(f"bid:{bid_id}"):
            bid = await crud.bids.get_or_404(session, id=bid_id, for_update=True)
            self._check_transition(bid, "under_review")
            before = snapshot(bid)
            bid.dispute_status = "under_review"
            if notes:
                bid.dispute_resolution_notes = notes
            await self._record(session, bid, before, actor=actor)
            await session.commit()
        return bid

    async def resolve(
        self,
        session: AsyncSession,
        *,
        bid_id: uuid.UUID,
        outcome: str,
        actor: Actor,
        notes: str | None = None,
    ) -> Bid:
        actor.require(APPROVER_ROLES, "resolve disputes")
        async with self.locks.hold(f"bid:{bid_id}"):
            bid = await crud.bids.get_or_404(session, id=bid_id, for_update=True)
            self._check_transition(bid, outcome)

            before = snapshot(bid)
            bid.dispute_status = outcome
            bid.dispute_resolved_by = actor.id
            bid.dispute_resolved_at = self.clock()
            if notes:
                bid.dispute_resolution_notes = notes

            meta: dict = {"outcome": outcome, "refunded_payment_id": None}
            if outcome == "resolved_invalid":
                paid = await payment_queries.success_for_bid(session, bid_id=bid.id)
                if paid is not None:
                    # the refund is part of this resolution and shares its audit entry
                    payment_before = snapshot(paid)
                    refund = await self.payments.apply_refund(
                        session,
                        paid,
                        bid,
                        actor=actor,
                        reason=notes or "Dispute resolved invalid",
                        internal=True,
                        audit=False,
                    )
                    meta.update(
                        refunded_payment_id=paid.id,
                        refund=refund,
                        payment={"before": payment_before, "after": snapshot(paid)},
                    )
                bid.payment_status = "cancelled"
                bid.paid_amount = ZERO

            await self._record(session, bid, before, actor=actor, meta=meta)
            await session.commit()
        return bid

    async def _record(self, session: AsyncSession, bid: Bid, before: dict | None, *, actor: Actor, meta: dict | None = None) -> None:
        await self.audit.append(
            session,
            actor=actor,
            action=f"bid.{DISPUTE_VERBS[bid.dispute_status]}",
            entity_type="bid",
            entity_id=bid.id,
            before=before,
            after=bid,
            meta={"auction_id": bid.auction_id, **(meta or {})},
        )

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        if not actor.is_staff:
            raise ForbiddenError("Not allowed to view bid statistics")
        by_dispute = await crud.bids.count_by(session, Bid.dispute_status)
        by_payment = await crud.bids.count_by(session, Bid.payment_status)
        return {"total": sum(by_dispute.values()), "by_dispute_status": by_dispute, "by_payment_status": by_payment}
