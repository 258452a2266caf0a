"""Bid settlement: take the winning bidder's money through the gateway.

Every status change of a payment funnels through :meth:`BidPaymentService._reconcile`
under the per-bid mutex, so a webhook racing a poll observes the first
writer's result instead of applying success twice.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from decimal import Decimal
import logging
import re
from typing import Any
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud, identifiers
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud import bid_payment as payment_queries
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import (
    BusinessRuleError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthenticatedError,
    UpstreamError,
    ValidationError,
)
from pawnbroker.gateways.base import InitiateRequest, PaymentGateway, callback_from_payload, map_gateway_status
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.models import Bid, BidPayment, User
from pawnbroker.money import money
from pawnbroker.schemas.bid_payment import BidPaymentCreate
from pawnbroker.security import ADMIN_ROLES, SYSTEM_ACTOR, Actor
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.notifications import Notification, Notifier, notify

logger = logging.getLogger("pawnbroker.payments")

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "initiated": frozenset({"pending", "cancelled", "failed"}),
    "pending": frozenset({"success", "failed", "cancelled"}),
    "failed": frozenset({"pending", "cancelled"}),
    "success": frozenset({"refunded"}),
    "refunded": frozenset(),
    "cancelled": frozenset(),
}
TERMINAL = frozenset({"success", "refunded", "cancelled"})

ONLINE_METHODS = frozenset({"paynow", "ecocash", "onemoney", "telecash"})
MOBILE_METHODS = frozenset({"ecocash", "onemoney", "telecash"})
MOBILE_PHONE = re.compile(r"^2637[137]\d{7}$")

# Dispute states that block a payment from reaching success or refunded.
INTERLOCK_DISPUTES = frozenset({"raised", "under_review", "resolved_invalid"})
PAYABLE_DISPUTES = frozenset({"none", "resolved_valid"})

BID_MIRROR = {
    "initiated": "pending",
    "pending": "pending",
    "success": "paid",
    "failed": "failed",
    "cancelled": "cancelled",
    "refunded": "refunded",
}

PAYMENT_METHODS: list[dict[str, Any]] = [
    {"method": "ecocash", "label": "EcoCash", "online": True, "phone_required": True, "phone_format": "2637XXXXXXXX"},
    {"method": "onemoney", "label": "OneMoney", "online": True, "phone_required": True, "phone_format": "2637XXXXXXXX"},
    {"method": "telecash", "label": "Telecash", "online": True, "phone_required": True, "phone_format": "2637XXXXXXXX"},
    {"method": "paynow", "label": "PayNow (web checkout)", "online": True, "phone_required": False},
    {"method": "cash", "label": "Cash at branch", "online": False, "phone_required": False},
    {"method": "bank", "label": "Bank transfer", "online": False, "phone_required": False},
    {"method": "card", "label": "Card at branch", "online": False, "phone_required": False},
]


def reachable(current: str) -> set[str]:
    """Statuses reachable from ``current`` in one or more steps."""

    seen: set[str] = set()
    frontier = [current]
    while frontier:
        for nxt in PAYMENT_TRANSITIONS.get(frontier.pop(), frozenset()):
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    seen.discard(current)
    return seen


def normalise_phone(phone: str | None) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if not MOBILE_PHONE.match(digits):
        raise ValidationError("Mobile payments need a number in the format +2637XXXXXXXX", field="phone")
    return "+" + digits


class BidPaymentService:
    def __init__(
        self,
        *,
        audit: AuditJournal,
        gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
        locks: KeyedLocks = default_locks,
    ) -> None:
        self.audit = audit
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock
        self.locks = locks

    def _check_visible(self, payment: BidPayment, actor: Actor) -> None:
        if actor.is_customer_only and payment.payer_id != actor.id:
            raise ForbiddenError("You can only access your own payments")

    async def create(self, session: AsyncSession, *, data: BidPaymentCreate, actor: Actor) -> BidPayment:
        if actor.id is None:
            raise UnauthenticatedError("Sign in to pay for a bid")

        async with self.locks.hold(f"bid:{data.bid_id}"):
            bid = await crud.bids.get_or_404(session, id=data.bid_id, for_update=True)
            auction = await crud.auctions.get_or_404(session, id=bid.auction_id)

            if auction.winner_id is None or auction.winner_id != actor.id or bid.bidder_id != actor.id:
                raise ForbiddenError("Only the auction winner can pay for this bid")
            if auction.status != "closed":
                raise InvalidStateError("Payments open once the auction is closed", field="bid_id")
            if auction.winning_bid_id != bid.id:
                raise BusinessRuleError("This bid is not the winning bid", field="bid_id")
            if bid.dispute_status not in PAYABLE_DISPUTES:
                raise BusinessRuleError(
                    f"Bid has an active dispute ({bid.dispute_status})", field="bid_id", detail={"dispute_status": bid.dispute_status}
                )
            amount = money(data.amount)
            if amount != money(bid.amount):
                raise ValidationError(f"Amount must equal the winning bid of {bid.amount}", field="amount")
            if await payment_queries.success_for_bid(session, bid_id=bid.id) is not None:
                raise BusinessRuleError("This bid has already been paid", field="bid_id")
            in_flight = await payment_queries.in_flight_for_bid(session, bid_id=bid.id)
            if in_flight is not None:
                raise BusinessRuleError(
                    "A payment for this bid is already in progress",
                    field="bid_id",
                    detail={"payment_id": str(in_flight.id), "status": in_flight.status},
                )
            phone = normalise_phone(data.phone) if data.method in MOBILE_METHODS else None

            now = self.clock()
            online = data.method in ONLINE_METHODS
            payment = BidPayment(
                receipt_no=await identifiers.generate_unique(session, BidPayment.receipt_no, identifiers.receipt_no, now=now),
                bid_id=bid.id,
                auction_id=auction.id,
                payer_id=actor.id,
                amount=amount,
                currency=bid.currency,
                status="initiated" if online else "pending",
                method=data.method,
                provider="paynow" if online else None,
                payer_phone=phone,
                notes=data.notes,
                meta={},
            )
            session.add(payment)
            bid.payment_status = BID_MIRROR[payment.status]
            await session.flush()

            if online:
                await self._initiate(session, payment, actor=actor)
                if payment.status == "failed":
                    error = payment.meta.get("error")
                    await session.commit()
                    raise UpstreamError(
                        "Payment gateway rejected the payment", detail={"payment_id": str(payment.id), "error": error}
                    )

            await self.audit.append(
                session,
                actor=actor,
                action="bid_payment.create",
                entity_type="bid_payment",
                entity_id=payment.id,
                after=payment,
                meta={"bid_id": bid.id, "auction_id": auction.id},
            )
            await session.commit()
        return payment

    async def _initiate(self, session: AsyncSession, payment: BidPayment, *, actor: Actor) -> None:
        if self.gateway is None:
            logger.warning("no payment gateway configured; payment %s left initiated", payment.receipt_no)
            return

        email = actor.email
        if not email:
            payer = await session.get(User, payment.payer_id)
            email = payer.email if payer else ""
        request = InitiateRequest(
            receipt_no=payment.receipt_no,
            amount=payment.amount,
            payer_email=email or "",
            description=f"Auction payment {payment.receipt_no}",
            method=payment.method,
            phone=payment.payer_phone,
        )
        try:
            result = await self.gateway.initiate(request)
        except Exception as exc:
            logger.exception("gateway initiate raised receipt=%s", payment.receipt_no)
            result = None
            error = str(exc) or type(exc).__name__
        else:
            error = result.error

        if result is None or not result.success:
            before = snapshot(payment)
            payment.status = "failed"
            payment.meta = {**(payment.meta or {}), "error": error or "Payment initiation failed"}
            bid = await crud.bids.get_or_404(session, id=payment.bid_id)
            bid.payment_status = "failed"
            await self.audit.append(
                session,
                actor=actor,
                action="bid_payment.failed",
                entity_type="bid_payment",
                entity_id=payment.id,
                before=before,
                after=payment,
                meta={"error": payment.meta["error"], "stage": "initiate"},
            )
            logger.warning("gateway initiate failed receipt=%s error=%s", payment.receipt_no, error)
            return

        payment.poll_url = result.poll_url
        payment.redirect_url = result.redirect_url
        payment.provider_txn_id = result.reference
        payment.provider = getattr(self.gateway, "name", payment.provider)
        if result.instructions:
            payment.meta = {**(payment.meta or {}), "instructions": result.instructions}

    async def get(self, session: AsyncSession, *, payment_id: uuid.UUID, actor: Actor) -> BidPayment:
        payment = await crud.bid_payments.get_or_404(session, id=payment_id)
        self._check_visible(payment, actor)
        return payment

    async def list_payments(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        status: str | None = None,
        method: str | None = None,
        auction_id: uuid.UUID | None = None,
        bid_id: uuid.UUID | None = None,
        payer_id: uuid.UUID | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if actor.is_customer_only:
            payer_id = actor.id
        q = select(BidPayment)
        if status:
            q = q.where(BidPayment.status == status)
        if method:
            q = q.where(BidPayment.method == method)
        if auction_id is not None:
            q = q.where(BidPayment.auction_id == auction_id)
        if bid_id is not None:
            q = q.where(BidPayment.bid_id == bid_id)
        if payer_id is not None:
            q = q.where(BidPayment.payer_id == payer_id)
        if search:
            like = f"%{search}%"
            q = q.where(
                or_(
                    BidPayment.receipt_no.ilike(like),
                    BidPayment.provider_txn_id.ilike(like),
                    BidPayment.payer_phone.ilike(like),
                )
            )
        return await paginate(session, q.order_by(BidPayment.created_at.desc(), BidPayment.id), page=page, limit=limit)

    def methods(self) -> list[dict[str, Any]]:
        return [dict(m) for m in PAYMENT_METHODS]

    async def check_status(self, session: AsyncSession, *, payment_id: uuid.UUID, actor: Actor) -> BidPayment:
        """Poll the gateway and reconcile; a timeout leaves the last known status."""

        payment = await self.get(session, payment_id=payment_id, actor=actor)
        if payment.status in TERMINAL or not payment.poll_url or self.gateway is None:
            return payment

        try:
            result = await self.gateway.poll(payment.poll_url)
        except Exception as exc:
            logger.exception("gateway poll failed receipt=%s", payment.receipt_no)
            raise UpstreamError("Could not check payment status", detail={"error": str(exc)}) from exc
        if result.timed_out:
            return payment

        return await self._reconcile(
            session,
            payment,
            map_gateway_status(result.status),
            actor=actor,
            source="poll",
            gateway_status=result.status,
            gateway_amount=result.amount,
        )

    async def handle_webhook(self, session: AsyncSession, *, payload: dict[str, Any]) -> BidPayment:
        callback = self.gateway.parse_callback(payload) if self.gateway is not None else callback_from_payload(payload)
        payment = await payment_queries.find_by_reference(session, reference=callback.reference, poll_url=callback.poll_url)
        if payment is None:
            raise NotFoundError("No payment matches the callback reference", detail={"reference": callback.reference})

        actor = dataclasses.replace(SYSTEM_ACTOR, name=f"{self.gateway.name if self.gateway else 'gateway'}-webhook")
        status_text, amount = callback.status, callback.amount
        if payment.poll_url and self.gateway is not None:
            # the callback body is not trusted when we can ask the gateway directly
            try:
                result = await self.gateway.poll(payment.poll_url)
            except Exception as exc:
                logger.exception("gateway poll failed during webhook receipt=%s", payment.receipt_no)
                raise UpstreamError("Could not confirm payment status", detail={"error": str(exc)}) from exc
            if result.timed_out:
                return payment
            status_text, amount = result.status, result.amount

        return await self._reconcile(
            session,
            payment,
            map_gateway_status(status_text),
            actor=actor,
            source="webhook",
            gateway_status=status_text,
            gateway_amount=amount,
        )

    async def _reconcile(
        self,
        session: AsyncSession,
        payment: BidPayment,
        target: str,
        *,
        actor: Actor,
        source: str,
        gateway_status: str | None = None,
        gateway_amount: Decimal | None = None,
    ) -> BidPayment:
        async with self.locks.hold(f"bid:{payment.bid_id}"):
            await session.refresh(payment, with_for_update=True)
            if payment.status == target:
                return payment
            if target not in reachable(payment.status):
                logger.info(
                    "ignoring gateway status receipt=%s current=%s reported=%s", payment.receipt_no, payment.status, target
                )
                return payment
            if target == "success":
                other = await payment_queries.success_for_bid(session, bid_id=payment.bid_id)
                if other is not None and other.id != payment.id:
                    logger.warning(
                        "ignoring gateway success receipt=%s: bid already paid by %s", payment.receipt_no, other.receipt_no
                    )
                    return payment

            bid = await crud.bids.get_or_404(session, id=payment.bid_id, for_update=True)
            if target in ("success", "refunded") and bid.dispute_status in INTERLOCK_DISPUTES:
                logger.warning(
                    "payment %s held at %s: bid dispute is %s", payment.receipt_no, payment.status, bid.dispute_status
                )
                payment.meta = {**(payment.meta or {}), "held_status": target}
                await session.commit()
                return payment

            now = self.clock()
            before = snapshot(payment)
            meta = {**(payment.meta or {}), "last_source": source}
            if gateway_status is not None:
                meta["gateway_status"] = gateway_status
            if gateway_amount is not None and money(gateway_amount) != money(payment.amount):
                meta["gateway_amount"] = str(money(gateway_amount))
            meta.pop("held_status", None)
            payment.meta = meta
            payment.status = target
            bid.payment_status = BID_MIRROR[target]
            if target == "success":
                await self._propagate_success(session, payment, bid, now=now)

            await self.audit.append(
                session,
                actor=actor,
                action=f"bid_payment.{target}",
                entity_type="bid_payment",
                entity_id=payment.id,
                before=before,
                after=payment,
                meta={"source": source, "bid_id": bid.id},
            )
            await session.commit()

        if target == "success":
            await self._notify_paid(session, payment)
        return payment

    async def _propagate_success(self, session: AsyncSession, payment: BidPayment, bid: Bid, *, now: datetime) -> None:
        payment.paid_at = now
        bid.payment_status = "paid"
        bid.paid_amount = payment.amount
        bid.paid_at = now
        bid.payment_reference = payment.provider_txn_id or payment.receipt_no

        auction = await crud.auctions.get_or_404(session, id=payment.auction_id, for_update=True)
        auction.meta = {
            **(auction.meta or {}),
            "payment_received": True,
            "payment_id": str(payment.id),
            "paid_at": now.isoformat(),
        }

    async def _notify_paid(self, session: AsyncSession, payment: BidPayment) -> None:
        payer = await session.get(User, payment.payer_id)
        notify(
            self.notifier,
            Notification(
                kind="bid_payment.success",
                to=payer.email if payer else "",
                subject=f"Payment {payment.receipt_no} received",
                body=f"We received your payment of {payment.currency} {payment.amount}. Receipt {payment.receipt_no}.",
                context={"payment_id": str(payment.id), "auction_id": str(payment.auction_id)},
            ),
        )

    async def update_status(
        self,
        session: AsyncSession,
        *,
        payment_id: uuid.UUID,
        status: str,
        actor: Actor,
        notes: str | None = None,
    ) -> BidPayment:
        """Staff override; follows single steps of the machine only."""

        if not actor.is_staff:
            raise ForbiddenError("Not allowed to change payment status")
        if status == "refunded":
            raise ValidationError("Use the refund operation to refund a payment", field="status")

        payment = await crud.bid_payments.get_or_404(session, id=payment_id)
        async with self.locks.hold(f"bid:{payment.bid_id}"):
            await session.refresh(payment, with_for_update=True)
            if status == payment.status:
                return payment
            if status not in PAYMENT_TRANSITIONS.get(payment.status, frozenset()):
                raise InvalidStateError.transition("bid payment", payment.status, status)
            if status == "success":
                other = await payment_queries.success_for_bid(session, bid_id=payment.bid_id)
                if other is not None and other.id != payment.id:
                    raise BusinessRuleError(
                        "This bid has already been paid", field="status", detail={"payment_id": str(other.id)}
                    )

            bid = await crud.bids.get_or_404(session, id=payment.bid_id, for_update=True)
            if status == "success" and bid.dispute_status in INTERLOCK_DISPUTES:
                raise InvalidStateError(
                    f"Bid dispute is {bid.dispute_status}; payment cannot succeed",
                    field="status",
                    detail={"dispute_status": bid.dispute_status},
                )

            now = self.clock()
            before = snapshot(payment)
            payment.status = status
            if notes:
                payment.notes = f"{payment.notes}\n{notes}" if payment.notes else notes
            bid.payment_status = BID_MIRROR[status]
            if status == "success":
                await self._propagate_success(session, payment, bid, now=now)

            await self.audit.append(
                session,
                actor=actor,
                action=f"bid_payment.{status}",
                entity_type="bid_payment",
                entity_id=payment.id,
                before=before,
                after=payment,
                meta={"source": "manual", "bid_id": bid.id},
            )
            await session.commit()

        if status == "success":
            await self._notify_paid(session, payment)
        return payment

    async def apply_refund(
        self,
        session: AsyncSession,
        payment: BidPayment,
        bid: Bid,
        *,
        actor: Actor,
        reason: str | None = None,
        internal: bool = False,
        audit: bool = True,
    ) -> dict[str, Any]:
        """Refund ``payment`` in the caller's transaction; the caller holds the bid lock.

        ``internal`` refunds come from dispute resolution and skip the interlock.
        With ``audit=False`` the caller records the refund in its own entry;
        the refund details are returned for that.
        """

        if payment.status != "success":
            raise InvalidStateError("Only successful payments can be refunded", field="status")
        if not internal and bid.dispute_status in INTERLOCK_DISPUTES:
            raise InvalidStateError(f"Bid dispute is {bid.dispute_status}; refund through the dispute", field="status")

        refund_meta: dict[str, Any] = {"reason": reason, "refunded_by": str(actor.id) if actor.id else None}
        if payment.provider and self.gateway is not None:
            try:
                result = await self.gateway.refund(payment.provider_txn_id or payment.receipt_no)
            except Exception as exc:
                logger.exception("gateway refund failed receipt=%s", payment.receipt_no)
                raise UpstreamError("Payment gateway refund failed", detail={"error": str(exc)}) from exc
            if not result.success:
                raise UpstreamError("Payment gateway refused the refund", detail={"error": result.message})
            refund_meta["manual"] = result.manual
            if result.message:
                refund_meta["message"] = result.message
        else:
            refund_meta["manual"] = True

        now = self.clock()
        before = snapshot(payment)
        refund_meta["refunded_at"] = now.isoformat()
        payment.status = "refunded"
        payment.meta = {**(payment.meta or {}), "refund": refund_meta}
        bid.payment_status = "refunded"

        auction = await crud.auctions.get_or_404(session, id=payment.auction_id, for_update=True)
        auction.meta = {**(auction.meta or {}), "payment_received": False, "payment_refunded": True}

        if audit:
            await self.audit.append(
                session,
                actor=actor,
                action="bid_payment.refund",
                entity_type="bid_payment",
                entity_id=payment.id,
                before=before,
                after=payment,
                meta={"bid_id": bid.id, "internal": internal, "manual": refund_meta["manual"]},
            )
        return refund_meta

    async def refund(
        self, session: AsyncSession, *, payment_id: uuid.UUID, actor: Actor, reason: str | None = None
    ) -> BidPayment:
        actor.require(ADMIN_ROLES, "refund payments")
        payment = await crud.bid_payments.get_or_404(session, id=payment_id)
        async with self.locks.hold(f"bid:{payment.bid_id}"):
            await session.refresh(payment, with_for_update=True)
            bid = await crud.bids.get_or_404(session, id=payment.bid_id, for_update=True)
            await self.apply_refund(session, payment, bid, actor=actor, reason=reason)
            await session.commit()
        return payment

    async def delete(self, session: AsyncSession, *, payment_id: uuid.UUID, actor: Actor) -> None:
        actor.require(ADMIN_ROLES, "delete payments")
        payment = await crud.bid_payments.get_or_404(session, id=payment_id)
        async with self.locks.hold(f"bid:{payment.bid_id}"):
            await session.refresh(payment, with_for_update=True)
            if payment.status in ("success", "refunded"):
                raise InvalidStateError(f"A {payment.status} payment cannot be deleted", field="status")
            await self.audit.append(
                session,
                actor=actor,
                action="bid_payment.delete",
                entity_type="bid_payment",
                entity_id=payment.id,
                before=payment,
                meta={"bid_id": payment.bid_id},
            )
            await session.delete(payment)
            await session.commit()

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        if not actor.is_staff:
            raise ForbiddenError("Not allowed to view payment statistics")
        by_status = await crud.bid_payments.count_by(session, BidPayment.status)
        by_method = await crud.bid_payments.count_by(session, BidPayment.method)
        collected = await session.execute(
            select(func.coalesce(func.sum(BidPayment.amount), 0)).where(BidPayment.status == "success")
        )
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_method": by_method,
            "amount_collected": money(collected.scalar_one()),
        }
