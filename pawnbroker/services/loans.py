from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud, identifiers
from pawnbroker.clock import Clock, utcnow
from pawnbroker.config import settings
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError, ValidationError
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.models import Asset, Loan, LoanTerm, User
from pawnbroker.money import ZERO, money
from pawnbroker.schemas.loan import LoanCreate, LoanUpdate
from pawnbroker.security import OFFICER_ROLES, Actor
from pawnbroker.services.asset_status import LOAN_TO_ASSET, move_asset
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.charges import Charges, charges_for_loan
from pawnbroker.services.notifications import Notification, Notifier, notify

logger = logging.getLogger("pawnbroker.loans")

LOAN_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"active", "cancelled"}),
    "active": frozenset({"overdue", "in_grace", "redeemed", "closed"}),
    "overdue": frozenset({"in_grace", "auction", "redeemed", "closed"}),
    "in_grace": frozenset({"auction", "redeemed", "closed"}),
    "auction": frozenset({"sold", "closed"}),
    "sold": frozenset({"closed"}),
    "redeemed": frozenset({"closed"}),
    "closed": frozenset(),
    "cancelled": frozenset(),
}
TERMINAL = frozenset({"closed", "cancelled"})
RELEASED = frozenset({"sold", "redeemed", "closed", "cancelled"})
PAYABLE = frozenset({"active", "overdue", "in_grace"})

STATUS_VERBS = {
    "active": "disburse",
    "overdue": "overdue",
    "in_grace": "grace",
    "auction": "auction",
    "sold": "sell",
    "redeemed": "redeem",
    "closed": "close",
    "cancelled": "cancel",
}


class LoanService:
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

    def _check_visible(self, loan: Loan, actor: Actor) -> None:
        if actor.is_customer_only and loan.customer_id != actor.id:
            raise ForbiddenError("You can only access your own loans")

    async def create(self, session: AsyncSession, *, data: LoanCreate, actor: Actor) -> Loan:
        actor.require(OFFICER_ROLES, "create loans")
        application = await crud.applications.get_or_404(session, id=data.application_id)
        if application.status != "approved":
            raise BusinessRuleError("Loans can only be written against an approved application", field="application_id")

        async with self.locks.hold(f"asset:{data.asset_id}"):
            asset = await crud.assets.get_or_404(session, id=data.asset_id, for_update=True)
            if asset.owner_id != application.customer_id:
                raise BusinessRuleError("Asset does not belong to the applicant", field="asset_id")
            if asset.status != "active" or asset.evaluated_value is None:
                raise BusinessRuleError("Asset must be valued and active before a loan is written", field="asset_id")
            if asset.active_loan_id is not None:
                raise BusinessRuleError("Asset is already pledged against another loan", field="asset_id")
            if data.principal > asset.evaluated_value:
                raise BusinessRuleError("Principal exceeds the asset's evaluated value", field="principal")

            now = self.clock()
            start = data.start_date or now
            period = data.interest_period_days or settings.default_interest_period_days
            rate = data.interest_rate_percent if data.interest_rate_percent is not None else settings.default_interest_rate_percent
            storage = (
                data.storage_charge_percent
                if data.storage_charge_percent is not None
                else settings.default_storage_charge_percent
            )
            principal = money(data.principal)

            loan = Loan(
                loan_no=await identifiers.generate_unique(session, Loan.loan_no, identifiers.loan_no, now=now),
                customer_id=application.customer_id,
                application_id=application.id,
                asset_id=asset.id,
                collateral_category=application.collateral_category,
                principal=principal,
                current_balance=principal,
                currency=data.currency or settings.default_currency,
                interest_rate_percent=rate,
                interest_period_days=period,
                storage_charge_percent=storage,
                penalty_percent=data.penalty_percent if data.penalty_percent is not None else settings.default_penalty_percent,
                grace_days=data.grace_days if data.grace_days is not None else settings.default_grace_days,
                start_date=start,
                due_date=start + timedelta(days=period),
                status="draft",
                notes=data.notes,
                created_by=actor.id,
                meta={"payment_history": []},
            )
            session.add(loan)
            await session.flush()

            term = LoanTerm(
                loan_id=loan.id,
                term_no=1,
                start_date=loan.start_date,
                due_date=loan.due_date,
                opening_balance=principal,
                closing_balance=principal,
                interest_rate_percent=rate,
                interest_period_days=period,
                storage_charge_percent=storage,
                renewal_type="initial",
                created_by=actor.id,
            )
            session.add(term)
            if data.disburse:
                self._disburse(loan, asset, actor=actor, now=now)
                term.approved_by = actor.id
                term.approved_at = now
            await session.flush()

            await self.audit.append(
                session,
                actor=actor,
                action="loan.create",
                entity_type="loan",
                entity_id=loan.id,
                after=loan,
                meta={"disbursed": data.disburse, "asset_status": asset.status},
            )
            await session.commit()

        if data.disburse:
            await self._notify_disbursed(session, loan)
        return loan

    def _disburse(self, loan: Loan, asset: Asset, *, actor: Actor, now: datetime) -> None:
        if asset.active_loan_id not in (None, loan.id):
            raise BusinessRuleError("Asset is already pledged against another loan")
        loan.status = "active"
        loan.disbursed_at = now
        loan.processed_by = actor.id
        loan.approved_by = loan.approved_by or actor.id
        move_asset(asset, "pawned", now=now)
        asset.active_loan_id = loan.id

    async def _approve_initial_term(self, session: AsyncSession, loan: Loan, *, actor: Actor, now: datetime) -> None:
        r = await session.execute(select(LoanTerm).where(LoanTerm.loan_id == loan.id, LoanTerm.term_no == 1))
        term = r.scalar_one_or_none()
        if term is not None and term.approved_at is None:
            term.approved_by = actor.id
            term.approved_at = now

    async def _notify_disbursed(self, session: AsyncSession, loan: Loan) -> None:
        customer = await session.get(User, loan.customer_id)
        notify(
            self.notifier,
            Notification(
                kind="loan.disbursed",
                to=customer.email if customer else "",
                subject=f"Loan {loan.loan_no} disbursed",
                body=(
                    f"Your loan of {loan.currency} {loan.principal} has been disbursed. "
                    f"It is due on {loan.due_date:%Y-%m-%d}."
                ),
                context={"loan_id": str(loan.id)},
            ),
        )

    async def get(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> Loan:
        loan = await crud.loans.get_or_404(session, id=loan_id)
        self._check_visible(loan, actor)
        return loan

    async def list_loans(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        status: str | None = None,
        customer_id: uuid.UUID | None = None,
        asset_id: uuid.UUID | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if actor.is_customer_only:
            customer_id = actor.id
        q = select(Loan)
        if status:
            q = q.where(Loan.status == status)
        if customer_id is not None:
            q = q.where(Loan.customer_id == customer_id)
        if asset_id is not None:
            q = q.where(Loan.asset_id == asset_id)
        if search:
            q = q.where(or_(Loan.loan_no.ilike(f"%{search}%"), Loan.notes.ilike(f"%{search}%")))
        if date_from is not None:
            q = q.where(Loan.start_date >= date_from)
        if date_to is not None:
            q = q.where(Loan.start_date <= date_to)
        return await paginate(session, q.order_by(Loan.created_at.desc(), Loan.id), page=page, limit=limit)

    async def update(self, session: AsyncSession, *, loan_id: uuid.UUID, data: LoanUpdate, actor: Actor) -> Loan:
        actor.require(OFFICER_ROLES, "edit loans")
        loan = await crud.loans.get_or_404(session, id=loan_id, for_update=True)
        if loan.status in TERMINAL:
            raise InvalidStateError(f"A {loan.status} loan cannot be edited")

        before = snapshot(loan)
        if not crud.loans.apply(loan, data.model_dump(exclude_unset=True)):
            return loan
        await self.audit.append(session, actor=actor, action="loan.update", entity_type="loan", entity_id=loan.id, before=before, after=loan)
        await session.commit()
        return loan

    async def update_status(
        self,
        session: AsyncSession,
        *,
        loan_id: uuid.UUID,
        status: str,
        actor: Actor,
        notes: str | None = None,
    ) -> Loan:
        actor.require(OFFICER_ROLES, "change loan status")
        async with self.locks.hold(f"loan:{loan_id}"):
            loan = await crud.loans.get_or_404(session, id=loan_id, for_update=True)
            if status not in LOAN_TRANSITIONS.get(loan.status, frozenset()):
                raise InvalidStateError.transition("loan", loan.status, status)
            if status == "redeemed" and loan.current_balance != ZERO:
                raise BusinessRuleError("A loan can only be redeemed once the balance is zero", field="status")

            asset = await crud.assets.get_or_404(session, id=loan.asset_id, for_update=True)
            now = self.clock()
            before = snapshot(loan)

            if status == "active":
                self._disburse(loan, asset, actor=actor, now=now)
                await self._approve_initial_term(session, loan, actor=actor, now=now)
            elif status == "cancelled":
                # never pledged; the asset stays free for another loan
                loan.status = status
                loan.closed_at = now
            else:
                loan.status = status
                move_asset(asset, LOAN_TO_ASSET[status], now=now)
                if status in RELEASED:
                    loan.closed_at = loan.closed_at or now
                    if asset.active_loan_id == loan.id:
                        asset.active_loan_id = None

            await self.audit.append(
                session,
                actor=actor,
                action=f"loan.{STATUS_VERBS[status]}",
                entity_type="loan",
                entity_id=loan.id,
                before=before,
                after=loan,
                meta={"asset_status": asset.status, **({"notes": notes} if notes else {})},
            )
            await session.commit()

        if status == "active":
            await self._notify_disbursed(session, loan)
        return loan

    async def disburse(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> Loan:
        return await self.update_status(session, loan_id=loan_id, status="active", actor=actor)

    async def cancel(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> Loan:
        loan = await crud.loans.get_or_404(session, id=loan_id)
        if loan.status != "draft":
            raise InvalidStateError("Only draft loans can be cancelled", field="status")
        return await self.update_status(session, loan_id=loan_id, status="cancelled", actor=actor)

    async def apply_payment(
        self,
        session: AsyncSession,
        *,
        loan_id: uuid.UUID,
        amount: Decimal,
        actor: Actor,
        method: str = "cash",
        reference: str | None = None,
        notes: str | None = None,
    ) -> Loan:
        actor.require(OFFICER_ROLES, "record loan payments")
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError("Payment amount must be greater than zero", field="amount")

        async with self.locks.hold(f"loan:{loan_id}"):
            loan = await crud.loans.get_or_404(session, id=loan_id, for_update=True)
            if loan.status not in PAYABLE:
                raise InvalidStateError(f"Payments cannot be applied to a {loan.status} loan", field="status")

            now = self.clock()
            before = snapshot(loan)
            balance_before = loan.current_balance
            new_balance = max(ZERO, money(balance_before - amount))
            loan.current_balance = new_balance

            history = list((loan.meta or {}).get("payment_history", []))
            history.append(
                {
                    "amount": str(amount),
                    "applied": str(balance_before - new_balance),
                    "balance_after": str(new_balance),
                    "method": method,
                    "reference": reference,
                    "notes": notes,
                    "at": now.isoformat(),
                    "by": str(actor.id) if actor.id else None,
                }
            )
            loan.meta = {**(loan.meta or {}), "payment_history": history}

            action = "loan.payment"
            asset_status = None
            if new_balance == ZERO:
                action = "loan.redeem"
                loan.status = "redeemed"
                loan.closed_at = now
                asset = await crud.assets.get_or_404(session, id=loan.asset_id, for_update=True)
                move_asset(asset, "redeemed", now=now)
                asset_status = asset.status
                logger.info("loan redeemed by payment loan_no=%s", loan.loan_no)

            await self.audit.append(
                session,
                actor=actor,
                action=action,
                entity_type="loan",
                entity_id=loan.id,
                before=before,
                after=loan,
                meta={"amount": amount, "method": method, "reference": reference, "asset_status": asset_status},
            )
            await session.commit()
        return loan

    async def charges(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor, at: datetime | None = None) -> Charges:
        loan = await self.get(session, loan_id=loan_id, actor=actor)
        return charges_for_loan(loan, at or self.clock())

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        actor.require(OFFICER_ROLES, "view loan statistics")
        by_status = await crud.loans.count_by(session, Loan.status)
        totals = await session.execute(
            select(
                func.coalesce(func.sum(Loan.current_balance), 0),
                func.coalesce(func.sum(Loan.principal), 0),
            ).where(Loan.status.in_(("active", "overdue", "in_grace", "auction")))
        )
        disbursed = await session.execute(
            select(func.coalesce(func.sum(Loan.principal), 0)).where(Loan.disbursed_at.is_not(None))
        )
        outstanding, _ = totals.one()
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "outstanding_balance": money(outstanding),
            "principal_disbursed": money(disbursed.scalar_one()),
        }
