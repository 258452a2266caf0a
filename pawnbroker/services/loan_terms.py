"""Term chain: the per-loan sequence of renewal terms.

Terms are appended under the per-loan mutex so ``term_no`` stays dense and
each new term opens on the previous one's closing balance. Approval writes
the new balance and dates back to the loan.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud import loan_term as term_queries
from pawnbroker.errors import BusinessRuleError, InvalidStateError, ValidationError
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.models import LoanTerm
from pawnbroker.money import HUNDRED, ZERO, money
from pawnbroker.schemas.loan_term import RenewalCreate
from pawnbroker.security import APPROVER_ROLES, OFFICER_ROLES, Actor
from pawnbroker.services.asset_status import move_asset
from pawnbroker.services.audit import AuditJournal, snapshot

logger = logging.getLogger("pawnbroker.loan_terms")

RENEWABLE_LOAN_STATUSES = frozenset({"active", "overdue", "in_grace"})


def closing_balance(renewal_type: str, opening: Decimal, rate_percent: Decimal, payment: Decimal | None) -> Decimal:
    opening = money(opening)
    if renewal_type == "interest_only_renewal":
        return money(opening + opening * Decimal(str(rate_percent)) / HUNDRED)
    if renewal_type == "partial_principal_renewal":
        payment = money(payment or ZERO)
        if payment < ZERO or payment > opening:
            raise ValidationError("payment_amount must be between 0 and the opening balance", field="payment_amount")
        return money(opening - payment)
    if renewal_type == "full_settlement":
        return ZERO
    raise ValidationError(f"Unknown renewal type {renewal_type}", field="renewal_type")


class LoanTermService:
    def __init__(
        self,
        *,
        audit: AuditJournal,
        clock: Clock = utcnow,
        locks: KeyedLocks = default_locks,
    ) -> None:
        self.audit = audit
        self.clock = clock
        self.locks = locks

    async def renew(self, session: AsyncSession, *, loan_id: uuid.UUID, data: RenewalCreate, actor: Actor) -> LoanTerm:
        actor.require(OFFICER_ROLES, "renew loans")
        async with self.locks.hold(f"loan:{loan_id}"):
            loan = await crud.loans.get_or_404(session, id=loan_id, for_update=True)
            if loan.status not in RENEWABLE_LOAN_STATUSES:
                raise InvalidStateError(f"A {loan.status} loan cannot be renewed", field="status")

            previous = await term_queries.latest(session, loan_id=loan.id)
            if previous is None:
                raise InvalidStateError("Loan has no initial term", field="loan_id")
            if previous.approved_at is None:
                raise BusinessRuleError(
                    f"Term {previous.term_no} is awaiting approval", field="loan_id", detail={"term_id": str(previous.id)}
                )

            opening = money(previous.closing_balance)
            closing = closing_balance(data.renewal_type, opening, loan.interest_rate_percent, data.payment_amount)
            start = previous.due_date
            term = LoanTerm(
                loan_id=loan.id,
                term_no=previous.term_no + 1,
                start_date=start,
                due_date=start + timedelta(days=previous.interest_period_days),
                opening_balance=opening,
                closing_balance=closing,
                payment_amount=money(data.payment_amount) if data.payment_amount is not None else None,
                interest_rate_percent=loan.interest_rate_percent,
                interest_period_days=previous.interest_period_days,
                storage_charge_percent=loan.storage_charge_percent,
                renewal_type=data.renewal_type,
                notes=data.notes,
                created_by=actor.id,
            )
            session.add(term)
            await session.flush()

            await self.audit.append(
                session,
                actor=actor,
                action="loan_term.create",
                entity_type="loan_term",
                entity_id=term.id,
                after=term,
                meta={"loan_id": loan.id, "term_no": term.term_no},
            )
            await session.commit()
        return term

    async def create(self, session: AsyncSession, *, loan_id: uuid.UUID, data: RenewalCreate, actor: Actor) -> LoanTerm:
        return await self.renew(session, loan_id=loan_id, data=data, actor=actor)

    async def approve(self, session: AsyncSession, *, term_id: uuid.UUID, actor: Actor, notes: str | None = None) -> LoanTerm:
        actor.require(APPROVER_ROLES, "approve loan terms")
        term = await crud.loan_terms.get_or_404(session, id=term_id)

        async with self.locks.hold(f"loan:{term.loan_id}"):
            loan = await crud.loans.get_or_404(session, id=term.loan_id, for_update=True)
            await session.refresh(term)
            if term.approved_at is not None:
                raise InvalidStateError(f"Term {term.term_no} is already approved", field="term_id")
            latest = await term_queries.latest(session, loan_id=loan.id)
            if latest is None or latest.id != term.id:
                raise InvalidStateError("Only the latest term can be approved", field="term_id")
            if loan.status not in RENEWABLE_LOAN_STATUSES:
                raise InvalidStateError(f"A {loan.status} loan cannot take a new term", field="status")

            now = self.clock()
            before = snapshot(loan)
            term.approved_by = actor.id
            term.approved_at = now
            if notes:
                term.notes = f"{term.notes}\n{notes}" if term.notes else notes

            loan.current_balance = term.closing_balance
            loan.start_date = term.start_date
            loan.due_date = term.due_date

            asset_status = None
            if term.renewal_type == "full_settlement" and term.closing_balance == ZERO:
                loan.status = "redeemed"
                loan.closed_at = now
                asset = await crud.assets.get_or_404(session, id=loan.asset_id, for_update=True)
                move_asset(asset, "redeemed", now=now)
                asset_status = asset.status
                logger.info("loan settled loan_no=%s term_no=%s", loan.loan_no, term.term_no)

            await self.audit.append(
                session,
                actor=actor,
                action="loan_term.approve",
                entity_type="loan_term",
                entity_id=term.id,
                before={"loan": before},
                after={"loan": snapshot(loan), "term": snapshot(term)},
                meta={"loan_id": loan.id, "term_no": term.term_no, "asset_status": asset_status},
            )
            await session.commit()
        return term

    async def delete(self, session: AsyncSession, *, term_id: uuid.UUID, actor: Actor) -> None:
        actor.require(OFFICER_ROLES, "delete loan terms")
        term = await crud.loan_terms.get_or_404(session, id=term_id)
        async with self.locks.hold(f"loan:{term.loan_id}"):
            await session.refresh(term)
            if term.approved_at is not None:
                raise InvalidStateError("Approved terms cannot be deleted", field="term_id")
            if term.term_no == 1:
                raise InvalidStateError("The initial term cannot be deleted", field="term_id")
            latest = await term_queries.latest(session, loan_id=term.loan_id)
            if latest is None or latest.id != term.id:
                raise InvalidStateError("Only the latest term can be deleted", field="term_id")

            await self.audit.append(
                session,
                actor=actor,
                action="loan_term.delete",
                entity_type="loan_term",
                entity_id=term.id,
                before=term,
                meta={"loan_id": term.loan_id, "term_no": term.term_no},
            )
            await session.delete(term)
            await session.commit()

    async def current(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> LoanTerm:
        actor.require(OFFICER_ROLES, "view loan terms")
        await crud.loans.get_or_404(session, id=loan_id)
        term = await term_queries.latest_approved(session, loan_id=loan_id)
        if term is None:
            term = await term_queries.latest(session, loan_id=loan_id)
        if term is None:
            raise InvalidStateError("Loan has no terms", field="loan_id")
        return term

    async def timeline(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> list[LoanTerm]:
        actor.require(OFFICER_ROLES, "view loan terms")
        await crud.loans.get_or_404(session, id=loan_id)
        return await term_queries.timeline(session, loan_id=loan_id)

    async def next_term(self, session: AsyncSession, *, loan_id: uuid.UUID, actor: Actor) -> dict:
        """Preview of where the next renewal would start."""

        actor.require(OFFICER_ROLES, "view loan terms")
        await crud.loans.get_or_404(session, id=loan_id)
        last = await term_queries.latest(session, loan_id=loan_id)
        if last is None:
            return {"next_term_no": 1, "last_term": None, "start_date": None, "due_date": None, "opening_balance": None}
        return {
            "next_term_no": last.term_no + 1,
            "last_term": last,
            "start_date": last.due_date,
            "due_date": last.due_date + timedelta(days=last.interest_period_days),
            "opening_balance": last.closing_balance,
        }

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        actor.require(OFFICER_ROLES, "view loan term statistics")
        by_type = await crud.loan_terms.count_by(session, LoanTerm.renewal_type)
        pending = await session.execute(select(func.count()).select_from(LoanTerm).where(LoanTerm.approved_at.is_(None)))
        return {"total": sum(by_type.values()), "by_renewal_type": by_type, "awaiting_approval": int(pending.scalar_one())}
