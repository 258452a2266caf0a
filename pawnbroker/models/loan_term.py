from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, Money, Percent, TimestampMixin, UTCDateTime


class LoanTerm(TimestampMixin, Base):
    __tablename__ = "loan_terms"
    __table_args__ = (
        UniqueConstraint("loan_id", "term_no", name="uq_loan_terms_loan_term_no"),
        CheckConstraint("due_date > start_date", name="ck_loan_terms_dates"),
        CheckConstraint("opening_balance >= 0 AND closing_balance >= 0", name="ck_loan_terms_balances"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    loan_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False)
    term_no: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    opening_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    closing_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    interest_rate_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    interest_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_charge_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)

    renewal_type: Mapped[str] = mapped_column(String(30), nullable=False, default="initial")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
