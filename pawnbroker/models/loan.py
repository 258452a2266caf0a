from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, Percent, TimestampMixin, UTCDateTime


class Loan(TimestampMixin, Base):
    __tablename__ = "loans"
    __table_args__ = (
        Index("ix_loans_customer_status", "customer_id", "status"),
        # One open loan per pledged asset.
        Index(
            "uq_loans_asset_open",
            "asset_id",
            unique=True,
            postgresql_where=text("status IN ('active', 'overdue', 'in_grace', 'auction')"),
            sqlite_where=text("status IN ('active', 'overdue', 'in_grace', 'auction')"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    loan_no: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    customer_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("users.id"), nullable=False)
    application_id: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("loan_applications.id"), nullable=True)
    asset_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("assets.id"), nullable=False)
    collateral_category: Mapped[str] = mapped_column(String(20), nullable=False)

    principal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    interest_rate_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    interest_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_charge_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    penalty_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    grace_days: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    processed_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
