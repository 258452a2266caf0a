from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class BidPayment(TimestampMixin, Base):
    __tablename__ = "bid_payments"
    __table_args__ = (
        Index(
            "uq_bid_payments_one_success",
            "bid_id",
            unique=True,
            postgresql_where=text("status = 'success'"),
            sqlite_where=text("status = 'success'"),
        ),
        Index("ix_bid_payments_provider_txn_id", "provider_txn_id"),
        Index("ix_bid_payments_payer_status", "payer_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    receipt_no: Mapped[str] = mapped_column(String(24), nullable=False, unique=True)

    bid_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("bids.id"), nullable=False)
    auction_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("auctions.id"), nullable=False)
    payer_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("users.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(20), nullable=True)

    provider_txn_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poll_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    payer_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
