from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class Bid(TimestampMixin, Base):
    __tablename__ = "bids"
    __table_args__ = (
        # Two accepted bids can never share an amount on one auction.
        UniqueConstraint("auction_id", "amount", name="uq_bids_auction_amount"),
        Index("ix_bids_bidder", "bidder_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    auction_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False)
    bidder_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("users.id"), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    placed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    dispute_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    dispute_raised_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    dispute_raised_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    dispute_resolved_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    dispute_resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    dispute_resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0.00"))
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
