from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class Auction(TimestampMixin, Base):
    __tablename__ = "auctions"
    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_auctions_window"),
        Index("ix_auctions_asset_status", "asset_id", "status"),
        Index("ix_auctions_status_ends_at", "status", "ends_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    auction_no: Mapped[str] = mapped_column(String(24), nullable=False, unique=True)
    asset_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("assets.id"), nullable=False)

    starting_bid: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reserve_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    auction_type: Mapped[str] = mapped_column(String(20), nullable=False, default="online")

    starts_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    winner_id: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    winning_bid_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    winning_bid_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
