from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class AssetValuation(TimestampMixin, Base):
    __tablename__ = "asset_valuations"
    __table_args__ = (Index("ix_asset_valuations_asset_stage", "asset_id", "stage"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    asset_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("assets.id"), nullable=False)

    stage: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="requested")
    method: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")

    requested_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    valued_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    assessment_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    estimated_market_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    estimated_loan_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    final_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    desired_loan_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit_check: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    attachments: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
