from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class Asset(TimestampMixin, Base):
    __tablename__ = "assets"
    __table_args__ = (
        Index("ix_assets_owner_status", "owner_id", "status"),
        Index("ix_assets_category_status", "category", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    asset_no: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    category: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    storage_location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    owner_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("users.id"), nullable=False)
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)

    declared_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    evaluated_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    valuation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    evaluated_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # One of electronics / vehicle / jewellery, matching ``category``.
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    attachments: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted")
    active_loan_id: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("loans.id", use_alter=True, name="fk_assets_active_loan_id"), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
