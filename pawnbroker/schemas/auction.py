from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from pawnbroker.schemas.common import Currency, PositiveMoney

AuctionStatus = Literal["draft", "live", "closed", "cancelled"]
AuctionType = Literal["online", "in_person"]
DisputeStatus = Literal["none", "raised", "under_review", "resolved_valid", "resolved_invalid"]
BidPaymentStatus = Literal["unpaid", "pending", "paid", "failed", "refunded", "cancelled"]


class AuctionCreate(BaseModel):
    asset_id: UUID
    starting_bid: PositiveMoney
    reserve_price: PositiveMoney | None = None
    auction_type: AuctionType = "online"
    currency: Currency | None = None
    starts_at: datetime
    ends_at: datetime

    @model_validator(mode="after")
    def _window_and_reserve(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        if self.reserve_price is not None and self.reserve_price < self.starting_bid:
            raise ValueError("reserve_price must be >= starting_bid")
        return self


class AuctionUpdate(BaseModel):
    starting_bid: PositiveMoney | None = None
    reserve_price: PositiveMoney | None = None
    auction_type: AuctionType | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None


class AuctionStatusUpdate(BaseModel):
    status: AuctionStatus


class BidCreate(BaseModel):
    amount: PositiveMoney


class DisputeRaise(BaseModel):
    reason: str = Field(min_length=3, max_length=2000)


class DisputeReview(BaseModel):
    notes: str | None = None


class DisputeResolve(BaseModel):
    outcome: Literal["resolved_valid", "resolved_invalid"]
    notes: str | None = None


class AuctionRead(BaseModel):
    id: UUID
    auction_no: str
    asset_id: UUID
    starting_bid: Decimal
    reserve_price: Decimal | None
    currency: str
    auction_type: AuctionType
    starts_at: datetime
    ends_at: datetime
    status: AuctionStatus
    winner_id: UUID | None
    winning_bid_id: UUID | None
    winning_bid_amount: Decimal | None
    closed_at: datetime | None
    created_by: UUID | None
    meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AuctionDetailRead(AuctionRead):
    current_bid: Decimal
    bid_count: int


class BidRead(BaseModel):
    id: UUID
    auction_id: UUID
    bidder_id: UUID
    amount: Decimal
    currency: str
    placed_at: datetime
    dispute_status: DisputeStatus
    dispute_reason: str | None
    dispute_raised_at: datetime | None
    dispute_resolved_by: UUID | None
    dispute_resolved_at: datetime | None
    dispute_resolution_notes: str | None
    payment_status: BidPaymentStatus
    paid_amount: Decimal
    paid_at: datetime | None
    payment_reference: str | None

    class Config:
        from_attributes = True
