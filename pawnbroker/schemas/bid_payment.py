from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from pawnbroker.schemas.common import PositiveMoney

PaymentMethod = Literal["cash", "bank", "card", "paynow", "ecocash", "onemoney", "telecash"]
PaymentStatus = Literal["initiated", "pending", "success", "failed", "refunded", "cancelled"]


class BidPaymentCreate(BaseModel):
    bid_id: UUID
    amount: PositiveMoney
    method: PaymentMethod
    phone: str | None = Field(default=None, max_length=20)
    notes: str | None = None


class BidPaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    notes: str | None = None


class RefundRequest(BaseModel):
    reason: str | None = None


class BidPaymentRead(BaseModel):
    id: UUID
    receipt_no: str
    bid_id: UUID
    auction_id: UUID
    payer_id: UUID
    amount: Decimal
    currency: str
    status: PaymentStatus
    method: PaymentMethod
    provider: str | None
    provider_txn_id: str | None
    poll_url: str | None
    redirect_url: str | None
    payer_phone: str | None
    paid_at: datetime | None
    notes: str | None
    meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentMethodRead(BaseModel):
    method: PaymentMethod
    label: str
    online: bool
    phone_required: bool
    phone_format: str | None = None
