from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from pawnbroker.schemas.common import NonNegativeMoney, PositiveMoney

ValuationStage = Literal["market", "final"]
ValuationStatus = Literal["requested", "in_progress", "completed", "rejected"]
ValuationMethod = Literal["manual", "market_trend", "hybrid"]
ValuationCurrency = Literal["USD", "ZWG"]


class CreditCheck(BaseModel):
    provider: str | None = None
    reference: str | None = None
    score: int | None = None
    checked_at: datetime | None = None


class ValuationCreate(BaseModel):
    asset_id: UUID
    stage: ValuationStage
    method: ValuationMethod = "manual"
    currency: ValuationCurrency = "USD"
    estimated_market_value: NonNegativeMoney | None = None
    desired_loan_amount: PositiveMoney | None = None
    comments: str | None = None
    credit_check: CreditCheck | None = None
    attachments: list[str] = Field(default_factory=list)
    assessment_date: datetime | None = None

    @model_validator(mode="after")
    def _final_needs_amount_and_comments(self):
        if self.stage == "final":
            if self.desired_loan_amount is None:
                raise ValueError("desired_loan_amount is required for a final valuation")
            if not (self.comments or "").strip():
                raise ValueError("comments are required for a final valuation")
        return self


class ValuationUpdate(BaseModel):
    method: ValuationMethod | None = None
    currency: ValuationCurrency | None = None
    estimated_market_value: NonNegativeMoney | None = None
    desired_loan_amount: PositiveMoney | None = None
    final_value: NonNegativeMoney | None = None
    comments: str | None = None
    credit_check: CreditCheck | None = None
    attachments: list[str] | None = None
    assessment_date: datetime | None = None


class ValuationStatusUpdate(BaseModel):
    status: ValuationStatus
    comments: str | None = None


class CompleteMarket(BaseModel):
    estimated_market_value: PositiveMoney
    comments: str | None = None


class CompleteFinal(BaseModel):
    final_value: PositiveMoney
    desired_loan_amount: PositiveMoney
    comments: str = Field(min_length=1)
    credit_check: CreditCheck | None = None


class ValuationRead(BaseModel):
    id: UUID
    asset_id: UUID
    stage: ValuationStage
    status: ValuationStatus
    method: ValuationMethod
    requested_by: UUID | None
    requested_at: datetime | None
    valued_by: UUID | None
    assessment_date: datetime | None
    estimated_market_value: Decimal | None
    estimated_loan_value: Decimal | None
    final_value: Decimal | None
    desired_loan_amount: Decimal | None
    currency: str
    comments: str | None
    credit_check: dict[str, Any] | None
    attachments: list[str]
    meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
