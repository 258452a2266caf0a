from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from pawnbroker.schemas.common import Currency, PercentValue, PositiveMoney

LoanStatus = Literal["draft", "active", "overdue", "in_grace", "auction", "sold", "redeemed", "closed", "cancelled"]


class LoanCreate(BaseModel):
    application_id: UUID
    asset_id: UUID
    principal: PositiveMoney
    currency: Currency | None = None
    interest_rate_percent: PercentValue | None = None
    interest_period_days: int | None = Field(default=None, ge=1, le=365)
    storage_charge_percent: PercentValue | None = None
    penalty_percent: PercentValue | None = None
    grace_days: int | None = Field(default=None, ge=0, le=365)
    start_date: datetime | None = None
    notes: str | None = None
    disburse: bool = False


class LoanUpdate(BaseModel):
    notes: str | None = None
    currency: Currency | None = None
    grace_days: int | None = Field(default=None, ge=0, le=365)
    penalty_percent: PercentValue | None = None


class LoanStatusUpdate(BaseModel):
    status: LoanStatus
    notes: str | None = None


class LoanPaymentCreate(BaseModel):
    amount: PositiveMoney
    method: str = Field(default="cash", max_length=30)
    reference: str | None = Field(default=None, max_length=100)
    notes: str | None = None


class LoanRead(BaseModel):
    id: UUID
    loan_no: str
    customer_id: UUID
    application_id: UUID | None
    asset_id: UUID
    collateral_category: str
    principal: Decimal
    current_balance: Decimal
    currency: str
    interest_rate_percent: Decimal
    interest_period_days: int
    storage_charge_percent: Decimal
    penalty_percent: Decimal
    grace_days: int
    start_date: datetime
    due_date: datetime
    status: LoanStatus
    notes: str | None
    created_by: UUID | None
    processed_by: UUID | None
    approved_by: UUID | None
    disbursed_at: datetime | None
    closed_at: datetime | None
    meta: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ChargesRead(BaseModel):
    principal: Decimal
    current_balance: Decimal
    days_elapsed: int
    total_loan_days: int
    interest_rate_percent: Decimal
    storage_charge_percent: Decimal
    penalty_percent: Decimal
    interest_accrued: Decimal
    storage_charge: Decimal
    penalty: Decimal
    total_due: Decimal
    is_overdue: bool
    overdue_days: int
    computed_at: datetime


class LoanStatsRead(BaseModel):
    total: int
    by_status: dict[str, int]
    outstanding_balance: Decimal
    principal_disbursed: Decimal
