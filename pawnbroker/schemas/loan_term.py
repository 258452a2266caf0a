from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, model_validator

from pawnbroker.schemas.common import NonNegativeMoney

RenewalType = Literal["interest_only_renewal", "partial_principal_renewal", "full_settlement"]


class RenewalCreate(BaseModel):
    renewal_type: RenewalType
    payment_amount: NonNegativeMoney | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _partial_needs_payment(self):
        if self.renewal_type == "partial_principal_renewal" and self.payment_amount is None:
            raise ValueError("payment_amount is required for a partial principal renewal")
        return self


class LoanTermCreate(RenewalCreate):
    loan_id: UUID


class TermApprove(BaseModel):
    notes: str | None = None


class LoanTermRead(BaseModel):
    id: UUID
    loan_id: UUID
    term_no: int
    start_date: datetime
    due_date: datetime
    opening_balance: Decimal
    closing_balance: Decimal
    payment_amount: Decimal | None
    interest_rate_percent: Decimal
    interest_period_days: int
    storage_charge_percent: Decimal
    renewal_type: str
    notes: str | None
    created_by: UUID | None
    approved_by: UUID | None
    approved_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class NextTermRead(BaseModel):
    next_term_no: int
    last_term: LoanTermRead | None
    start_date: datetime | None
    due_date: datetime | None
    opening_balance: Decimal | None
