from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from pawnbroker.schemas.common import NonNegativeMoney, PositiveMoney

ApplicationStatus = Literal["draft", "submitted", "processing", "approved", "rejected", "cancelled"]
CollateralCategory = Literal["small_loans", "motor_vehicle", "jewellery"]


class Employment(BaseModel):
    employment_type: str | None = None
    title: str | None = None
    duration: str | None = None
    location: str | None = None
    contacts: str | None = None


class ApplicationCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    national_id_number: str = Field(min_length=1, max_length=50)
    requested_loan_amount: PositiveMoney
    collateral_category: CollateralCategory

    gender: str | None = None
    date_of_birth: date | None = None
    marital_status: str | None = None
    contact_details: str | None = None
    alternative_number: str | None = None
    email_address: str | None = None
    home_address: str | None = None
    employment: Employment = Field(default_factory=Employment)
    collateral_description: str | None = None
    surety_description: str | None = None
    declared_asset_value: NonNegativeMoney | None = None
    declaration_text: str | None = None
    declaration_signature_name: str | None = None
    declaration_signed_at: datetime | None = None
    attachments: list[str] = Field(default_factory=list)
    # Staff may open a draft on behalf of a customer.
    customer_id: UUID | None = None


class ApplicationUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=200)
    national_id_number: str | None = Field(default=None, min_length=1, max_length=50)
    requested_loan_amount: PositiveMoney | None = None
    collateral_category: CollateralCategory | None = None
    gender: str | None = None
    date_of_birth: date | None = None
    marital_status: str | None = None
    contact_details: str | None = None
    alternative_number: str | None = None
    email_address: str | None = None
    home_address: str | None = None
    employment: Employment | None = None
    collateral_description: str | None = None
    surety_description: str | None = None
    declared_asset_value: NonNegativeMoney | None = None
    declaration_text: str | None = None
    declaration_signature_name: str | None = None
    declaration_signed_at: datetime | None = None


class ApplicationStatusUpdate(BaseModel):
    status: Literal["processing", "approved", "rejected", "cancelled"]
    notes: str | None = None


class AttachmentAdd(BaseModel):
    handle: str = Field(min_length=1, max_length=500)


class DocumentRequest(BaseModel):
    documents: list[str] = Field(min_length=1)
    message: str | None = None


class ApplicationRead(BaseModel):
    id: UUID
    application_no: str
    customer_id: UUID
    full_name: str
    national_id_number: str
    gender: str | None
    date_of_birth: date | None
    marital_status: str | None
    contact_details: str | None
    alternative_number: str | None
    email_address: str | None
    home_address: str | None
    employment: dict[str, Any]
    requested_loan_amount: Decimal
    collateral_category: CollateralCategory
    collateral_description: str | None
    surety_description: str | None
    declared_asset_value: Decimal | None
    declaration_text: str | None
    declaration_signature_name: str | None
    declaration_signed_at: datetime | None
    status: ApplicationStatus
    submitted_at: datetime | None
    decided_by: UUID | None
    decided_at: datetime | None
    debtor_check: dict[str, Any]
    attachments: list[str]
    internal_notes: list[dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
