from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from pawnbroker.schemas.common import NonNegativeMoney

AssetCategory = Literal["electronics", "vehicle", "jewellery"]
AssetStatus = Literal[
    "submitted",
    "valuating",
    "active",
    "pawned",
    "overdue",
    "in_grace",
    "in_repair",
    "auction",
    "sold",
    "redeemed",
    "closed",
]


class ElectronicsDetails(BaseModel):
    brand: str | None = None
    model: str | None = None
    serial_no: str | None = None
    accessories: list[str] = Field(default_factory=list)


class VehicleDetails(BaseModel):
    make: str | None = None
    model: str | None = None
    registration_no: str | None = None
    engine_no: str | None = None
    chassis_no: str | None = None
    cc_serial_no: str | None = None


class JewelleryDetails(BaseModel):
    metal_type: str | None = None
    purity: str | None = None
    weight_grams: Decimal | None = Field(default=None, ge=0)
    stone_type: str | None = None
    stone_details: str | None = None
    certificate_no: str | None = None


DETAILS_BY_CATEGORY: dict[str, type[BaseModel]] = {
    "electronics": ElectronicsDetails,
    "vehicle": VehicleDetails,
    "jewellery": JewelleryDetails,
}


def validate_details(category: str, details: dict[str, Any] | None) -> dict[str, Any]:
    model = DETAILS_BY_CATEGORY[category]
    # extra keys belong to another category's sub-record
    unknown = set(details or {}) - set(model.model_fields)
    if unknown:
        raise ValueError(f"details for {category} do not accept: {', '.join(sorted(unknown))}")
    return model.model_validate(details or {}).model_dump(mode="json")


class AssetCreate(BaseModel):
    category: AssetCategory
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    condition: str | None = Field(default=None, max_length=100)
    storage_location: str | None = Field(default=None, max_length=200)
    declared_value: NonNegativeMoney | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    attachments: list[str] = Field(default_factory=list)
    # Staff may register an asset on behalf of a customer.
    owner_id: UUID | None = None

    @model_validator(mode="after")
    def _check_details(self):
        self.details = validate_details(self.category, self.details)
        return self


class AssetUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    condition: str | None = Field(default=None, max_length=100)
    storage_location: str | None = Field(default=None, max_length=200)
    declared_value: NonNegativeMoney | None = None
    details: dict[str, Any] | None = None
    attachments: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def _no_identifier_edits(cls, data):
        if isinstance(data, dict):
            for locked in ("asset_no", "category", "owner_id", "status"):
                if locked in data:
                    raise ValueError(f"{locked} cannot be changed here")
        return data


class AssetValuationUpdate(BaseModel):
    evaluated_value: NonNegativeMoney
    valuation_notes: str | None = None


class AssetStatusUpdate(BaseModel):
    status: AssetStatus
    notes: str | None = None


class AssetRead(BaseModel):
    id: UUID
    asset_no: str
    category: AssetCategory
    title: str
    description: str | None
    condition: str | None
    storage_location: str | None
    owner_id: UUID
    submitted_by: UUID | None
    declared_value: Decimal | None
    evaluated_value: Decimal | None
    valuation_notes: str | None
    evaluated_by: UUID | None
    evaluated_at: datetime | None
    details: dict[str, Any]
    attachments: list[str]
    status: AssetStatus
    active_loan_id: UUID | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssetStatsRead(BaseModel):
    total: int
    by_status: dict[str, int]
    by_category: dict[str, int]
    total_evaluated_value: Decimal
