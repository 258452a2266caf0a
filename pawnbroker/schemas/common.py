from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, Field

PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]
NonNegativeMoney = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]
PercentValue = Annotated[Decimal, Field(ge=0, le=1000, decimal_places=3)]
Currency = Annotated[str, Field(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$")]


class PaginationRead(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class Envelope(BaseModel):
    success: bool = True
    message: str | None = None
    data: Any = None
    errors: list[str] | None = None
    detail: Any = None
    request_id: str | None = None
