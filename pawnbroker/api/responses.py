from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from pawnbroker.crud.base import Page


def request_id_of(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def ok(request: Request, data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    return {
        "success": True,
        "message": message,
        "data": jsonable_encoder(data, custom_encoder={Decimal: str}),
        "request_id": request_id_of(request),
    }


def page_of(page: Page, read_model: type[BaseModel]) -> dict[str, Any]:
    return {
        "items": [read_model.model_validate(item) for item in page.items],
        "pagination": page.pagination(),
    }
