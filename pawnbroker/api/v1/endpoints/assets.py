from __future__ import annotations

from datetime import datetime
import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.asset import (
    AssetCreate,
    AssetRead,
    AssetStatsRead,
    AssetStatusUpdate,
    AssetUpdate,
    AssetValuationUpdate,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/assets", tags=["assets"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_asset_endpoint(
    request: Request,
    payload: AssetCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.create(session, data=payload, actor=actor)
    return ok(request, AssetRead.model_validate(asset), message="Asset registered")


@router.get("")
async def list_assets_endpoint(
    request: Request,
    category: str | None = Query(None, description="electronics | vehicle | jewellery"),
    status: str | None = Query(None),
    owner_id: uuid.UUID | None = Query(None),
    asset_no: str | None = Query(None),
    title: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.assets.list_assets(
        session,
        actor=actor,
        category=category,
        status=status,
        owner_id=owner_id,
        asset_no=asset_no,
        title=title,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return ok(request, page_of(result, AssetRead))


@router.get("/stats")
async def asset_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    stats = await services.assets.stats(session, actor=actor)
    return ok(request, AssetStatsRead(**stats))


@router.get("/search")
async def search_assets_endpoint(
    request: Request,
    q: str = Query(..., description="Matches asset_no, title or description"),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.assets.search(session, actor=actor, term=q, page=page, limit=limit)
    return ok(request, page_of(result, AssetRead))


@router.get("/owner/{owner_id}")
async def assets_by_owner_endpoint(
    request: Request,
    owner_id: uuid.UUID,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.assets.list_assets(session, actor=actor, owner_id=owner_id, page=page, limit=limit)
    return ok(request, page_of(result, AssetRead))


@router.get("/{asset_id}")
async def get_asset_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.get(session, asset_id=asset_id, actor=actor)
    return ok(request, AssetRead.model_validate(asset))


@router.put("/{asset_id}")
async def update_asset_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    payload: AssetUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.update_attributes(session, asset_id=asset_id, data=payload, actor=actor)
    return ok(request, AssetRead.model_validate(asset), message="Asset updated")


@router.put("/{asset_id}/valuation")
async def update_asset_valuation_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    payload: AssetValuationUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.update_valuation(
        session,
        asset_id=asset_id,
        evaluated_value=payload.evaluated_value,
        valuation_notes=payload.valuation_notes,
        actor=actor,
    )
    return ok(request, AssetRead.model_validate(asset), message="Valuation recorded")


@router.put("/{asset_id}/status")
async def update_asset_status_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    payload: AssetStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.update_status(
        session, asset_id=asset_id, status=payload.status, notes=payload.notes, actor=actor
    )
    return ok(request, AssetRead.model_validate(asset), message=f"Asset is now {asset.status}")


@router.delete("/{asset_id}")
async def delete_asset_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    asset = await services.assets.soft_delete(session, asset_id=asset_id, actor=actor)
    return ok(request, AssetRead.model_validate(asset), message="Asset closed")
