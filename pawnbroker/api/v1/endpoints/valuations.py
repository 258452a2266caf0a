from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.valuation import (
    CompleteFinal,
    CompleteMarket,
    ValuationCreate,
    ValuationRead,
    ValuationStatusUpdate,
    ValuationUpdate,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/valuations", tags=["valuations"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_valuation_endpoint(
    request: Request,
    payload: ValuationCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    valuation = await services.valuations.create(session, data=payload, actor=actor)
    return ok(request, ValuationRead.model_validate(valuation), message="Valuation requested")


@router.get("")
async def list_valuations_endpoint(
    request: Request,
    asset_id: uuid.UUID | None = Query(None),
    stage: str | None = Query(None, description="market | final"),
    status: str | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.valuations.list_valuations(
        session, actor=actor, asset_id=asset_id, stage=stage, status=status, page=page, limit=limit
    )
    return ok(request, page_of(result, ValuationRead))


@router.get("/stats")
async def valuation_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.valuations.stats(session, actor=actor))


@router.get("/asset/{asset_id}")
async def asset_valuation_history_endpoint(
    request: Request,
    asset_id: uuid.UUID,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.valuations.list_valuations(session, actor=actor, asset_id=asset_id, page=page, limit=limit)
    return ok(request, page_of(result, ValuationRead))


@router.get("/{valuation_id}")
async def get_valuation_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    valuation = await services.valuations.get(session, valuation_id=valuation_id, actor=actor)
    return ok(request, ValuationRead.model_validate(valuation))


@router.put("/{valuation_id}")
async def update_valuation_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    payload: ValuationUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    valuation = await services.valuations.update(session, valuation_id=valuation_id, data=payload, actor=actor)
    return ok(request, ValuationRead.model_validate(valuation), message="Valuation updated")


@router.put("/{valuation_id}/status")
async def update_valuation_status_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    payload: ValuationStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    valuation = await services.valuations.update_status(
        session, valuation_id=valuation_id, status=payload.status, comments=payload.comments, actor=actor
    )
    return ok(request, ValuationRead.model_validate(valuation), message=f"Valuation is now {valuation.status}")


@router.post("/{valuation_id}/complete-market")
async def complete_market_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    payload: CompleteMarket,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    market, final = await services.valuations.complete_market(
        session,
        valuation_id=valuation_id,
        estimated_market_value=payload.estimated_market_value,
        comments=payload.comments,
        actor=actor,
    )
    return ok(
        request,
        {"market": ValuationRead.model_validate(market), "final": ValuationRead.model_validate(final)},
        message="Market valuation completed; final valuation requested",
    )


@router.post("/{valuation_id}/complete-final")
async def complete_final_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    payload: CompleteFinal,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    valuation = await services.valuations.complete_final(session, valuation_id=valuation_id, data=payload, actor=actor)
    return ok(request, ValuationRead.model_validate(valuation), message="Final valuation completed")


@router.delete("/{valuation_id}")
async def delete_valuation_endpoint(
    request: Request,
    valuation_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.valuations.delete(session, valuation_id=valuation_id, actor=actor)
    return ok(request, message="Valuation deleted")
