from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok
from pawnbroker.schemas.loan_term import LoanTermCreate, LoanTermRead, NextTermRead, RenewalCreate, TermApprove
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/loan-terms", tags=["loan-terms"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_term_endpoint(
    request: Request,
    payload: LoanTermCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    term = await services.loan_terms.create(session, loan_id=payload.loan_id, data=payload, actor=actor)
    return ok(request, LoanTermRead.model_validate(term), message="Term created; awaiting approval")


@router.get("/stats")
async def term_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.loan_terms.stats(session, actor=actor))


@router.post("/{term_id}/approve")
async def approve_term_endpoint(
    request: Request,
    term_id: uuid.UUID,
    payload: TermApprove | None = None,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    term = await services.loan_terms.approve(
        session, term_id=term_id, notes=payload.notes if payload else None, actor=actor
    )
    return ok(request, LoanTermRead.model_validate(term), message="Term approved")


@router.delete("/{term_id}")
async def delete_term_endpoint(
    request: Request,
    term_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.loan_terms.delete(session, term_id=term_id, actor=actor)
    return ok(request, message="Term deleted")


@router.get("/loan/{loan_id}")
async def list_terms_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    terms = await services.loan_terms.timeline(session, loan_id=loan_id, actor=actor)
    return ok(request, [LoanTermRead.model_validate(t) for t in terms])


@router.get("/loan/{loan_id}/current")
async def current_term_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    term = await services.loan_terms.current(session, loan_id=loan_id, actor=actor)
    return ok(request, LoanTermRead.model_validate(term))


@router.get("/loan/{loan_id}/timeline")
async def term_timeline_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    terms = await services.loan_terms.timeline(session, loan_id=loan_id, actor=actor)
    return ok(request, [LoanTermRead.model_validate(t) for t in terms])


@router.get("/loan/{loan_id}/next-term")
async def next_term_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    preview = await services.loan_terms.next_term(session, loan_id=loan_id, actor=actor)
    last = preview["last_term"]
    return ok(request, NextTermRead(**{**preview, "last_term": LoanTermRead.model_validate(last) if last else None}))


@router.post("/loan/{loan_id}/renew", status_code=status.HTTP_201_CREATED)
async def renew_loan_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    payload: RenewalCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    term = await services.loan_terms.renew(session, loan_id=loan_id, data=payload, actor=actor)
    return ok(request, LoanTermRead.model_validate(term), message="Renewal term created; awaiting approval")
