from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.loan import (
    ChargesRead,
    LoanCreate,
    LoanPaymentCreate,
    LoanRead,
    LoanStatsRead,
    LoanStatusUpdate,
    LoanUpdate,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan_endpoint(
    request: Request,
    payload: LoanCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.create(session, data=payload, actor=actor)
    return ok(request, LoanRead.model_validate(loan), message="Loan created")


@router.get("")
async def list_loans_endpoint(
    request: Request,
    status: str | None = Query(None),
    customer_id: uuid.UUID | None = Query(None),
    asset_id: uuid.UUID | None = Query(None),
    search: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.loans.list_loans(
        session,
        actor=actor,
        status=status,
        customer_id=customer_id,
        asset_id=asset_id,
        search=search,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return ok(request, page_of(result, LoanRead))


@router.get("/stats")
async def loan_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    stats = await services.loans.stats(session, actor=actor)
    return ok(request, LoanStatsRead(**stats))


@router.get("/{loan_id}")
async def get_loan_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.get(session, loan_id=loan_id, actor=actor)
    return ok(request, LoanRead.model_validate(loan))


@router.put("/{loan_id}")
async def update_loan_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    payload: LoanUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.update(session, loan_id=loan_id, data=payload, actor=actor)
    return ok(request, LoanRead.model_validate(loan), message="Loan updated")


@router.put("/{loan_id}/status")
async def update_loan_status_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    payload: LoanStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.update_status(
        session, loan_id=loan_id, status=payload.status, notes=payload.notes, actor=actor
    )
    return ok(request, LoanRead.model_validate(loan), message=f"Loan is now {loan.status}")


@router.post("/{loan_id}/disburse")
async def disburse_loan_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.disburse(session, loan_id=loan_id, actor=actor)
    return ok(request, LoanRead.model_validate(loan), message="Loan disbursed")


@router.post("/{loan_id}/payment")
async def loan_payment_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    payload: LoanPaymentCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.apply_payment(
        session,
        loan_id=loan_id,
        amount=payload.amount,
        method=payload.method,
        reference=payload.reference,
        notes=payload.notes,
        actor=actor,
    )
    message = "Loan redeemed" if loan.status == "redeemed" else "Payment applied"
    return ok(request, LoanRead.model_validate(loan), message=message)


@router.get("/{loan_id}/charges")
async def loan_charges_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    at: datetime | None = Query(None, description="Compute as of this instant (defaults to now)"),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    charges = await services.loans.charges(session, loan_id=loan_id, actor=actor, at=at)
    return ok(request, ChargesRead(**asdict(charges)))


@router.delete("/{loan_id}")
async def cancel_loan_endpoint(
    request: Request,
    loan_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    loan = await services.loans.cancel(session, loan_id=loan_id, actor=actor)
    return ok(request, LoanRead.model_validate(loan), message="Loan cancelled")
