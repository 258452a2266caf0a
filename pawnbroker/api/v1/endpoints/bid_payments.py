from __future__ import annotations

import json
import uuid
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.errors import ValidationError
from pawnbroker.schemas.bid_payment import (
    BidPaymentCreate,
    BidPaymentRead,
    BidPaymentStatusUpdate,
    PaymentMethodRead,
    RefundRequest,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/bid-payments", tags=["bid-payments"])


async def _callback_payload(request: Request) -> dict:
    """PayNow posts form fields; other senders post JSON."""

    raw = await request.body()
    if not raw:
        raise ValidationError("Empty callback body")
    if "application/json" in (request.headers.get("content-type") or ""):
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("Callback body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be an object")
        return payload
    return {k: v[0] for k, v in parse_qs(raw.decode("utf-8", errors="replace")).items()}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment_endpoint(
    request: Request,
    payload: BidPaymentCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    payment = await services.bid_payments.create(session, data=payload, actor=actor)
    return ok(request, BidPaymentRead.model_validate(payment), message="Payment initiated")


@router.get("")
async def list_payments_endpoint(
    request: Request,
    status: str | None = Query(None),
    method: str | None = Query(None),
    auction_id: uuid.UUID | None = Query(None),
    bid_id: uuid.UUID | None = Query(None),
    payer_id: uuid.UUID | None = Query(None),
    search: str | None = Query(None, description="receipt_no, provider reference or phone"),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.bid_payments.list_payments(
        session,
        actor=actor,
        status=status,
        method=method,
        auction_id=auction_id,
        bid_id=bid_id,
        payer_id=payer_id,
        search=search,
        page=page,
        limit=limit,
    )
    return ok(request, page_of(result, BidPaymentRead))


@router.get("/methods")
async def payment_methods_endpoint(request: Request, services: Services = Depends(get_services)):
    return ok(request, [PaymentMethodRead(**m) for m in services.bid_payments.methods()])


@router.get("/stats")
async def payment_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.bid_payments.stats(session, actor=actor))


@router.post("/webhook/paynow")
async def paynow_webhook_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    payload = await _callback_payload(request)
    payment = await services.bid_payments.handle_webhook(session, payload=payload)
    return ok(request, {"receipt_no": payment.receipt_no, "status": payment.status})


@router.get("/{payment_id}")
async def get_payment_endpoint(
    request: Request,
    payment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    payment = await services.bid_payments.get(session, payment_id=payment_id, actor=actor)
    return ok(request, BidPaymentRead.model_validate(payment))


@router.get("/{payment_id}/check-status")
async def check_payment_status_endpoint(
    request: Request,
    payment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    payment = await services.bid_payments.check_status(session, payment_id=payment_id, actor=actor)
    return ok(request, BidPaymentRead.model_validate(payment))


@router.put("/{payment_id}/status")
async def update_payment_status_endpoint(
    request: Request,
    payment_id: uuid.UUID,
    payload: BidPaymentStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    payment = await services.bid_payments.update_status(
        session, payment_id=payment_id, status=payload.status, notes=payload.notes, actor=actor
    )
    return ok(request, BidPaymentRead.model_validate(payment), message=f"Payment is now {payment.status}")


@router.post("/{payment_id}/refund")
async def refund_payment_endpoint(
    request: Request,
    payment_id: uuid.UUID,
    payload: RefundRequest | None = None,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    payment = await services.bid_payments.refund(
        session, payment_id=payment_id, reason=payload.reason if payload else None, actor=actor
    )
    return ok(request, BidPaymentRead.model_validate(payment), message="Payment refunded")


@router.delete("/{payment_id}")
async def delete_payment_endpoint(
    request: Request,
    payment_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.bid_payments.delete(session, payment_id=payment_id, actor=actor)
    return ok(request, message="Payment deleted")
