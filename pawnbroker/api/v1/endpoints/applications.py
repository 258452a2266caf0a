from __future__ import annotations

from datetime import datetime
import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.schemas.application import (
    ApplicationCreate,
    ApplicationRead,
    ApplicationStatusUpdate,
    ApplicationUpdate,
    AttachmentAdd,
    DocumentRequest,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_application_endpoint(
    request: Request,
    payload: ApplicationCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.create(session, data=payload, actor=actor)
    return ok(request, ApplicationRead.model_validate(application), message="Application drafted")


@router.get("")
async def list_applications_endpoint(
    request: Request,
    status: str | None = Query(None),
    customer_id: uuid.UUID | None = Query(None),
    collateral_category: str | None = Query(None),
    search: str | None = Query(None, description="application_no, name or national id"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.applications.list_applications(
        session,
        actor=actor,
        status=status,
        customer_id=customer_id,
        collateral_category=collateral_category,
        search=search,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return ok(request, page_of(result, ApplicationRead))


@router.get("/stats")
async def application_stats_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    return ok(request, await services.applications.stats(session, actor=actor))


@router.get("/{application_id}")
async def get_application_endpoint(
    request: Request,
    application_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.get(session, application_id=application_id, actor=actor)
    return ok(request, ApplicationRead.model_validate(application))


@router.put("/{application_id}")
async def update_application_endpoint(
    request: Request,
    application_id: uuid.UUID,
    payload: ApplicationUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.update(session, application_id=application_id, data=payload, actor=actor)
    return ok(request, ApplicationRead.model_validate(application), message="Application updated")


@router.post("/{application_id}/submit")
async def submit_application_endpoint(
    request: Request,
    application_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.submit(session, application_id=application_id, actor=actor)
    return ok(request, ApplicationRead.model_validate(application), message="Application submitted")


@router.put("/{application_id}/status")
async def update_application_status_endpoint(
    request: Request,
    application_id: uuid.UUID,
    payload: ApplicationStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.update_status(
        session, application_id=application_id, status=payload.status, notes=payload.notes, actor=actor
    )
    return ok(request, ApplicationRead.model_validate(application), message=f"Application is now {application.status}")


@router.post("/{application_id}/debtor-check")
async def debtor_check_endpoint(
    request: Request,
    application_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.debtor_check(session, application_id=application_id, actor=actor)
    return ok(request, ApplicationRead.model_validate(application))


@router.post("/{application_id}/attachments")
async def add_attachment_endpoint(
    request: Request,
    application_id: uuid.UUID,
    payload: AttachmentAdd,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.add_attachment(
        session, application_id=application_id, handle=payload.handle, actor=actor
    )
    return ok(request, ApplicationRead.model_validate(application), message="Attachment added")


@router.delete("/{application_id}/attachments")
async def remove_attachment_endpoint(
    request: Request,
    application_id: uuid.UUID,
    handle: str = Query(..., min_length=1),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.remove_attachment(
        session, application_id=application_id, handle=handle, actor=actor
    )
    return ok(request, ApplicationRead.model_validate(application), message="Attachment removed")


@router.post("/{application_id}/request-documents")
async def request_documents_endpoint(
    request: Request,
    application_id: uuid.UUID,
    payload: DocumentRequest,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    application = await services.applications.request_documents(
        session, application_id=application_id, documents=payload.documents, message=payload.message, actor=actor
    )
    return ok(request, ApplicationRead.model_validate(application), message="Documents requested")
