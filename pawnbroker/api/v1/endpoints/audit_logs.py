from __future__ import annotations

from datetime import datetime
import uuid

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.clock import utcnow
from pawnbroker.schemas.audit_log import AuditLogRead
from pawnbroker.security import ADMIN_ROLES, Actor
from pawnbroker.services import Services
from pawnbroker.services.audit import AuditFilters

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


def audit_reader(actor: Actor = Depends(get_actor)) -> Actor:
    actor.require(ADMIN_ROLES, "read the audit log")
    return actor


def _filters(
    actor_id: uuid.UUID | None = Query(None),
    action: str | None = Query(None),
    entity_type: str | None = Query(None),
    entity_id: str | None = Query(None),
    channel: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    search: str | None = Query(None),
) -> AuditFilters:
    return AuditFilters(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        channel=channel,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )


@router.get("")
async def list_audit_logs_endpoint(
    request: Request,
    filters: AuditFilters = Depends(_filters),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    result = await services.audit.query(session, filters, page=page, limit=limit)
    return ok(request, page_of(result, AuditLogRead))


@router.get("/stats")
async def audit_stats_endpoint(
    request: Request,
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    stats = await services.audit.stats(session, date_from=date_from, date_to=date_to)
    stats["recent"] = [AuditLogRead.model_validate(e) for e in stats["recent"]]
    return ok(request, stats)


@router.get("/export")
async def export_audit_logs_endpoint(
    request: Request,
    format: str = Query("json", description="json | csv"),
    filters: AuditFilters = Depends(_filters),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    exported = await services.audit.export(session, filters, fmt=format)
    if format == "csv":
        stamp = utcnow().strftime("%Y%m%d-%H%M%S")
        return Response(
            content=exported,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="audit-logs-{stamp}.csv"'},
        )
    return ok(request, [AuditLogRead.model_validate(e) for e in exported])


@router.get("/entity/{entity_type}/{entity_id}")
async def audit_by_entity_endpoint(
    request: Request,
    entity_type: str,
    entity_id: str,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    result = await services.audit.by_entity(session, entity_type, entity_id, page=page, limit=limit)
    return ok(request, page_of(result, AuditLogRead))


@router.get("/user/{user_id}")
async def audit_by_user_endpoint(
    request: Request,
    user_id: uuid.UUID,
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    result = await services.audit.by_actor(session, user_id, page=page, limit=limit)
    return ok(request, page_of(result, AuditLogRead))


@router.get("/{entry_id}")
async def get_audit_log_endpoint(
    request: Request,
    entry_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(audit_reader),
):
    entry = await services.audit.get(session, entry_id)
    return ok(request, AuditLogRead.model_validate(entry))
