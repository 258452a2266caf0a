"""Audit journal.

Every state-changing operation in the core calls :meth:`AuditJournal.append`
exactly once, inside the same transaction as the change it records. Snapshots
are scrubbed of secrets here, never at the call sites.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import io
import json
import logging
from typing import Any
import uuid

from fastapi.encoders import jsonable_encoder
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud
from pawnbroker.clock import utcnow
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import ValidationError
from pawnbroker.models import AuditLog
from pawnbroker.security import Actor

logger = logging.getLogger("pawnbroker.audit")

SECRET_FIELDS = frozenset(
    {
        "password",
        "password_hash",
        "email_verification_otp",
        "email_verification_otp_expires",
        "reset_password_otp",
        "reset_password_otp_expires",
        "delete_account_otp",
        "delete_account_otp_expires",
        "auth_providers",
    }
)

EXPORT_HEADERS = (
    "Timestamp",
    "Action",
    "Entity Type",
    "Entity ID",
    "Actor Email",
    "Actor Name",
    "Actor Roles",
    "IP Address",
    "User Agent",
    "Channel",
    "Before State",
    "After State",
    "Metadata",
)

ACTION_SUMMARIES = {
    "user.register": "User registered",
    "user.verify_email": "Email verified",
    "user.login": "User logged in",
    "user.delete": "Account deleted",
    "asset.create": "Asset submitted",
    "asset.status": "Asset status changed",
    "valuation.complete_final": "Final valuation completed",
    "application.submit": "Application submitted",
    "application.approve": "Application approved",
    "application.reject": "Application rejected",
    "loan.create": "Loan created",
    "loan.disburse": "Loan disbursed",
    "loan.payment": "Loan payment received",
    "loan.redeem": "Loan redeemed",
    "loan_term.approve": "Loan term approved",
    "auction.create": "Auction created",
    "auction.close": "Auction closed",
    "bid.place": "Bid placed",
    "bid.dispute_raise": "Bid dispute raised",
    "bid.dispute_resolve": "Bid dispute resolved",
    "bid_payment.create": "Bid payment initiated",
    "bid_payment.success": "Bid payment received",
    "bid_payment.refund": "Bid payment refunded",
}

_ENCODERS = {Decimal: str, uuid.UUID: str}


def sanitize(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items() if k not in SECRET_FIELDS}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    return value


def snapshot(obj: Any) -> dict[str, Any] | None:
    """Column values of an ORM instance as JSON-safe data."""

    if obj is None:
        return None
    if isinstance(obj, dict):
        data = obj
    else:
        mapper = sa_inspect(obj).mapper
        data = {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    return jsonable_encoder(data, custom_encoder=_ENCODERS)


@dataclass(frozen=True)
class AuditFilters:
    actor_id: uuid.UUID | None = None
    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    channel: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None


class AuditJournal:
    def summary(self, action: str) -> str:
        return ACTION_SUMMARIES.get(action, action.replace("_", " ").replace(".", ": "))

    async def append(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        action: str,
        entity_type: str,
        entity_id: Any,
        before: Any = None,
        after: Any = None,
        meta: dict[str, Any] | None = None,
    ) -> AuditLog:
        if "." not in action:
            raise ValidationError("audit action must be '<entity>.<verb>'", field="action")

        entry = AuditLog(
            actor_id=actor.id,
            actor_email=actor.email,
            actor_name=actor.name,
            actor_roles=sorted(actor.roles),
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            before=sanitize(snapshot(before)),
            after=sanitize(snapshot(after)),
            meta=sanitize(jsonable_encoder(meta or {}, custom_encoder=_ENCODERS)),
            ip_address=actor.ip,
            user_agent=actor.user_agent,
            channel=actor.channel,
            request_id=actor.request_id,
        )
        session.add(entry)
        await session.flush()
        logger.info(
            "audit action=%s entity=%s:%s actor=%s request_id=%s",
            action,
            entity_type,
            entry.entity_id,
            actor.id,
            actor.request_id,
        )
        return entry

    def _filtered(self, filters: AuditFilters):
        q = select(AuditLog)
        if filters.actor_id is not None:
            q = q.where(AuditLog.actor_id == filters.actor_id)
        if filters.action:
            q = q.where(AuditLog.action == filters.action)
        if filters.entity_type:
            q = q.where(AuditLog.entity_type == filters.entity_type)
        if filters.entity_id:
            q = q.where(AuditLog.entity_id == str(filters.entity_id))
        if filters.channel:
            q = q.where(AuditLog.channel == filters.channel)
        if filters.date_from is not None:
            q = q.where(AuditLog.created_at >= filters.date_from)
        if filters.date_to is not None:
            q = q.where(AuditLog.created_at <= filters.date_to)
        if filters.search:
            like = f"%{filters.search}%"
            q = q.where(
                or_(
                    AuditLog.action.ilike(like),
                    AuditLog.entity_type.ilike(like),
                    AuditLog.entity_id.ilike(like),
                    AuditLog.actor_email.ilike(like),
                    cast(AuditLog.meta, String).ilike(like),
                )
            )
        return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())

    async def query(self, session: AsyncSession, filters: AuditFilters, *, page: int = 1, limit: int = 20) -> Page:
        return await paginate(session, self._filtered(filters), page=page, limit=limit)

    async def get(self, session: AsyncSession, entry_id: uuid.UUID) -> AuditLog:
        return await crud.audit_logs.get_or_404(session, id=entry_id)

    async def by_entity(self, session: AsyncSession, entity_type: str, entity_id: str, *, page: int = 1, limit: int = 20) -> Page:
        return await self.query(session, AuditFilters(entity_type=entity_type, entity_id=entity_id), page=page, limit=limit)

    async def by_actor(self, session: AsyncSession, actor_id: uuid.UUID, *, page: int = 1, limit: int = 20) -> Page:
        return await self.query(session, AuditFilters(actor_id=actor_id), page=page, limit=limit)

    async def stats(
        self,
        session: AsyncSession,
        *,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict[str, Any]:
        where = []
        if date_from is not None:
            where.append(AuditLog.created_at >= date_from)
        if date_to is not None:
            where.append(AuditLog.created_at <= date_to)

        by_action_rows = await session.execute(
            select(AuditLog.action, func.count(), func.max(AuditLog.created_at))
            .where(*where)
            .group_by(AuditLog.action)
            .order_by(func.count().desc())
        )
        by_entity_rows = await session.execute(
            select(AuditLog.entity_type, func.count()).where(*where).group_by(AuditLog.entity_type)
        )
        by_actor_rows = await session.execute(
            select(AuditLog.actor_id, AuditLog.actor_email, func.count())
            .where(*where, AuditLog.actor_id.is_not(None))
            .group_by(AuditLog.actor_id, AuditLog.actor_email)
            .order_by(func.count().desc())
            .limit(10)
        )
        recent = await session.execute(
            select(AuditLog).where(*where).order_by(AuditLog.created_at.desc()).limit(10)
        )

        now = utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = await session.execute(
            select(func.count()).select_from(AuditLog).where(
                AuditLog.created_at >= start_of_day, AuditLog.created_at < start_of_day + timedelta(days=1)
            )
        )
        total = await session.execute(select(func.count()).select_from(AuditLog).where(*where))

        return {
            "total": int(total.scalar_one()),
            "today": int(today.scalar_one()),
            "by_action": [
                {"action": a, "count": int(c), "last_occurred": last, "summary": self.summary(a)}
                for a, c, last in by_action_rows.all()
            ],
            "by_entity": {str(t): int(c) for t, c in by_entity_rows.all()},
            "top_users": [
                {"actor_id": str(a), "actor_email": e, "count": int(c)} for a, e, c in by_actor_rows.all()
            ],
            "recent": list(recent.scalars().all()),
        }

    async def export(self, session: AsyncSession, filters: AuditFilters, *, fmt: str = "json") -> str | list[AuditLog]:
        if fmt not in ("json", "csv"):
            raise ValidationError("format must be json or csv", field="format")

        r = await session.execute(self._filtered(filters))
        entries = list(r.scalars().all())
        if fmt == "json":
            return entries
        return self._to_csv(entries)

    def _to_csv(self, entries: list[AuditLog]) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL)
        writer.writerow(EXPORT_HEADERS)
        for e in entries:
            writer.writerow(
                [
                    e.created_at.isoformat() if e.created_at else "",
                    e.action,
                    e.entity_type,
                    e.entity_id or "",
                    e.actor_email or "",
                    e.actor_name or "",
                    ", ".join(e.actor_roles or []),
                    e.ip_address or "",
                    e.user_agent or "",
                    e.channel,
                    json.dumps(e.before) if e.before is not None else "",
                    json.dumps(e.after) if e.after is not None else "",
                    json.dumps(e.meta or {}),
                ]
            )
        return buf.getvalue()
