from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud, identifiers
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError, ValidationError
from pawnbroker.models import Asset
from pawnbroker.schemas.asset import AssetCreate, AssetUpdate, validate_details
from pawnbroker.security import ADMIN_ROLES, OFFICER_ROLES, Actor
from pawnbroker.services.asset_status import move_asset
from pawnbroker.services.audit import AuditJournal, snapshot

TERMINAL = frozenset({"closed"})


class AssetService:
    def __init__(self, *, audit: AuditJournal, clock: Clock = utcnow) -> None:
        self.audit = audit
        self.clock = clock

    async def create(self, session: AsyncSession, *, data: AssetCreate, actor: Actor) -> Asset:
        owner_id = actor.id
        if data.owner_id is not None and data.owner_id != actor.id:
            actor.require(OFFICER_ROLES, "register assets for another customer")
            await crud.users.get_or_404(session, id=data.owner_id)
            owner_id = data.owner_id

        now = self.clock()
        asset = Asset(
            asset_no=await identifiers.generate_unique(session, Asset.asset_no, identifiers.asset_no, now=now),
            category=data.category,
            title=data.title,
            description=data.description,
            condition=data.condition,
            storage_location=data.storage_location,
            declared_value=data.declared_value,
            details=data.details,
            attachments=list(data.attachments),
            owner_id=owner_id,
            submitted_by=actor.id,
            status="submitted",
        )
        session.add(asset)
        await session.flush()
        await self.audit.append(session, actor=actor, action="asset.create", entity_type="asset", entity_id=asset.id, after=asset)
        await session.commit()
        return asset

    async def get(self, session: AsyncSession, *, asset_id: uuid.UUID, actor: Actor) -> Asset:
        asset = await crud.assets.get_or_404(session, id=asset_id)
        self._check_visible(asset, actor)
        return asset

    def _check_visible(self, asset: Asset, actor: Actor) -> None:
        if actor.is_customer_only and asset.owner_id != actor.id:
            raise ForbiddenError("You can only access your own assets")

    async def list_assets(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        category: str | None = None,
        status: str | None = None,
        owner_id: uuid.UUID | None = None,
        asset_no: str | None = None,
        title: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if actor.is_customer_only:
            if owner_id is not None and owner_id != actor.id:
                raise ForbiddenError("You can only access your own assets")
            owner_id = actor.id

        q = select(Asset)
        if category:
            q = q.where(Asset.category == category)
        if status:
            q = q.where(Asset.status == status)
        if owner_id is not None:
            q = q.where(Asset.owner_id == owner_id)
        if asset_no:
            q = q.where(Asset.asset_no.ilike(f"%{asset_no}%"))
        if title:
            q = q.where(Asset.title.ilike(f"%{title}%"))
        if date_from is not None:
            q = q.where(Asset.created_at >= date_from)
        if date_to is not None:
            q = q.where(Asset.created_at <= date_to)
        return await paginate(session, q.order_by(Asset.created_at.desc(), Asset.id), page=page, limit=limit)

    async def search(self, session: AsyncSession, *, actor: Actor, term: str, page: int = 1, limit: int = 20) -> Page:
        if not term or not term.strip():
            raise ValidationError("search term is required", field="q")
        like = f"%{term.strip()}%"
        q = select(Asset).where(
            or_(Asset.asset_no.ilike(like), Asset.title.ilike(like), Asset.description.ilike(like))
        )
        if actor.is_customer_only:
            q = q.where(Asset.owner_id == actor.id)
        return await paginate(session, q.order_by(Asset.created_at.desc(), Asset.id), page=page, limit=limit)

    async def update_attributes(self, session: AsyncSession, *, asset_id: uuid.UUID, data: AssetUpdate, actor: Actor) -> Asset:
        asset = await crud.assets.get_or_404(session, id=asset_id, for_update=True)
        self._check_visible(asset, actor)
        if asset.status in TERMINAL:
            raise InvalidStateError("Closed assets cannot be edited")
        if actor.is_customer_only and asset.status != "submitted":
            raise ForbiddenError("Assets can only be edited by their owner before valuation starts")

        changes = data.model_dump(exclude_unset=True)
        if "details" in changes:
            try:
                changes["details"] = validate_details(asset.category, changes["details"])
            except ValueError as exc:
                raise ValidationError(str(exc), field="details") from exc

        before = snapshot(asset)
        if not crud.assets.apply(asset, changes):
            return asset
        await self.audit.append(
            session, actor=actor, action="asset.update", entity_type="asset", entity_id=asset.id, before=before, after=asset
        )
        await session.commit()
        return asset

    async def update_valuation(
        self,
        session: AsyncSession,
        *,
        asset_id: uuid.UUID,
        evaluated_value: Decimal,
        valuation_notes: str | None,
        actor: Actor,
    ) -> Asset:
        actor.require(OFFICER_ROLES, "record asset valuations")
        asset = await crud.assets.get_or_404(session, id=asset_id, for_update=True)
        if asset.status not in ("submitted", "valuating"):
            raise InvalidStateError(
                "Valuation can only be recorded while the asset is submitted or valuating", field="status"
            )

        before = snapshot(asset)
        now = self.clock()
        asset.evaluated_value = evaluated_value
        asset.valuation_notes = valuation_notes
        asset.evaluated_by = actor.id
        asset.evaluated_at = now
        move_asset(asset, "valuating", now=now)
        await self.audit.append(
            session, actor=actor, action="asset.valuation", entity_type="asset", entity_id=asset.id, before=before, after=asset
        )
        await session.commit()
        return asset

    async def update_status(
        self,
        session: AsyncSession,
        *,
        asset_id: uuid.UUID,
        status: str,
        actor: Actor,
        notes: str | None = None,
    ) -> Asset:
        actor.require(OFFICER_ROLES, "change asset status")
        asset = await crud.assets.get_or_404(session, id=asset_id, for_update=True)
        if status == "closed" and asset.active_loan_id is not None:
            raise BusinessRuleError("Asset has an active loan and cannot be closed", field="status")

        before = snapshot(asset)
        if not move_asset(asset, status, now=self.clock()):
            return asset
        await self.audit.append(
            session,
            actor=actor,
            action="asset.status",
            entity_type="asset",
            entity_id=asset.id,
            before=before,
            after=asset,
            meta={"notes": notes} if notes else None,
        )
        await session.commit()
        return asset

    async def soft_delete(self, session: AsyncSession, *, asset_id: uuid.UUID, actor: Actor) -> Asset:
        actor.require(ADMIN_ROLES, "close assets")
        asset = await crud.assets.get_or_404(session, id=asset_id, for_update=True)
        if asset.active_loan_id is not None:
            raise BusinessRuleError("Asset has an active loan and cannot be closed")
        if asset.status == "closed":
            raise InvalidStateError("Asset is already closed")

        before = snapshot(asset)
        move_asset(asset, "closed", now=self.clock())
        await self.audit.append(
            session, actor=actor, action="asset.delete", entity_type="asset", entity_id=asset.id, before=before, after=asset
        )
        await session.commit()
        return asset

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        actor.require(OFFICER_ROLES, "view asset statistics")
        by_status = await crud.assets.count_by(session, Asset.status)
        by_category = await crud.assets.count_by(session, Asset.category)
        total_value = await session.execute(
            select(func.coalesce(func.sum(Asset.evaluated_value), 0)).where(Asset.status != "closed")
        )
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_category": by_category,
            "total_evaluated_value": Decimal(str(total_value.scalar_one() or 0)).quantize(Decimal("0.01")),
        }
