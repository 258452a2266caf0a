"""Two-stage asset valuation.

A market valuation records what the item would fetch; completing it computes
the loan-to-value estimate and opens a final-stage request. Completing the
final valuation fixes ``Asset.evaluated_value`` and releases the asset to
``active`` so a loan can be written against it.
"""

from __future__ import annotations

from decimal import Decimal
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import InvalidStateError, ValidationError
from pawnbroker.models import Asset, AssetValuation
from pawnbroker.money import money
from pawnbroker.schemas.valuation import CompleteFinal, ValuationCreate, ValuationUpdate
from pawnbroker.security import OFFICER_ROLES, Actor
from pawnbroker.services.asset_status import move_asset
from pawnbroker.services.audit import AuditJournal, snapshot

LTV_RATES = {
    "electronics": Decimal("0.30"),
    "vehicle": Decimal("0.50"),
    "jewellery": Decimal("0.50"),
}
DEFAULT_LTV_RATE = Decimal("0.30")

VALUATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "requested": frozenset({"in_progress", "rejected"}),
    "in_progress": frozenset({"completed", "rejected"}),
    "completed": frozenset(),
    "rejected": frozenset(),
}
OPEN_STATUSES = ("requested", "in_progress")


def estimated_loan_value(market_value: Decimal | None, category: str) -> Decimal | None:
    if market_value is None:
        return None
    return money(Decimal(str(market_value)) * LTV_RATES.get(category, DEFAULT_LTV_RATE))


class ValuationService:
    def __init__(self, *, audit: AuditJournal, clock: Clock = utcnow) -> None:
        self.audit = audit
        self.clock = clock

    async def _load(self, session: AsyncSession, valuation_id: uuid.UUID) -> tuple[AssetValuation, Asset]:
        valuation = await crud.valuations.get_or_404(session, id=valuation_id, for_update=True)
        asset = await crud.assets.get_or_404(session, id=valuation.asset_id, for_update=True)
        return valuation, asset

    async def create(self, session: AsyncSession, *, data: ValuationCreate, actor: Actor) -> AssetValuation:
        actor.require(OFFICER_ROLES, "request valuations")
        asset = await crud.assets.get_or_404(session, id=data.asset_id, for_update=True)
        if asset.status not in ("submitted", "valuating"):
            raise InvalidStateError("Asset is not awaiting valuation", field="asset_id")

        now = self.clock()
        valuation = AssetValuation(
            asset_id=asset.id,
            stage=data.stage,
            status="requested",
            method=data.method,
            currency=data.currency,
            requested_by=actor.id,
            requested_at=now,
            assessment_date=data.assessment_date,
            estimated_market_value=data.estimated_market_value,
            estimated_loan_value=estimated_loan_value(data.estimated_market_value, asset.category),
            desired_loan_amount=data.desired_loan_amount,
            comments=data.comments,
            credit_check=data.credit_check.model_dump(mode="json") if data.credit_check else None,
            attachments=list(data.attachments),
            meta={},
        )
        session.add(valuation)
        if data.stage == "market":
            move_asset(asset, "valuating", now=now)
        await session.flush()

        await self.audit.append(
            session,
            actor=actor,
            action="valuation.create",
            entity_type="valuation",
            entity_id=valuation.id,
            after=valuation,
            meta={"asset_id": asset.id, "asset_status": asset.status},
        )
        await session.commit()
        return valuation

    async def get(self, session: AsyncSession, *, valuation_id: uuid.UUID, actor: Actor) -> AssetValuation:
        actor.require(OFFICER_ROLES, "view valuations")
        return await crud.valuations.get_or_404(session, id=valuation_id)

    async def list_valuations(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        asset_id: uuid.UUID | None = None,
        stage: str | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        actor.require(OFFICER_ROLES, "view valuations")
        q = select(AssetValuation)
        if asset_id is not None:
            q = q.where(AssetValuation.asset_id == asset_id)
        if stage:
            q = q.where(AssetValuation.stage == stage)
        if status:
            q = q.where(AssetValuation.status == status)
        return await paginate(session, q.order_by(AssetValuation.created_at.desc(), AssetValuation.id), page=page, limit=limit)

    async def update(self, session: AsyncSession, *, valuation_id: uuid.UUID, data: ValuationUpdate, actor: Actor) -> AssetValuation:
        actor.require(OFFICER_ROLES, "edit valuations")
        valuation, asset = await self._load(session, valuation_id)
        if valuation.status not in OPEN_STATUSES:
            raise InvalidStateError(f"A {valuation.status} valuation cannot be edited")

        changes = data.model_dump(exclude_unset=True, mode="python")
        if "credit_check" in changes and data.credit_check is not None:
            changes["credit_check"] = data.credit_check.model_dump(mode="json")
        if valuation.stage == "final":
            if "desired_loan_amount" in changes and changes["desired_loan_amount"] is None:
                raise ValidationError("desired_loan_amount is required for a final valuation", field="desired_loan_amount")
            if "comments" in changes and not (changes["comments"] or "").strip():
                raise ValidationError("comments are required for a final valuation", field="comments")
        if "estimated_market_value" in changes:
            changes["estimated_loan_value"] = estimated_loan_value(changes["estimated_market_value"], asset.category)

        before = snapshot(valuation)
        if not crud.valuations.apply(valuation, changes):
            return valuation
        await self.audit.append(
            session, actor=actor, action="valuation.update", entity_type="valuation", entity_id=valuation.id, before=before, after=valuation
        )
        await session.commit()
        return valuation

    async def update_status(
        self,
        session: AsyncSession,
        *,
        valuation_id: uuid.UUID,
        status: str,
        actor: Actor,
        comments: str | None = None,
    ) -> AssetValuation:
        actor.require(OFFICER_ROLES, "change valuation status")
        valuation, asset = await self._load(session, valuation_id)
        if status not in VALUATION_TRANSITIONS.get(valuation.status, frozenset()):
            raise InvalidStateError.transition("valuation", valuation.status, status)

        if status == "completed":
            if valuation.stage == "market":
                if valuation.estimated_market_value is None:
                    raise ValidationError("estimated_market_value is required to complete", field="estimated_market_value")
                return await self._complete_market(
                    session, valuation, asset, market_value=valuation.estimated_market_value, comments=comments, actor=actor
                )
            if valuation.final_value is None:
                raise ValidationError("final_value is required to complete", field="final_value")
            final_comments = (comments or valuation.comments or "").strip()
            if not final_comments or valuation.desired_loan_amount is None:
                raise ValidationError("desired_loan_amount and comments are required to complete a final valuation")
            return await self._complete_final(
                session,
                valuation,
                asset,
                data=CompleteFinal(
                    final_value=valuation.final_value,
                    desired_loan_amount=valuation.desired_loan_amount,
                    comments=final_comments,
                ),
                actor=actor,
            )

        now = self.clock()
        before = snapshot(valuation)
        valuation.status = status
        if comments:
            valuation.comments = comments
        valuation.valued_by = actor.id
        if status == "in_progress" and valuation.assessment_date is None:
            valuation.assessment_date = now
        if status == "rejected" and asset.status == "valuating":
            move_asset(asset, "submitted", now=now)

        await self.audit.append(
            session,
            actor=actor,
            action=f"valuation.{'reject' if status == 'rejected' else 'start'}",
            entity_type="valuation",
            entity_id=valuation.id,
            before=before,
            after=valuation,
            meta={"asset_status": asset.status},
        )
        await session.commit()
        return valuation

    async def complete_market(
        self,
        session: AsyncSession,
        *,
        valuation_id: uuid.UUID,
        estimated_market_value: Decimal,
        comments: str | None,
        actor: Actor,
    ) -> tuple[AssetValuation, AssetValuation]:
        actor.require(OFFICER_ROLES, "complete valuations")
        valuation, asset = await self._load(session, valuation_id)
        if valuation.stage != "market":
            raise ValidationError("Only market valuations can be completed this way", field="stage")
        if valuation.status != "in_progress":
            raise InvalidStateError.transition("valuation", valuation.status, "completed")
        await self._complete_market(session, valuation, asset, market_value=estimated_market_value, comments=comments, actor=actor)
        final = await crud.valuations.get_or_404(session, id=uuid.UUID(valuation.meta["final_valuation_id"]))
        return valuation, final

    async def _complete_market(
        self,
        session: AsyncSession,
        valuation: AssetValuation,
        asset: Asset,
        *,
        market_value: Decimal,
        comments: str | None,
        actor: Actor,
    ) -> AssetValuation:
        now = self.clock()
        before = snapshot(valuation)

        valuation.estimated_market_value = money(market_value)
        valuation.estimated_loan_value = estimated_loan_value(market_value, asset.category)
        valuation.status = "completed"
        valuation.valued_by = actor.id
        valuation.assessment_date = valuation.assessment_date or now
        if comments:
            valuation.comments = comments

        final = AssetValuation(
            asset_id=asset.id,
            stage="final",
            status="requested",
            method=valuation.method,
            currency=valuation.currency,
            requested_by=actor.id,
            requested_at=now,
            estimated_market_value=valuation.estimated_market_value,
            estimated_loan_value=valuation.estimated_loan_value,
            desired_loan_amount=valuation.estimated_loan_value,
            comments=f"Final valuation following market valuation at {valuation.estimated_market_value}",
            attachments=[],
            meta={"market_valuation_id": str(valuation.id)},
        )
        session.add(final)
        move_asset(asset, "valuating", now=now)
        await session.flush()
        valuation.meta = {**(valuation.meta or {}), "final_valuation_id": str(final.id)}

        await self.audit.append(
            session,
            actor=actor,
            action="valuation.complete_market",
            entity_type="valuation",
            entity_id=valuation.id,
            before=before,
            after=valuation,
            meta={"final_valuation_id": final.id},
        )
        await session.commit()
        return valuation

    async def complete_final(
        self,
        session: AsyncSession,
        *,
        valuation_id: uuid.UUID,
        data: CompleteFinal,
        actor: Actor,
    ) -> AssetValuation:
        actor.require(OFFICER_ROLES, "complete valuations")
        valuation, asset = await self._load(session, valuation_id)
        if valuation.stage != "final":
            raise ValidationError("Only final valuations can be completed this way", field="stage")
        if valuation.status != "in_progress":
            raise InvalidStateError.transition("valuation", valuation.status, "completed")
        return await self._complete_final(session, valuation, asset, data=data, actor=actor)

    async def _complete_final(
        self,
        session: AsyncSession,
        valuation: AssetValuation,
        asset: Asset,
        *,
        data: CompleteFinal,
        actor: Actor,
    ) -> AssetValuation:
        if not data.comments.strip():
            raise ValidationError("comments are required for a final valuation", field="comments")

        now = self.clock()
        before = snapshot(valuation)
        asset_before = snapshot(asset)

        valuation.final_value = money(data.final_value)
        valuation.desired_loan_amount = money(data.desired_loan_amount)
        valuation.comments = data.comments
        if data.credit_check is not None:
            valuation.credit_check = data.credit_check.model_dump(mode="json")
        valuation.status = "completed"
        valuation.valued_by = actor.id
        valuation.assessment_date = valuation.assessment_date or now

        asset.evaluated_value = valuation.final_value
        asset.evaluated_by = actor.id
        asset.evaluated_at = now
        move_asset(asset, "active", now=now)

        await self.audit.append(
            session,
            actor=actor,
            action="valuation.complete_final",
            entity_type="valuation",
            entity_id=valuation.id,
            before=before,
            after=valuation,
            meta={"asset_id": asset.id, "asset_before": asset_before, "asset_status": asset.status},
        )
        await session.commit()
        return valuation

    async def delete(self, session: AsyncSession, *, valuation_id: uuid.UUID, actor: Actor) -> None:
        actor.require(OFFICER_ROLES, "delete valuations")
        valuation, asset = await self._load(session, valuation_id)
        if valuation.status == "completed":
            raise InvalidStateError("Completed valuations cannot be deleted")

        before = snapshot(valuation)
        others = await session.execute(
            select(AssetValuation.id).where(
                AssetValuation.asset_id == asset.id,
                AssetValuation.id != valuation.id,
                AssetValuation.status.in_(OPEN_STATUSES),
            )
        )
        if asset.status == "valuating" and others.first() is None:
            move_asset(asset, "submitted", now=self.clock())

        await session.delete(valuation)
        await self.audit.append(
            session,
            actor=actor,
            action="valuation.delete",
            entity_type="valuation",
            entity_id=before["id"],
            before=before,
            meta={"asset_status": asset.status},
        )
        await session.commit()

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        actor.require(OFFICER_ROLES, "view valuation statistics")
        return {
            "by_stage": await crud.valuations.count_by(session, AssetValuation.stage),
            "by_status": await crud.valuations.count_by(session, AssetValuation.status),
        }
