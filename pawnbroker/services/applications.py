from __future__ import annotations

from datetime import datetime
import logging
from typing import Any
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud, identifiers
from pawnbroker.clock import Clock, utcnow
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import ForbiddenError, InvalidStateError, ValidationError
from pawnbroker.models import LoanApplication, User
from pawnbroker.schemas.application import ApplicationCreate, ApplicationUpdate
from pawnbroker.security import APPROVER_ROLES, OFFICER_ROLES, STAFF_ROLES, Actor
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.debtors import DebtorLookup
from pawnbroker.services.notifications import Notification, Notifier, notify

logger = logging.getLogger("pawnbroker.applications")

APPLICATION_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"submitted", "cancelled"}),
    "submitted": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"approved", "rejected", "cancelled"}),
    "approved": frozenset(),
    "rejected": frozenset(),
    "cancelled": frozenset(),
}
TERMINAL = frozenset({"approved", "rejected", "cancelled"})

STATUS_VERBS = {
    "processing": "process",
    "approved": "approve",
    "rejected": "reject",
    "cancelled": "cancel",
}

REQUIRED_ON_SUBMIT = (
    "full_name",
    "national_id_number",
    "date_of_birth",
    "contact_details",
    "home_address",
    "collateral_description",
    "declaration_signature_name",
    "declaration_signed_at",
)
REQUIRED_EMPLOYMENT = ("employment_type", "title", "duration")


def missing_for_submit(application: LoanApplication) -> list[str]:
    missing = [f for f in REQUIRED_ON_SUBMIT if getattr(application, f) in (None, "")]
    employment = application.employment or {}
    missing += [f"employment.{f}" for f in REQUIRED_EMPLOYMENT if not employment.get(f)]
    return missing


class ApplicationService:
    def __init__(
        self,
        *,
        audit: AuditJournal,
        debtor_lookup: DebtorLookup,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.audit = audit
        self.debtor_lookup = debtor_lookup
        self.notifier = notifier
        self.clock = clock

    async def _load(self, session: AsyncSession, application_id: uuid.UUID, actor: Actor) -> LoanApplication:
        application = await crud.applications.get_or_404(session, id=application_id, for_update=True)
        self._check_visible(application, actor)
        return application

    def _check_visible(self, application: LoanApplication, actor: Actor) -> None:
        if actor.is_customer_only and application.customer_id != actor.id:
            raise ForbiddenError("You can only access your own applications")

    def _note(self, application: LoanApplication, *, actor: Actor, status: str, note: str | None) -> None:
        entry = {
            "at": self.clock().isoformat(),
            "by": str(actor.id) if actor.id else None,
            "by_name": actor.name or actor.email,
            "status": status,
            "note": note,
        }
        application.internal_notes = [*(application.internal_notes or []), entry]

    async def _notify_customer(self, session: AsyncSession, application: LoanApplication, *, kind: str, subject: str, body: str) -> None:
        to = application.email_address
        if not to:
            customer = await session.get(User, application.customer_id)
            to = customer.email if customer is not None else None
        notify(
            self.notifier,
            Notification(
                kind=kind,
                to=to or "",
                subject=subject,
                body=body,
                context={"application_id": str(application.id), "application_no": application.application_no},
            ),
        )

    async def create(self, session: AsyncSession, *, data: ApplicationCreate, actor: Actor) -> LoanApplication:
        customer_id = actor.id
        if data.customer_id is not None and data.customer_id != actor.id:
            actor.require(STAFF_ROLES, "open applications for another customer")
            await crud.users.get_or_404(session, id=data.customer_id)
            customer_id = data.customer_id

        payload = data.model_dump(exclude={"customer_id", "employment"})
        application = LoanApplication(
            **payload,
            employment=data.employment.model_dump(),
            application_no=await identifiers.generate_unique(
                session, LoanApplication.application_no, identifiers.application_no, now=self.clock()
            ),
            customer_id=customer_id,
            status="draft",
            debtor_check={"checked": False},
            internal_notes=[],
        )
        session.add(application)
        await session.flush()
        await self.audit.append(
            session, actor=actor, action="application.create", entity_type="application", entity_id=application.id, after=application
        )
        await session.commit()
        return application

    async def get(self, session: AsyncSession, *, application_id: uuid.UUID, actor: Actor) -> LoanApplication:
        application = await crud.applications.get_or_404(session, id=application_id)
        self._check_visible(application, actor)
        return application

    async def list_applications(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        status: str | None = None,
        customer_id: uuid.UUID | None = None,
        collateral_category: str | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        if actor.is_customer_only:
            customer_id = actor.id

        q = select(LoanApplication)
        if status:
            q = q.where(LoanApplication.status == status)
        if customer_id is not None:
            q = q.where(LoanApplication.customer_id == customer_id)
        if collateral_category:
            q = q.where(LoanApplication.collateral_category == collateral_category)
        if search:
            like = f"%{search}%"
            q = q.where(
                or_(
                    LoanApplication.application_no.ilike(like),
                    LoanApplication.full_name.ilike(like),
                    LoanApplication.national_id_number.ilike(like),
                )
            )
        if date_from is not None:
            q = q.where(LoanApplication.created_at >= date_from)
        if date_to is not None:
            q = q.where(LoanApplication.created_at <= date_to)
        return await paginate(session, q.order_by(LoanApplication.created_at.desc(), LoanApplication.id), page=page, limit=limit)

    async def update(
        self, session: AsyncSession, *, application_id: uuid.UUID, data: ApplicationUpdate, actor: Actor
    ) -> LoanApplication:
        application = await self._load(session, application_id, actor)
        if actor.is_customer_only and application.status != "draft":
            raise ForbiddenError("Only draft applications can be edited")
        if application.status in TERMINAL:
            raise InvalidStateError(f"A {application.status} application cannot be edited")

        changes = data.model_dump(exclude_unset=True)
        if "employment" in changes and data.employment is not None:
            changes["employment"] = {**(application.employment or {}), **data.employment.model_dump(exclude_unset=True)}

        before = snapshot(application)
        if not crud.applications.apply(application, changes):
            return application
        await self.audit.append(
            session,
            actor=actor,
            action="application.update",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
        )
        await session.commit()
        return application

    async def _run_debtor_check(self, session: AsyncSession, application: LoanApplication, actor: Actor) -> dict[str, Any]:
        matches = await self.debtor_lookup.find_matches(
            session, full_name=application.full_name, national_id_number=application.national_id_number
        )
        result = {
            "checked": True,
            "matched": bool(matches),
            "matched_records": matches,
            "checked_at": self.clock().isoformat(),
            "checked_by": str(actor.id) if actor.id else None,
            "notes": (
                f"Found {len(matches)} matching debtor record(s)" if matches else "No matching debtor records found"
            ),
        }
        application.debtor_check = result
        return result

    async def submit(self, session: AsyncSession, *, application_id: uuid.UUID, actor: Actor) -> LoanApplication:
        application = await self._load(session, application_id, actor)
        if application.status != "draft":
            raise InvalidStateError.transition("application", application.status, "submitted")
        missing = missing_for_submit(application)
        if missing:
            raise ValidationError(
                "Application is incomplete: " + ", ".join(missing), field=missing[0], detail={"missing": missing}
            )

        before = snapshot(application)
        application.status = "submitted"
        application.submitted_at = self.clock()
        if not (application.debtor_check or {}).get("checked"):
            await self._run_debtor_check(session, application, actor)
        self._note(application, actor=actor, status="submitted", note="Application submitted")

        await self.audit.append(
            session,
            actor=actor,
            action="application.submit",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"debtor_matched": application.debtor_check.get("matched")},
        )
        await session.commit()
        await self._notify_customer(
            session,
            application,
            kind="application.submitted",
            subject=f"Application {application.application_no} received",
            body="We have received your loan application and will be in touch shortly.",
        )
        return application

    async def update_status(
        self,
        session: AsyncSession,
        *,
        application_id: uuid.UUID,
        status: str,
        actor: Actor,
        notes: str | None = None,
    ) -> LoanApplication:
        application = await self._load(session, application_id, actor)

        if status == "cancelled" and actor.is_customer_only:
            if application.status not in ("draft", "submitted"):
                raise ForbiddenError("This application can no longer be cancelled by the customer")
        elif status in ("approved", "rejected"):
            actor.require(APPROVER_ROLES, f"mark applications {status}")
        else:
            actor.require(OFFICER_ROLES, "process applications")

        if status not in APPLICATION_TRANSITIONS.get(application.status, frozenset()):
            raise InvalidStateError.transition("application", application.status, status)

        before = snapshot(application)
        application.status = status
        if status in ("approved", "rejected"):
            application.decided_by = actor.id
            application.decided_at = self.clock()
        self._note(application, actor=actor, status=status, note=notes)

        await self.audit.append(
            session,
            actor=actor,
            action=f"application.{STATUS_VERBS[status]}",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"notes": notes} if notes else None,
        )
        await session.commit()
        await self._notify_customer(
            session,
            application,
            kind="application.status",
            subject=f"Application {application.application_no} is now {status}",
            body=notes or f"Your loan application status changed to {status}.",
        )
        return application

    async def debtor_check(self, session: AsyncSession, *, application_id: uuid.UUID, actor: Actor) -> LoanApplication:
        actor.require(OFFICER_ROLES, "run debtor checks")
        application = await self._load(session, application_id, actor)
        if (application.debtor_check or {}).get("checked"):
            return application

        before = snapshot(application)
        result = await self._run_debtor_check(session, application, actor)
        await self.audit.append(
            session,
            actor=actor,
            action="application.debtor_check",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"matched": result["matched"], "matches": len(result["matched_records"])},
        )
        await session.commit()
        return application

    def _check_attachments_editable(self, application: LoanApplication, actor: Actor) -> None:
        if application.status in TERMINAL:
            raise InvalidStateError(f"A {application.status} application cannot be edited")
        if actor.is_customer_only and application.status != "draft":
            raise ForbiddenError("Only draft applications can be edited")

    async def add_attachment(self, session: AsyncSession, *, application_id: uuid.UUID, handle: str, actor: Actor) -> LoanApplication:
        application = await self._load(session, application_id, actor)
        self._check_attachments_editable(application, actor)
        if handle in (application.attachments or []):
            return application

        before = snapshot(application)
        application.attachments = [*(application.attachments or []), handle]
        await self.audit.append(
            session,
            actor=actor,
            action="application.attachment_add",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"handle": handle},
        )
        await session.commit()
        return application

    async def remove_attachment(self, session: AsyncSession, *, application_id: uuid.UUID, handle: str, actor: Actor) -> LoanApplication:
        application = await self._load(session, application_id, actor)
        self._check_attachments_editable(application, actor)
        if handle not in (application.attachments or []):
            raise ValidationError("Attachment not found on this application", field="handle")

        before = snapshot(application)
        application.attachments = [a for a in application.attachments if a != handle]
        await self.audit.append(
            session,
            actor=actor,
            action="application.attachment_remove",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"handle": handle},
        )
        await session.commit()
        return application

    async def request_documents(
        self,
        session: AsyncSession,
        *,
        application_id: uuid.UUID,
        documents: list[str],
        message: str | None,
        actor: Actor,
    ) -> LoanApplication:
        actor.require(OFFICER_ROLES, "request documents")
        application = await self._load(session, application_id, actor)
        if application.status in TERMINAL:
            raise InvalidStateError(f"A {application.status} application cannot be edited")

        before = snapshot(application)
        listing = ", ".join(documents)
        self._note(application, actor=actor, status=application.status, note=f"Documents requested: {listing}")
        await self.audit.append(
            session,
            actor=actor,
            action="application.request_documents",
            entity_type="application",
            entity_id=application.id,
            before=before,
            after=application,
            meta={"documents": documents},
        )
        await session.commit()
        await self._notify_customer(
            session,
            application,
            kind="application.documents_requested",
            subject=f"Documents needed for application {application.application_no}",
            body=(message + "\n\n" if message else "") + f"Please provide: {listing}",
        )
        return application

    async def stats(self, session: AsyncSession, *, actor: Actor) -> dict:
        actor.require(OFFICER_ROLES, "view application statistics")
        by_status = await crud.applications.count_by(session, LoanApplication.status)
        by_category = await crud.applications.count_by(session, LoanApplication.collateral_category)
        return {"total": sum(by_status.values()), "by_status": by_status, "by_collateral_category": by_category}
