from __future__ import annotations

from dataclasses import replace
from datetime import datetime
import logging
import uuid

from sqlalchemy import String, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker import crud
from pawnbroker.clock import Clock, utcnow
from pawnbroker.config import settings
from pawnbroker.crud.base import Page, paginate
from pawnbroker.errors import (
    DuplicateError,
    ForbiddenError,
    InvalidStateError,
    UnauthenticatedError,
    ValidationError,
)
from pawnbroker.models import User
from pawnbroker.schemas.user import UserCreate, UserRegister, UserUpdateMe
from pawnbroker.security import (
    ADMIN_ROLES,
    CUSTOMER,
    SUPER_ADMIN,
    Actor,
    create_access_token,
    generate_otp,
    hash_password,
    otp_expiry,
    verify_password,
)
from pawnbroker.services.audit import AuditJournal, snapshot
from pawnbroker.services.notifications import Notification, Notifier, notify

logger = logging.getLogger("pawnbroker.users")

USER_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"active", "deleted"}),
    "active": frozenset({"suspended", "deleted"}),
    "suspended": frozenset({"active", "deleted"}),
    "deleted": frozenset(),
}


class UserService:
    def __init__(self, *, audit: AuditJournal, notifier: Notifier | None = None, clock: Clock = utcnow) -> None:
        self.audit = audit
        self.notifier = notifier
        self.clock = clock

    async def get_live_by_email(self, session: AsyncSession, email: str) -> User | None:
        r = await session.execute(
            select(User).where(User.email == email.strip().lower(), User.status != "deleted").limit(1)
        )
        return r.scalar_one_or_none()

    async def _ensure_email_free(self, session: AsyncSession, email: str) -> None:
        if await self.get_live_by_email(session, email) is not None:
            raise DuplicateError("Email is already registered", field="email")

    def _check_otp(self, stored: str | None, expires: datetime | None, otp: str) -> None:
        if not stored or stored != otp or expires is None or expires < self.clock():
            raise ValidationError("Invalid or expired OTP", field="otp")

    async def register(self, session: AsyncSession, *, data: UserRegister, actor: Actor) -> User:
        await self._ensure_email_free(session, data.email)

        now = self.clock()
        otp = generate_otp()
        user = User(
            email=data.email,
            phone=data.phone,
            first_name=data.first_name,
            last_name=data.last_name,
            password_hash=hash_password(data.password),
            roles=[CUSTOMER],
            status="pending",
            email_verified=False,
            kyc_docs=[],
            auth_providers=["password"],
            email_verification_otp=otp,
            email_verification_otp_expires=otp_expiry(now),
        )
        session.add(user)
        await session.flush()

        self_actor = replace(actor, id=user.id, email=user.email, name=user.full_name, roles=frozenset(user.roles))
        await self.audit.append(
            session, actor=self_actor, action="user.register", entity_type="user", entity_id=user.id, after=user
        )
        await session.commit()

        notify(
            self.notifier,
            Notification(
                kind="user.verify_email",
                to=user.email,
                subject="Verify your email address",
                body=f"Your verification code is {otp}. It expires in {settings.otp_ttl_minutes} minutes.",
                context={"user_id": str(user.id)},
            ),
        )
        return user

    async def create_staff(self, session: AsyncSession, *, data: UserCreate, actor: Actor) -> User:
        actor.require(ADMIN_ROLES, "create users")
        if SUPER_ADMIN in data.roles and SUPER_ADMIN not in actor.roles:
            raise ForbiddenError("Only a super administrator can grant that role", field="roles")
        await self._ensure_email_free(session, data.email)

        user = User(
            email=data.email,
            phone=data.phone,
            first_name=data.first_name,
            last_name=data.last_name,
            password_hash=hash_password(data.password),
            roles=sorted(set(data.roles)),
            status="active",
            email_verified=True,
            kyc_docs=[],
            auth_providers=["password"],
        )
        session.add(user)
        await session.flush()
        await self.audit.append(session, actor=actor, action="user.create", entity_type="user", entity_id=user.id, after=user)
        await session.commit()
        return user

    async def verify_email(self, session: AsyncSession, *, email: str, otp: str, actor: Actor) -> User:
        user = await self.get_live_by_email(session, email)
        if user is None:
            raise ValidationError("Invalid or expired OTP", field="otp")
        if user.email_verified and user.status == "active":
            return user
        self._check_otp(user.email_verification_otp, user.email_verification_otp_expires, otp)

        before = snapshot(user)
        user.email_verified = True
        user.email_verification_otp = None
        user.email_verification_otp_expires = None
        if user.status == "pending":
            user.status = "active"

        self_actor = replace(actor, id=user.id, email=user.email, name=user.full_name, roles=frozenset(user.roles))
        await self.audit.append(
            session, actor=self_actor, action="user.verify_email", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        return user

    async def login(self, session: AsyncSession, *, email: str, password: str, actor: Actor) -> tuple[User, str]:
        user = await self.get_live_by_email(session, email)
        if user is None or not verify_password(user.password_hash, password):
            raise UnauthenticatedError("Invalid email or password")
        if user.status == "pending":
            raise ForbiddenError("Email address has not been verified")
        if user.status != "active":
            raise ForbiddenError("Account is not active")

        before = snapshot(user)
        user.last_login_at = self.clock()
        self_actor = replace(actor, id=user.id, email=user.email, name=user.full_name, roles=frozenset(user.roles))
        await self.audit.append(
            session, actor=self_actor, action="user.login", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        return user, create_access_token(user_id=user.id, roles=user.roles, now=self.clock())

    async def forgot_password(self, session: AsyncSession, *, email: str, actor: Actor) -> None:
        user = await self.get_live_by_email(session, email)
        if user is None:
            # Same response either way so callers cannot tell which addresses exist.
            logger.info("password reset requested for unknown email")
            return

        otp = generate_otp()
        before = snapshot(user)
        user.reset_password_otp = otp
        user.reset_password_otp_expires = otp_expiry(self.clock())
        await self.audit.append(
            session, actor=actor, action="user.forgot_password", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        notify(
            self.notifier,
            Notification(
                kind="user.reset_password",
                to=user.email,
                subject="Password reset code",
                body=f"Your password reset code is {otp}.",
                context={"user_id": str(user.id)},
            ),
        )

    async def reset_password(self, session: AsyncSession, *, email: str, otp: str, new_password: str, actor: Actor) -> User:
        user = await self.get_live_by_email(session, email)
        if user is None:
            raise ValidationError("Invalid or expired OTP", field="otp")
        self._check_otp(user.reset_password_otp, user.reset_password_otp_expires, otp)

        before = snapshot(user)
        user.password_hash = hash_password(new_password)
        user.reset_password_otp = None
        user.reset_password_otp_expires = None
        await self.audit.append(
            session, actor=actor, action="user.reset_password", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        return user

    async def request_account_deletion(self, session: AsyncSession, *, actor: Actor) -> None:
        user = await crud.users.get_or_404(session, id=actor.id)
        otp = generate_otp()
        before = snapshot(user)
        user.delete_account_otp = otp
        user.delete_account_otp_expires = otp_expiry(self.clock())
        await self.audit.append(
            session, actor=actor, action="user.request_deletion", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        notify(
            self.notifier,
            Notification(
                kind="user.delete_account",
                to=user.email,
                subject="Confirm account deletion",
                body=f"Your account deletion code is {otp}.",
                context={"user_id": str(user.id)},
            ),
        )

    async def confirm_account_deletion(self, session: AsyncSession, *, otp: str, actor: Actor) -> User:
        user = await crud.users.get_or_404(session, id=actor.id)
        self._check_otp(user.delete_account_otp, user.delete_account_otp_expires, otp)
        before = snapshot(user)
        self._anonymise(user)
        await self.audit.append(
            session, actor=actor, action="user.delete", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        return user

    def _anonymise(self, user: User) -> None:
        user.status = "deleted"
        user.email = f"deleted+{user.id.hex}@deleted.invalid"
        user.phone = None
        user.first_name = None
        user.last_name = None
        user.password_hash = None
        user.kyc_docs = []
        user.auth_providers = []
        user.email_verification_otp = None
        user.email_verification_otp_expires = None
        user.reset_password_otp = None
        user.reset_password_otp_expires = None
        user.delete_account_otp = None
        user.delete_account_otp_expires = None
        user.deleted_at = self.clock()

    async def get(self, session: AsyncSession, *, user_id: uuid.UUID, actor: Actor) -> User:
        if user_id != actor.id:
            actor.require(ADMIN_ROLES, "view other users")
        return await crud.users.get_or_404(session, id=user_id)

    async def update_me(self, session: AsyncSession, *, data: UserUpdateMe, actor: Actor) -> User:
        user = await crud.users.get_or_404(session, id=actor.id)
        before = snapshot(user)
        changed = crud.users.apply(user, data)
        if not changed:
            return user
        await self.audit.append(
            session, actor=actor, action="user.update", entity_type="user", entity_id=user.id, before=before, after=user
        )
        await session.commit()
        return user

    async def list_users(
        self,
        session: AsyncSession,
        *,
        actor: Actor,
        role: str | None = None,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        actor.require(ADMIN_ROLES, "list users")
        q = select(User)
        if role:
            q = q.where(cast(User.roles, String).like(f'%"{role}"%'))
        if status:
            q = q.where(User.status == status)
        if search:
            like = f"%{search}%"
            q = q.where(or_(User.email.ilike(like), User.first_name.ilike(like), User.last_name.ilike(like), User.phone.ilike(like)))
        return await paginate(session, q.order_by(User.created_at.desc()), page=page, limit=limit)

    async def update_status(self, session: AsyncSession, *, user_id: uuid.UUID, status: str, actor: Actor) -> User:
        actor.require(ADMIN_ROLES, "change user status")
        user = await crud.users.get_or_404(session, id=user_id, for_update=True)
        if user.status == status:
            return user
        if status not in USER_TRANSITIONS.get(user.status, frozenset()):
            raise InvalidStateError.transition("user", user.status, status)
        if user.id == actor.id and status != "active":
            raise ForbiddenError("You cannot suspend or delete your own account")

        before = snapshot(user)
        if status == "deleted":
            self._anonymise(user)
        else:
            user.status = status
        await self.audit.append(
            session, actor=actor, action="user.status", entity_type="user", entity_id=user.id, before=before, after=user, meta={"status": status}
        )
        await session.commit()
        return user
