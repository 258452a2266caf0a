from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.api.deps import anonymous_actor, get_actor, get_db, get_services
from pawnbroker.api.responses import ok, page_of
from pawnbroker.config import settings
from pawnbroker.schemas.user import (
    AccountDeletionConfirm,
    ForgotPassword,
    LoginRequest,
    ResetPassword,
    TokenRead,
    UserCreate,
    UserRead,
    UserRegister,
    UserStatusUpdate,
    UserUpdateMe,
    VerifyEmail,
)
from pawnbroker.security import Actor
from pawnbroker.services import Services

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_endpoint(
    request: Request,
    payload: UserRegister,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await services.users.register(session, data=payload, actor=anonymous_actor(request))
    return ok(request, UserRead.model_validate(user), message="Registered; check your email for the verification code")


@router.post("/verify-email")
async def verify_email_endpoint(
    request: Request,
    payload: VerifyEmail,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user = await services.users.verify_email(session, email=payload.email, otp=payload.otp, actor=anonymous_actor(request))
    return ok(request, UserRead.model_validate(user), message="Email verified")


@router.post("/login")
async def login_endpoint(
    request: Request,
    payload: LoginRequest,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    user, token = await services.users.login(
        session, email=payload.email, password=payload.password, actor=anonymous_actor(request)
    )
    body = TokenRead(access_token=token, expires_in=settings.jwt_ttl_minutes * 60, user=UserRead.model_validate(user))
    return ok(request, body)


@router.post("/forgot-password")
async def forgot_password_endpoint(
    request: Request,
    payload: ForgotPassword,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    await services.users.forgot_password(session, email=payload.email, actor=anonymous_actor(request))
    # same answer whether or not the email is known
    return ok(request, message="If the account exists, a reset code has been sent")


@router.post("/reset-password")
async def reset_password_endpoint(
    request: Request,
    payload: ResetPassword,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    await services.users.reset_password(
        session, email=payload.email, otp=payload.otp, new_password=payload.new_password, actor=anonymous_actor(request)
    )
    return ok(request, message="Password updated")


@router.post("/account-deletion/request")
async def request_account_deletion_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.users.request_account_deletion(session, actor=actor)
    return ok(request, message="A confirmation code has been sent to your email")


@router.post("/account-deletion/confirm")
async def confirm_account_deletion_endpoint(
    request: Request,
    payload: AccountDeletionConfirm,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    await services.users.confirm_account_deletion(session, otp=payload.otp, actor=actor)
    return ok(request, message="Account deleted")


@router.get("/me")
async def get_me_endpoint(
    request: Request,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    user = await services.users.get(session, user_id=actor.id, actor=actor)
    return ok(request, UserRead.model_validate(user))


@router.put("/me")
async def update_me_endpoint(
    request: Request,
    payload: UserUpdateMe,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    user = await services.users.update_me(session, data=payload, actor=actor)
    return ok(request, UserRead.model_validate(user), message="Profile updated")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_endpoint(
    request: Request,
    payload: UserCreate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    user = await services.users.create_staff(session, data=payload, actor=actor)
    return ok(request, UserRead.model_validate(user), message="User created")


@router.get("")
async def list_users_endpoint(
    request: Request,
    role: str | None = Query(None),
    status: str | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1),
    limit: int = Query(20),
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    result = await services.users.list_users(
        session, actor=actor, role=role, status=status, search=search, page=page, limit=limit
    )
    return ok(request, page_of(result, UserRead))


@router.put("/{user_id}/status")
async def update_user_status_endpoint(
    request: Request,
    user_id: uuid.UUID,
    payload: UserStatusUpdate,
    session: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
):
    user = await services.users.update_status(session, user_id=user_id, status=payload.status, actor=actor)
    return ok(request, UserRead.model_validate(user), message=f"User is now {user.status}")
