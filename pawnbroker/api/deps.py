from __future__ import annotations

import uuid

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.database import get_db
from pawnbroker.errors import ForbiddenError, UnauthenticatedError
from pawnbroker.models import User
from pawnbroker.security import CHANNELS, Actor, decode_access_token
from pawnbroker.services import Services

bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def _client_context(request: Request) -> dict:
    channel = (request.headers.get("x-channel") or "api").lower()
    if channel not in CHANNELS:
        channel = "api"
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return {
        "ip": ip,
        "user_agent": request.headers.get("user-agent"),
        "channel": channel,
        "request_id": getattr(request.state, "request_id", None),
    }


def actor_for(user: User, request: Request) -> Actor:
    return Actor(
        id=user.id,
        roles=frozenset(user.roles or ()),
        email=user.email,
        name=user.full_name,
        **_client_context(request),
    )


async def get_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    session: AsyncSession = Depends(get_db),
) -> Actor:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthenticatedError("Missing bearer token")
    try:
        claims = decode_access_token(credentials.credentials)
        user_id = uuid.UUID(str(claims.get("sub")))
    except (jwt.InvalidTokenError, ValueError) as exc:
        raise UnauthenticatedError("Invalid or expired token") from exc

    user = await session.get(User, user_id)
    if user is None or user.status == "deleted":
        raise UnauthenticatedError("Account no longer exists")
    if user.status != "active":
        raise ForbiddenError(f"Account is {user.status}")
    return actor_for(user, request)


def anonymous_actor(request: Request) -> Actor:
    """Actor for the unauthenticated routes (register, login, OTP flows)."""
    return Actor(id=None, roles=frozenset(), **_client_context(request))
