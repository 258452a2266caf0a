"""Actor context, roles, password hashing and access tokens."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import secrets
import uuid

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from pawnbroker.clock import utcnow
from pawnbroker.config import settings
from pawnbroker.errors import ForbiddenError

SUPER_ADMIN = "super_admin_vendor"
ADMIN = "admin_pawn_limited"
CALL_CENTRE = "call_centre_support"
PROCESSOR = "loan_officer_processor"
APPROVER = "loan_officer_approval"
MANAGEMENT = "management"
CUSTOMER = "customer"

ALL_ROLES = frozenset({SUPER_ADMIN, ADMIN, CALL_CENTRE, PROCESSOR, APPROVER, MANAGEMENT, CUSTOMER})
STAFF_ROLES = ALL_ROLES - {CUSTOMER}
OFFICER_ROLES = frozenset({PROCESSOR, APPROVER, ADMIN, MANAGEMENT, SUPER_ADMIN})
APPROVER_ROLES = frozenset({APPROVER, MANAGEMENT, SUPER_ADMIN})
ADMIN_ROLES = frozenset({ADMIN, MANAGEMENT, SUPER_ADMIN})

CHANNELS = ("web", "mobile", "api", "admin")


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation, resolved before the core is called."""

    id: uuid.UUID | None
    roles: frozenset[str] = field(default_factory=frozenset)
    email: str | None = None
    name: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    channel: str = "api"
    request_id: str | None = None

    def has_any(self, roles: frozenset[str] | set[str]) -> bool:
        return bool(self.roles & roles)

    @property
    def is_staff(self) -> bool:
        return self.has_any(STAFF_ROLES)

    @property
    def is_customer_only(self) -> bool:
        return not self.is_staff

    def require(self, roles: frozenset[str], action: str = "perform this action") -> None:
        if not self.has_any(roles):
            raise ForbiddenError(f"Not allowed to {action}", detail={"required_roles": sorted(roles)})


SYSTEM_ACTOR = Actor(id=None, roles=frozenset({"system"}), name="system", channel="api")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def generate_otp(digits: int = 6) -> str:
    return f"{secrets.randbelow(10**digits):0{digits}d}"


def otp_expiry(now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(minutes=settings.otp_ttl_minutes)


def create_access_token(*, user_id: uuid.UUID, roles: list[str], now: datetime | None = None) -> str:
    now = now or utcnow()
    payload = {
        "sub": str(user_id),
        "roles": list(roles),
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_ttl_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Raises ``jwt.InvalidTokenError`` (incl. ``ExpiredSignatureError``)."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
