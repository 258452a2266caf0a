from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

UserStatus = Literal["pending", "active", "suspended", "deleted"]
Role = Literal[
    "super_admin_vendor",
    "admin_pawn_limited",
    "call_centre_support",
    "loan_officer_processor",
    "loan_officer_approval",
    "management",
    "customer",
]

_EMAIL_FIELD = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _EmailNormalised(BaseModel):
    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def _lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class UserRegister(_EmailNormalised):
    email: str = _EMAIL_FIELD
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=32)


class UserCreate(UserRegister):
    roles: list[Role] = Field(min_length=1)


class VerifyEmail(_EmailNormalised):
    email: str = _EMAIL_FIELD
    otp: str = Field(min_length=4, max_length=12)


class LoginRequest(_EmailNormalised):
    email: str = _EMAIL_FIELD
    password: str = Field(min_length=1)


class ForgotPassword(_EmailNormalised):
    email: str = _EMAIL_FIELD


class ResetPassword(_EmailNormalised):
    email: str = _EMAIL_FIELD
    otp: str = Field(min_length=4, max_length=12)
    new_password: str = Field(min_length=8, max_length=128)


class AccountDeletionConfirm(BaseModel):
    otp: str = Field(min_length=4, max_length=12)


class UserUpdateMe(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=32)


class UserStatusUpdate(BaseModel):
    status: UserStatus


class UserRead(BaseModel):
    id: UUID
    email: str
    phone: str | None
    first_name: str | None
    last_name: str | None
    roles: list[str]
    status: UserStatus
    email_verified: bool
    kyc_docs: list = Field(default_factory=list)
    last_login_at: datetime | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserRead
