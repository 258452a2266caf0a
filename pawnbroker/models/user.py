from __future__ import annotations

from datetime import datetime
import uuid

from sqlalchemy import Boolean, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, TimestampMixin, UTCDateTime


class User(TimestampMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        # Deleted accounts keep their row but release the address.
        Index(
            "uq_users_email_live",
            "email",
            unique=True,
            postgresql_where=text("status <> 'deleted'"),
            sqlite_where=text("status <> 'deleted'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    roles: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    kyc_docs: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    auth_providers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    email_verification_otp: Mapped[str | None] = mapped_column(String(12), nullable=True)
    email_verification_otp_expires: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reset_password_otp: Mapped[str | None] = mapped_column(String(12), nullable=True)
    reset_password_otp_expires: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    delete_account_otp: Mapped[str | None] = mapped_column(String(12), nullable=True)
    delete_account_otp_expires: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email
