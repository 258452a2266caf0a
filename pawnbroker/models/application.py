from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
import uuid

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, JSONType, Money, TimestampMixin, UTCDateTime


class LoanApplication(TimestampMixin, Base):
    __tablename__ = "loan_applications"
    __table_args__ = (Index("ix_loan_applications_customer_status", "customer_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    application_no: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(GUID, ForeignKey("users.id"), nullable=False)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    national_id_number: Mapped[str] = mapped_column(String(50), nullable=False)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    contact_details: Mapped[str | None] = mapped_column(String(50), nullable=True)
    alternative_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    home_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    employment: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    requested_loan_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    collateral_category: Mapped[str] = mapped_column(String(20), nullable=False)
    collateral_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    surety_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    declared_asset_value: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    declaration_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    declaration_signature_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    declaration_signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[uuid.UUID | None] = mapped_column(GUID, ForeignKey("users.id"), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    debtor_check: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    attachments: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    internal_notes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
