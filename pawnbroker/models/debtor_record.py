from __future__ import annotations

from decimal import Decimal
import uuid

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import GUID, Base, Money, TimestampMixin


class DebtorRecord(TimestampMixin, Base):
    """A row of the imported debtor list consulted during application intake."""

    __tablename__ = "debtor_records"
    __table_args__ = (
        Index("ix_debtor_records_client_name", "client_name"),
        Index("ix_debtor_records_national_id", "national_id_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    national_id_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    asset_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reg_or_serial_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    amount_outstanding: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
