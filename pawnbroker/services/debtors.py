from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.models import DebtorRecord

# Debtor-list accounts in these states are settled and never count as a match.
CLOSED_ACCOUNT_STATUSES = ("Paid up", "Sold", "Current")


class DebtorLookup(Protocol):
    async def find_matches(
        self, session: AsyncSession, *, full_name: str, national_id_number: str
    ) -> list[dict[str, Any]]: ...


class DatabaseDebtorLookup:
    """Looks applicants up in the imported ``debtor_records`` table."""

    async def find_matches(
        self, session: AsyncSession, *, full_name: str, national_id_number: str
    ) -> list[dict[str, Any]]:
        name = (full_name or "").strip().lower()
        national_id = (national_id_number or "").strip()

        clauses = []
        if name:
            clauses.append(func.lower(DebtorRecord.client_name) == name)
        if national_id:
            clauses.append(DebtorRecord.national_id_number == national_id)
        if not clauses:
            return []

        r = await session.execute(
            select(DebtorRecord)
            .where(
                or_(*clauses),
                or_(DebtorRecord.account_status.is_(None), DebtorRecord.account_status.not_in(CLOSED_ACCOUNT_STATUSES)),
            )
            .order_by(DebtorRecord.client_name)
        )
        return [
            {
                "id": str(rec.id),
                "client_name": rec.client_name,
                "national_id_number": rec.national_id_number,
                "asset_no": rec.asset_no,
                "reg_or_serial_no": rec.reg_or_serial_no,
                "account_status": rec.account_status,
                "amount_outstanding": str(rec.amount_outstanding) if rec.amount_outstanding is not None else None,
            }
            for rec in r.scalars().all()
        ]
