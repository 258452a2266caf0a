"""Human-visible identifiers.

Formats::

    AST<yy><mm><nnnn>        assets
    APP<yy><mm><nnn>         loan applications
    LON<yy><mm><nnnn>        loans
    AUCTION-<yy><mm>-<nnnn>  auctions
    BIDPAY-<yymmdd>-<nnnn>   bid payment receipts

The numeric suffix is uniformly random. ``generate_unique`` checks the
candidate against the table and retries a bounded number of times; the
unique index on the column still guards concurrent inserts.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.clock import utcnow
from pawnbroker.config import settings
from pawnbroker.errors import DuplicateError

logger = logging.getLogger("pawnbroker.identifiers")


def _suffix(digits: int) -> str:
    return f"{secrets.randbelow(10**digits):0{digits}d}"


def asset_no(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"AST{now:%y%m}{_suffix(4)}"


def application_no(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"APP{now:%y%m}{_suffix(3)}"


def loan_no(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"LON{now:%y%m}{_suffix(4)}"


def auction_no(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"AUCTION-{now:%y%m}-{_suffix(4)}"


def receipt_no(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"BIDPAY-{now:%y%m%d}-{_suffix(4)}"


async def generate_unique(
    session: AsyncSession,
    column,
    factory: Callable[[datetime | None], str],
    *,
    now: datetime | None = None,
    attempts: int | None = None,
) -> str:
    attempts = attempts or settings.identifier_attempts
    for attempt in range(1, attempts + 1):
        candidate = factory(now)
        res = await session.execute(select(column).where(column == candidate).limit(1))
        if res.scalar_one_or_none() is None:
            return candidate
        logger.info("identifier collision column=%s value=%s attempt=%s", column.key, candidate, attempt)

    raise DuplicateError(
        f"Could not allocate a unique {column.key} after {attempts} attempts",
        field=column.key,
    )
