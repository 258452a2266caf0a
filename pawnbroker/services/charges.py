"""Loan charge arithmetic (actual days, 365-day year).

    days_elapsed   = ceil((now - start_date) / day)
    interest       = principal * rate% / 100 / 365 * days_elapsed
    storage_charge = principal * storage% / 100
    penalty        = current_balance * penalty% / 100 * overdue_days   (only while overdue)
    total_due      = current_balance + interest + storage_charge + penalty

Each component is rounded to cents before summing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import math

from pawnbroker.money import HUNDRED, ZERO, money

DAYS_PER_YEAR = Decimal("365")
SECONDS_PER_DAY = 86400


def whole_days(start: datetime, end: datetime) -> int:
    """Days from ``start`` to ``end`` rounded up; never negative."""
    return max(0, math.ceil((end - start).total_seconds() / SECONDS_PER_DAY))


@dataclass(frozen=True)
class Charges:
    principal: Decimal
    current_balance: Decimal
    days_elapsed: int
    total_loan_days: int
    interest_rate_percent: Decimal
    storage_charge_percent: Decimal
    penalty_percent: Decimal
    interest_accrued: Decimal
    storage_charge: Decimal
    penalty: Decimal
    total_due: Decimal
    is_overdue: bool
    overdue_days: int
    computed_at: datetime


def compute_charges(
    *,
    principal: Decimal,
    current_balance: Decimal,
    interest_rate_percent: Decimal,
    storage_charge_percent: Decimal,
    penalty_percent: Decimal,
    start_date: datetime,
    due_date: datetime,
    status: str,
    now: datetime,
) -> Charges:
    principal = Decimal(str(principal))
    balance = Decimal(str(current_balance))
    rate = Decimal(str(interest_rate_percent))
    storage_pct = Decimal(str(storage_charge_percent))
    penalty_pct = Decimal(str(penalty_percent))

    days_elapsed = whole_days(start_date, now)
    overdue_days = whole_days(due_date, now)
    is_overdue = status == "overdue"

    interest = money(principal * rate / HUNDRED / DAYS_PER_YEAR * days_elapsed)
    storage = money(principal * storage_pct / HUNDRED)
    penalty = money(balance * penalty_pct / HUNDRED * overdue_days) if is_overdue else ZERO

    return Charges(
        principal=money(principal),
        current_balance=money(balance),
        days_elapsed=days_elapsed,
        total_loan_days=whole_days(start_date, due_date),
        interest_rate_percent=rate,
        storage_charge_percent=storage_pct,
        penalty_percent=penalty_pct,
        interest_accrued=interest,
        storage_charge=storage,
        penalty=penalty,
        total_due=money(balance) + interest + storage + penalty,
        is_overdue=is_overdue,
        overdue_days=overdue_days if is_overdue else 0,
        computed_at=now,
    )


def charges_for_loan(loan, now: datetime) -> Charges:
    return compute_charges(
        principal=loan.principal,
        current_balance=loan.current_balance,
        interest_rate_percent=loan.interest_rate_percent,
        storage_charge_percent=loan.storage_charge_percent,
        penalty_percent=loan.penalty_percent,
        start_date=loan.start_date,
        due_date=loan.due_date,
        status=loan.status,
        now=now,
    )
