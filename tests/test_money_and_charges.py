from datetime import timedelta
from decimal import Decimal

import pytest

from pawnbroker.money import money
from pawnbroker.services.charges import compute_charges, whole_days
from pawnbroker.services.loan_terms import closing_balance
from pawnbroker.errors import ValidationError
from tests.conftest import T0


def _charges(at, *, status="active", balance=Decimal("1000.00")):
    return compute_charges(
        principal=Decimal("1000.00"),
        current_balance=balance,
        interest_rate_percent=Decimal("4"),
        storage_charge_percent=Decimal("21"),
        penalty_percent=Decimal("10"),
        start_date=T0,
        due_date=T0 + timedelta(days=30),
        status=status,
        now=at,
    )


def test_money_rounds_half_up_to_cents():
    assert money("1.005") == Decimal("1.01")
    assert money(2.675) == Decimal("2.68")
    assert money(None) == Decimal("0.00")
    assert money(Decimal("10")) == Decimal("10.00")


def test_whole_days_rounds_partial_days_up_and_never_negative():
    assert whole_days(T0, T0) == 0
    assert whole_days(T0, T0 + timedelta(hours=1)) == 1
    assert whole_days(T0, T0 + timedelta(days=2)) == 2
    assert whole_days(T0 + timedelta(days=1), T0) == 0


def test_charges_mid_term():
    c = _charges(T0 + timedelta(days=15))
    assert c.days_elapsed == 15
    assert c.total_loan_days == 30
    assert c.interest_accrued == Decimal("1.64")
    assert c.storage_charge == Decimal("210.00")
    assert c.penalty == Decimal("0.00")
    assert c.is_overdue is False
    assert c.total_due == Decimal("1211.64")


def test_charges_penalty_only_while_overdue():
    at = T0 + timedelta(days=40)

    active = _charges(at, status="active")
    assert active.penalty == Decimal("0.00")
    assert active.overdue_days == 0

    overdue = _charges(at, status="overdue")
    assert overdue.overdue_days == 10
    assert overdue.penalty == Decimal("1000.00")
    assert overdue.total_due == overdue.current_balance + overdue.interest_accrued + overdue.storage_charge + Decimal("1000.00")


def test_total_due_never_decreases_as_time_passes():
    previous = Decimal("0")
    for day in range(0, 60, 3):
        c = _charges(T0 + timedelta(days=day), status="overdue" if day > 30 else "active")
        assert c.total_due >= previous
        previous = c.total_due


@pytest.mark.parametrize(
    "renewal_type,payment,expected",
    [
        ("interest_only_renewal", None, Decimal("1040.00")),
        ("partial_principal_renewal", Decimal("200"), Decimal("800.00")),
        ("full_settlement", None, Decimal("0.00")),
    ],
)
def test_closing_balance(renewal_type, payment, expected):
    assert closing_balance(renewal_type, Decimal("1000.00"), Decimal("4"), payment) == expected


def test_partial_payment_cannot_exceed_opening_balance():
    with pytest.raises(ValidationError):
        closing_balance("partial_principal_renewal", Decimal("100.00"), Decimal("4"), Decimal("150"))
