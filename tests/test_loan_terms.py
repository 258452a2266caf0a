from datetime import timedelta
from decimal import Decimal

import pytest

from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError
from pawnbroker.schemas.loan import LoanCreate
from pawnbroker.schemas.loan_term import RenewalCreate
from tests.conftest import T0
from tests.factories import actor_of, auth_headers, make_application, make_asset, make_loan, make_user


async def _active_loan(session, services):
    customer = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    approver = actor_of(await make_user(session, "loan_officer_approval"))
    asset = await make_asset(session, customer, evaluated_value=Decimal("1500.00"))
    application = await make_application(session, customer)
    loan = await services.loans.create(
        session,
        data=LoanCreate(
            application_id=application.id,
            asset_id=asset.id,
            principal=Decimal("1000"),
            interest_rate_percent=Decimal("4"),
            interest_period_days=30,
            storage_charge_percent=Decimal("21"),
            disburse=True,
        ),
        actor=officer,
    )
    return loan, asset, officer, approver


@pytest.mark.anyio
async def test_renewal_chain_to_settlement(session, services):
    loan, asset, officer, approver = await _active_loan(session, services)

    initial = await services.loan_terms.current(session, loan_id=loan.id, actor=officer)
    assert (initial.term_no, initial.closing_balance) == (1, Decimal("1000.00"))

    term2 = await services.loan_terms.renew(
        session, loan_id=loan.id, data=RenewalCreate(renewal_type="interest_only_renewal"), actor=officer
    )
    assert term2.term_no == 2
    assert term2.opening_balance == Decimal("1000.00")
    assert term2.closing_balance == Decimal("1040.00")
    assert term2.start_date == T0 + timedelta(days=30)
    assert term2.approved_at is None

    await services.loan_terms.approve(session, term_id=term2.id, actor=approver)
    await session.refresh(loan)
    assert loan.current_balance == Decimal("1040.00")
    assert loan.start_date == T0 + timedelta(days=30)
    assert loan.due_date == T0 + timedelta(days=60)

    term3 = await services.loan_terms.renew(
        session,
        loan_id=loan.id,
        data=RenewalCreate(renewal_type="partial_principal_renewal", payment_amount=Decimal("200")),
        actor=officer,
    )
    assert (term3.opening_balance, term3.closing_balance) == (Decimal("1040.00"), Decimal("840.00"))
    await services.loan_terms.approve(session, term_id=term3.id, actor=approver)

    term4 = await services.loan_terms.renew(
        session, loan_id=loan.id, data=RenewalCreate(renewal_type="full_settlement"), actor=officer
    )
    assert (term4.opening_balance, term4.closing_balance) == (Decimal("840.00"), Decimal("0.00"))
    await services.loan_terms.approve(session, term_id=term4.id, actor=approver)

    await session.refresh(loan)
    await session.refresh(asset)
    assert loan.status == "redeemed"
    assert loan.current_balance == Decimal("0.00")
    assert asset.status == "redeemed"
    assert asset.active_loan_id is None

    timeline = await services.loan_terms.timeline(session, loan_id=loan.id, actor=officer)
    assert [t.term_no for t in timeline] == [1, 2, 3, 4]
    for prev, nxt in zip(timeline, timeline[1:]):
        assert nxt.opening_balance == prev.closing_balance
        assert nxt.start_date == prev.due_date

    with pytest.raises(InvalidStateError):
        await services.loan_terms.renew(
            session, loan_id=loan.id, data=RenewalCreate(renewal_type="interest_only_renewal"), actor=officer
        )


@pytest.mark.anyio
async def test_one_pending_term_at_a_time(session, services):
    loan, asset, officer, approver = await _active_loan(session, services)
    pending = await services.loan_terms.renew(
        session, loan_id=loan.id, data=RenewalCreate(renewal_type="interest_only_renewal"), actor=officer
    )
    with pytest.raises(BusinessRuleError):
        await services.loan_terms.renew(
            session, loan_id=loan.id, data=RenewalCreate(renewal_type="interest_only_renewal"), actor=officer
        )

    preview = await services.loan_terms.next_term(session, loan_id=loan.id, actor=officer)
    assert preview["next_term_no"] == 3
    assert preview["opening_balance"] == Decimal("1040.00")

    with pytest.raises(ForbiddenError):
        await services.loan_terms.approve(session, term_id=pending.id, actor=officer)

    await services.loan_terms.delete(session, term_id=pending.id, actor=officer)
    current = await services.loan_terms.current(session, loan_id=loan.id, actor=officer)
    assert current.term_no == 1


@pytest.mark.anyio
async def test_initial_and_approved_terms_are_permanent(session, services):
    loan, asset, officer, approver = await _active_loan(session, services)
    initial = await services.loan_terms.current(session, loan_id=loan.id, actor=officer)
    with pytest.raises(InvalidStateError):
        await services.loan_terms.delete(session, term_id=initial.id, actor=officer)

    term2 = await services.loan_terms.renew(
        session, loan_id=loan.id, data=RenewalCreate(renewal_type="interest_only_renewal"), actor=officer
    )
    await services.loan_terms.approve(session, term_id=term2.id, actor=approver)
    with pytest.raises(InvalidStateError):
        await services.loan_terms.approve(session, term_id=term2.id, actor=approver)
    with pytest.raises(InvalidStateError):
        await services.loan_terms.delete(session, term_id=term2.id, actor=officer)


@pytest.mark.anyio
async def test_partial_renewal_requires_payment_over_http(client, session):
    customer = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    asset = await make_asset(session, customer, status="pawned")
    loan = await make_loan(session, asset, start=T0)

    r = await client.post(
        f"/api/v1/loan-terms/loan/{loan.id}/renew",
        json={"renewal_type": "partial_principal_renewal"},
        headers=auth_headers(officer),
    )
    assert r.status_code == 400
    assert r.json()["kind"] == "validation"

    r = await client.post(
        f"/api/v1/loan-terms/loan/{loan.id}/renew",
        json={"renewal_type": "partial_principal_renewal", "payment_amount": "250.00"},
        headers=auth_headers(officer),
    )
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    assert data["term_no"] == 2
    assert data["closing_balance"] == "750.00"
