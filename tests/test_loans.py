from datetime import timedelta
from decimal import Decimal
import re

import pytest
from sqlalchemy import select

from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError, ValidationError
from pawnbroker.models import AuditLog, LoanTerm
from pawnbroker.schemas.loan import LoanCreate
from tests.conftest import T0
from tests.factories import actor_of, auth_headers, make_application, make_asset, make_loan, make_user


async def _setup(session):
    customer = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    asset = await make_asset(session, customer, evaluated_value=Decimal("1000.00"))
    application = await make_application(session, customer)
    return customer, officer, asset, application


@pytest.mark.anyio
async def test_create_draft_loan_writes_initial_term(session, services):
    customer, officer, asset, application = await _setup(session)

    loan = await services.loans.create(
        session,
        data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("800")),
        actor=actor_of(officer),
    )
    assert re.fullmatch(r"LON2501\d{4}", loan.loan_no)
    assert loan.status == "draft"
    assert loan.current_balance == Decimal("800.00")
    assert loan.interest_rate_percent == Decimal("4")
    assert loan.due_date == T0 + timedelta(days=30)

    terms = (await session.execute(select(LoanTerm).where(LoanTerm.loan_id == loan.id))).scalars().all()
    assert [(t.term_no, t.renewal_type, t.approved_at) for t in terms] == [(1, "initial", None)]

    await session.refresh(asset)
    assert asset.status == "active"
    assert asset.active_loan_id is None


@pytest.mark.anyio
async def test_disburse_pledges_asset_and_notifies(session, services, notifier):
    customer, officer, asset, application = await _setup(session)
    loan = await services.loans.create(
        session,
        data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("800")),
        actor=actor_of(officer),
    )

    loan = await services.loans.disburse(session, loan_id=loan.id, actor=actor_of(officer))
    assert loan.status == "active"
    assert loan.disbursed_at == T0

    await session.refresh(asset)
    assert asset.status == "pawned"
    assert asset.active_loan_id == loan.id

    term = (await session.execute(select(LoanTerm).where(LoanTerm.loan_id == loan.id))).scalar_one()
    assert term.approved_at == T0
    assert notifier.kinds() == ["loan.disbursed"]


@pytest.mark.anyio
async def test_loan_rules_on_create(session, services):
    customer, officer, asset, application = await _setup(session)
    actor = actor_of(officer)

    with pytest.raises(BusinessRuleError):
        await services.loans.create(
            session,
            data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("1500")),
            actor=actor,
        )

    pending = await make_application(session, customer, status="processing")
    with pytest.raises(BusinessRuleError):
        await services.loans.create(
            session, data=LoanCreate(application_id=pending.id, asset_id=asset.id, principal=Decimal("100")), actor=actor
        )

    with pytest.raises(ForbiddenError):
        await services.loans.create(
            session,
            data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("100")),
            actor=actor_of(customer),
        )


@pytest.mark.anyio
async def test_asset_can_back_only_one_open_loan(session, services):
    customer, officer, asset, application = await _setup(session)
    actor = actor_of(officer)
    await services.loans.create(
        session,
        data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("500"), disburse=True),
        actor=actor,
    )
    with pytest.raises(BusinessRuleError):
        await services.loans.create(
            session,
            data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("100")),
            actor=actor,
        )


@pytest.mark.anyio
async def test_cancelling_draft_leaves_asset_untouched(session, services):
    customer, officer, asset, application = await _setup(session)
    actor = actor_of(officer)
    loan = await services.loans.create(
        session,
        data=LoanCreate(application_id=application.id, asset_id=asset.id, principal=Decimal("800")),
        actor=actor,
    )
    loan = await services.loans.cancel(session, loan_id=loan.id, actor=actor)
    assert loan.status == "cancelled"
    await session.refresh(asset)
    assert asset.status == "active"
    assert asset.active_loan_id is None

    with pytest.raises(InvalidStateError):
        await services.loans.cancel(session, loan_id=loan.id, actor=actor)


@pytest.mark.anyio
async def test_payment_down_to_zero_redeems(session, services):
    customer = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, customer, status="pawned")
    loan = await make_loan(session, asset, start=T0)

    with pytest.raises(ValidationError):
        await services.loans.apply_payment(session, loan_id=loan.id, amount=Decimal("0"), actor=officer)

    loan = await services.loans.apply_payment(session, loan_id=loan.id, amount=Decimal("400"), actor=officer, reference="R1")
    assert loan.status == "active"
    assert loan.current_balance == Decimal("600.00")

    loan = await services.loans.apply_payment(session, loan_id=loan.id, amount=Decimal("700"), actor=officer)
    assert loan.status == "redeemed"
    assert loan.current_balance == Decimal("0.00")
    history = loan.meta["payment_history"]
    assert [h["applied"] for h in history] == ["400.00", "600.00"]

    await session.refresh(asset)
    assert asset.status == "redeemed"
    assert asset.active_loan_id is None

    with pytest.raises(InvalidStateError):
        await services.loans.apply_payment(session, loan_id=loan.id, amount=Decimal("1"), actor=officer)

    actions = (
        await session.execute(select(AuditLog.action).where(AuditLog.entity_id == str(loan.id)).order_by(AuditLog.created_at))
    ).scalars().all()
    assert sorted(actions) == ["loan.payment", "loan.redeem"]


@pytest.mark.anyio
async def test_status_machine(session, services):
    customer = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, customer, status="pawned")
    loan = await make_loan(session, asset, start=T0)

    with pytest.raises(InvalidStateError):
        await services.loans.update_status(session, loan_id=loan.id, status="sold", actor=officer)
    with pytest.raises(BusinessRuleError):
        await services.loans.update_status(session, loan_id=loan.id, status="redeemed", actor=officer)

    loan = await services.loans.update_status(session, loan_id=loan.id, status="overdue", actor=officer)
    await session.refresh(asset)
    assert asset.status == "overdue"

    loan = await services.loans.update_status(session, loan_id=loan.id, status="auction", actor=officer)
    await session.refresh(asset)
    assert asset.status == "auction"
    assert asset.active_loan_id == loan.id

    loan = await services.loans.update_status(session, loan_id=loan.id, status="closed", actor=officer, notes="written off")
    await session.refresh(asset)
    assert loan.closed_at == T0
    assert asset.status == "closed"
    assert asset.active_loan_id is None


@pytest.mark.anyio
async def test_charges_over_http(client, session, clock):
    customer = await make_user(session, "customer")
    asset = await make_asset(session, customer, status="pawned")
    loan = await make_loan(session, asset, start=T0)
    clock.advance(days=15)

    r = await client.get(f"/api/v1/loans/{loan.id}/charges", headers=auth_headers(customer))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["days_elapsed"] == 15
    assert Decimal(data["interest_accrued"]) == Decimal("1.64")
    assert Decimal(data["storage_charge"]) == Decimal("210.00")
    assert Decimal(data["total_due"]) == Decimal("1211.64")

    stranger = await make_user(session, "customer")
    r = await client.get(f"/api/v1/loans/{loan.id}/charges", headers=auth_headers(stranger))
    assert r.status_code == 403
