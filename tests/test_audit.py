import csv
from datetime import timedelta
from decimal import Decimal
import io

import pytest
from sqlalchemy import func, select

from pawnbroker.errors import ValidationError
from pawnbroker.models import AuditLog
from pawnbroker.schemas.asset import AssetCreate
from pawnbroker.schemas.auction import AuctionCreate
from pawnbroker.schemas.loan_term import RenewalCreate
from pawnbroker.services.audit import EXPORT_HEADERS, AuditFilters, sanitize
from tests.conftest import T0
from tests.factories import (
    actor_of,
    auth_headers,
    make_asset,
    make_closed_auction,
    make_loan,
    make_payment,
    make_user,
)


async def _total_entries(session) -> int:
    return (await session.execute(select(func.count()).select_from(AuditLog))).scalar_one()


def test_sanitize_strips_secret_fields_at_any_depth():
    data = {
        "email": "a@example.test",
        "password_hash": "pbkdf2:...",
        "nested": {"email_verification_otp": "123456", "keep": 1},
        "items": [{"reset_password_otp": "999999", "name": "x"}],
    }
    clean = sanitize(data)
    assert clean == {"email": "a@example.test", "nested": {"keep": 1}, "items": [{"name": "x"}]}


@pytest.mark.anyio
async def test_append_requires_dotted_action(session, services):
    user = await make_user(session)
    with pytest.raises(ValidationError):
        await services.audit.append(session, actor=actor_of(user), action="create", entity_type="asset", entity_id=None)


@pytest.mark.anyio
async def test_each_operation_writes_exactly_one_entry(session, services):
    owner = await make_user(session, "customer")
    actor = actor_of(owner, ip="10.0.0.1", channel="web", request_id="req-1")

    asset = await services.assets.create(
        session, data=AssetCreate(category="electronics", title="Laptop"), actor=actor
    )

    r = await session.execute(
        select(func.count()).select_from(AuditLog).where(AuditLog.entity_id == str(asset.id))
    )
    assert r.scalar_one() == 1

    entry = (await services.audit.query(session, AuditFilters(entity_type="asset"))).items[0]
    assert entry.action == "asset.create"
    assert entry.actor_id == owner.id
    assert entry.actor_roles == ["customer"]
    assert entry.ip_address == "10.0.0.1"
    assert entry.channel == "web"
    assert entry.request_id == "req-1"
    assert entry.before is None
    assert entry.after["asset_no"] == asset.asset_no


async def _close_with_winner(session, services, clock, gateway):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    admin = actor_of(await make_user(session, "admin_pawn_limited"))
    asset = await make_asset(session, owner, status="overdue")
    auction = await services.auctions.create(
        session,
        data=AuctionCreate(asset_id=asset.id, starting_bid=Decimal("500"), starts_at=T0, ends_at=T0 + timedelta(hours=1)),
        actor=officer,
    )
    await services.auctions.update_status(session, auction_id=auction.id, status="live", actor=admin)
    clock.advance(minutes=5)
    await services.auctions.place_bid(
        session, auction_id=auction.id, amount=Decimal("600"), actor=actor_of(await make_user(session))
    )
    clock.set(T0 + timedelta(hours=1))
    return lambda: services.auctions.update_status(session, auction_id=auction.id, status="closed", actor=admin)


async def _cash_payment_success(session, services, clock, gateway):
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    cashier = actor_of(await make_user(session, "call_centre_support"))
    _, bid = await make_closed_auction(session, await make_asset(session, owner, status="sold"), winner, at=T0)
    payment = await make_payment(session, bid, status="pending")
    return lambda: services.bid_payments.update_status(session, payment_id=payment.id, status="success", actor=cashier)


async def _polled_payment_success(session, services, clock, gateway):
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    _, bid = await make_closed_auction(session, await make_asset(session, owner, status="sold"), winner, at=T0)
    payment = await make_payment(session, bid, status="pending", method="ecocash", poll_url="https://gateway.test/poll/21")
    gateway.poll_status = "Paid"
    return lambda: services.bid_payments.check_status(session, payment_id=payment.id, actor=actor_of(winner))


async def _full_settlement_approval(session, services, clock, gateway):
    customer = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    approver = actor_of(await make_user(session, "loan_officer_approval"))
    loan = await make_loan(session, await make_asset(session, customer, status="pawned"), start=T0)
    term = await services.loan_terms.renew(
        session, loan_id=loan.id, data=RenewalCreate(renewal_type="full_settlement"), actor=officer
    )
    return lambda: services.loan_terms.approve(session, term_id=term.id, actor=approver)


async def _invalid_dispute_with_refund(session, services, clock, gateway):
    owner = await make_user(session, "customer")
    winner = await make_user(session, "customer")
    approver = actor_of(await make_user(session, "loan_officer_approval"))
    asset = await make_asset(session, owner, status="sold")
    _, bid = await make_closed_auction(session, asset, winner, at=T0, dispute_status="under_review")
    await make_payment(session, bid, status="success")
    return lambda: services.bids.resolve(session, bid_id=bid.id, outcome="resolved_invalid", actor=approver)


async def _redeeming_loan_payment(session, services, clock, gateway):
    customer = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    loan = await make_loan(session, await make_asset(session, customer, status="pawned"), start=T0)
    return lambda: services.loans.apply_payment(session, loan_id=loan.id, amount=Decimal("1000"), actor=officer)


@pytest.mark.anyio
@pytest.mark.parametrize(
    "arrange",
    [
        _close_with_winner,
        _cash_payment_success,
        _polled_payment_success,
        _full_settlement_approval,
        _invalid_dispute_with_refund,
        _redeeming_loan_payment,
    ],
    ids=lambda f: f.__name__.lstrip("_"),
)
async def test_compound_operation_writes_one_entry(arrange, session, services, clock, gateway):
    operation = await arrange(session, services, clock, gateway)
    before = await _total_entries(session)
    await operation()
    assert await _total_entries(session) == before + 1


@pytest.mark.anyio
async def test_user_snapshots_never_carry_secrets(client, session):
    r = await client.post(
        "/api/v1/users/register",
        json={"email": "new@example.test", "password": "Secret123!", "first_name": "New", "last_name": "Customer"},
    )
    assert r.status_code == 201

    entries = (await session.execute(select(AuditLog).where(AuditLog.action == "user.register"))).scalars().all()
    assert len(entries) == 1
    after = entries[0].after
    assert after["email"] == "new@example.test"
    for secret in ("password_hash", "email_verification_otp", "email_verification_otp_expires", "auth_providers"):
        assert secret not in after


@pytest.mark.anyio
async def test_csv_export_has_fixed_headers(session, services):
    owner = await make_user(session)
    await services.assets.create(session, data=AssetCreate(category="jewellery", title="Ring"), actor=actor_of(owner))

    text = await services.audit.export(session, AuditFilters(action="asset.create"), fmt="csv")
    rows = list(csv.reader(io.StringIO(text)))
    assert tuple(rows[0]) == EXPORT_HEADERS
    assert len(rows) == 2
    assert rows[1][1] == "asset.create"

    with pytest.raises(ValidationError):
        await services.audit.export(session, AuditFilters(), fmt="xml")


@pytest.mark.anyio
async def test_audit_log_api_is_staff_only(client, session):
    customer = await make_user(session, "customer")
    admin = await make_user(session, "admin_pawn_limited")

    r = await client.get("/api/v1/audit-logs", headers=auth_headers(customer))
    assert r.status_code == 403

    r = await client.get("/api/v1/audit-logs", headers=auth_headers(admin))
    assert r.status_code == 200
    data = r.json()["data"]
    assert set(data["pagination"]) == {"page", "limit", "total", "pages"}
