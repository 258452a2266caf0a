import re
from decimal import Decimal

import pydantic
import pytest

from pawnbroker.errors import BusinessRuleError, ForbiddenError, InvalidStateError
from pawnbroker.schemas.asset import AssetCreate, AssetUpdate
from pawnbroker.services.asset_status import can_move, move_asset
from tests.conftest import T0
from tests.factories import actor_of, auth_headers, make_asset, make_loan, make_user


def test_details_must_match_category():
    with pytest.raises(pydantic.ValidationError):
        AssetCreate(category="electronics", title="Phone", details={"registration_no": "ABC 1234"})

    asset = AssetCreate(category="vehicle", title="Honda Fit", details={"registration_no": "ABC 1234"})
    assert asset.details["registration_no"] == "ABC 1234"
    assert asset.details["make"] is None


def test_identifying_fields_cannot_be_edited():
    with pytest.raises(pydantic.ValidationError):
        AssetUpdate.model_validate({"asset_no": "AST25010001"})


def test_status_machine_edges():
    assert can_move("submitted", "valuating")
    assert can_move("overdue", "auction")
    assert not can_move("sold", "active")
    assert not can_move("closed", "submitted")


@pytest.mark.anyio
async def test_customer_registers_own_asset(session, services):
    owner = await make_user(session, "customer")
    asset = await services.assets.create(
        session, data=AssetCreate(category="electronics", title="Laptop", declared_value=Decimal("500")), actor=actor_of(owner)
    )
    assert re.fullmatch(r"AST2501\d{4}", asset.asset_no)
    assert asset.status == "submitted"
    assert asset.owner_id == owner.id
    assert asset.submitted_by == owner.id


@pytest.mark.anyio
async def test_customer_cannot_register_for_someone_else(session, services):
    owner = await make_user(session, "customer")
    other = await make_user(session, "customer")
    with pytest.raises(ForbiddenError):
        await services.assets.create(
            session, data=AssetCreate(category="electronics", title="TV", owner_id=other.id), actor=actor_of(owner)
        )


@pytest.mark.anyio
async def test_customers_only_see_their_own_assets(session, services):
    alice = await make_user(session, "customer")
    bob = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    mine = await make_asset(session, alice)
    await make_asset(session, bob)

    page = await services.assets.list_assets(session, actor=actor_of(alice))
    assert [a.id for a in page.items] == [mine.id]

    with pytest.raises(ForbiddenError):
        await services.assets.get(session, asset_id=mine.id, actor=actor_of(bob))

    page = await services.assets.list_assets(session, actor=actor_of(officer))
    assert page.total == 2


@pytest.mark.anyio
async def test_owner_edits_stop_once_valuation_starts(session, services):
    owner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None)

    updated = await services.assets.update_attributes(
        session, asset_id=asset.id, data=AssetUpdate(title="Gold chain 18ct"), actor=actor_of(owner)
    )
    assert updated.title == "Gold chain 18ct"

    asset.status = "valuating"
    await session.commit()
    with pytest.raises(ForbiddenError):
        await services.assets.update_attributes(
            session, asset_id=asset.id, data=AssetUpdate(title="Something else"), actor=actor_of(owner)
        )


@pytest.mark.anyio
async def test_illegal_status_move_is_invalid_state(session, services):
    owner = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    asset = await make_asset(session, owner, status="sold")

    with pytest.raises(InvalidStateError):
        await services.assets.update_status(session, asset_id=asset.id, status="active", actor=actor_of(officer))


@pytest.mark.anyio
async def test_pledged_asset_cannot_be_closed(session, services):
    owner = await make_user(session, "customer")
    admin = await make_user(session, "admin_pawn_limited")
    asset = await make_asset(session, owner, status="pawned")
    await make_loan(session, asset, start=T0)

    with pytest.raises(BusinessRuleError):
        await services.assets.soft_delete(session, asset_id=asset.id, actor=actor_of(admin))


@pytest.mark.anyio
async def test_releasing_moves_clear_the_pledge(session):
    owner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="pawned")
    loan = await make_loan(session, asset, start=T0)
    assert asset.active_loan_id == loan.id

    move_asset(asset, "redeemed", now=T0)
    assert asset.active_loan_id is None

    move_asset(asset, "closed", now=T0)
    assert asset.closed_at == T0


@pytest.mark.anyio
async def test_create_asset_over_http(client, session):
    owner = await make_user(session, "customer")
    r = await client.post(
        "/api/v1/assets",
        json={"category": "jewellery", "title": "Wedding band", "details": {"metal_type": "gold", "purity": "18ct"}},
        headers=auth_headers(owner),
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["success"] is True
    assert body["data"]["status"] == "submitted"
    assert body["data"]["details"]["metal_type"] == "gold"
