from decimal import Decimal

import pytest

from pawnbroker.errors import ForbiddenError, InvalidStateError, ValidationError
from pawnbroker.models import Asset
from pawnbroker.schemas.valuation import CompleteFinal, ValuationCreate
from pawnbroker.services.valuations import estimated_loan_value
from tests.factories import actor_of, make_asset, make_user


def test_loan_value_ratio_by_category():
    assert estimated_loan_value(Decimal("1000"), "electronics") == Decimal("300.00")
    assert estimated_loan_value(Decimal("1000"), "vehicle") == Decimal("500.00")
    assert estimated_loan_value(Decimal("1000"), "jewellery") == Decimal("500.00")


@pytest.mark.anyio
async def test_market_then_final_valuation_activates_asset(session, services):
    owner = await make_user(session, "customer")
    officer = await make_user(session, "loan_officer_processor")
    actor = actor_of(officer)
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None, category="electronics")

    market = await services.valuations.create(
        session, data=ValuationCreate(asset_id=asset.id, stage="market"), actor=actor
    )
    await session.refresh(asset)
    assert asset.status == "valuating"

    market = await services.valuations.update_status(session, valuation_id=market.id, status="in_progress", actor=actor)
    assert market.assessment_date is not None
    market, final = await services.valuations.complete_market(
        session, valuation_id=market.id, estimated_market_value=Decimal("800"), comments=None, actor=actor
    )
    assert market.status == "completed"
    assert market.estimated_loan_value == Decimal("240.00")
    assert final.stage == "final"
    assert final.status == "requested"
    assert final.desired_loan_amount == Decimal("240.00")

    await services.valuations.update_status(session, valuation_id=final.id, status="in_progress", actor=actor)
    done = await services.valuations.complete_final(
        session,
        valuation_id=final.id,
        data=CompleteFinal(final_value=Decimal("750"), desired_loan_amount=Decimal("200"), comments="Screen scratched"),
        actor=actor,
    )
    assert done.status == "completed"

    asset = await session.get(Asset, asset.id)
    await session.refresh(asset)
    assert asset.status == "active"
    assert asset.evaluated_value == Decimal("750.00")
    assert asset.evaluated_by == officer.id


@pytest.mark.anyio
async def test_completed_valuation_cannot_be_completed_again(session, services):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None)

    market = await services.valuations.create(session, data=ValuationCreate(asset_id=asset.id, stage="market"), actor=officer)
    await services.valuations.update_status(session, valuation_id=market.id, status="in_progress", actor=officer)
    await services.valuations.complete_market(
        session, valuation_id=market.id, estimated_market_value=Decimal("1000"), comments=None, actor=officer
    )
    with pytest.raises(InvalidStateError):
        await services.valuations.complete_market(
            session, valuation_id=market.id, estimated_market_value=Decimal("900"), comments=None, actor=officer
        )


@pytest.mark.anyio
async def test_final_stage_cannot_use_market_completion(session, services):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None)

    final = await services.valuations.create(session, data=ValuationCreate(asset_id=asset.id, stage="final"), actor=officer)
    with pytest.raises(ValidationError):
        await services.valuations.complete_market(
            session, valuation_id=final.id, estimated_market_value=Decimal("1000"), comments=None, actor=officer
        )


@pytest.mark.anyio
async def test_customers_cannot_value_assets(session, services):
    owner = await make_user(session, "customer")
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None)
    with pytest.raises(ForbiddenError):
        await services.valuations.create(
            session, data=ValuationCreate(asset_id=asset.id, stage="market"), actor=actor_of(owner)
        )


@pytest.mark.anyio
async def test_valued_asset_does_not_accept_new_valuations(session, services):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, owner, status="active")
    with pytest.raises(InvalidStateError):
        await services.valuations.create(session, data=ValuationCreate(asset_id=asset.id, stage="market"), actor=officer)


@pytest.mark.anyio
async def test_valuation_must_be_started_before_completion(session, services):
    owner = await make_user(session, "customer")
    officer = actor_of(await make_user(session, "loan_officer_processor"))
    asset = await make_asset(session, owner, status="submitted", evaluated_value=None)

    market = await services.valuations.create(session, data=ValuationCreate(asset_id=asset.id, stage="market"), actor=officer)
    with pytest.raises(InvalidStateError):
        await services.valuations.complete_market(
            session, valuation_id=market.id, estimated_market_value=Decimal("1000"), comments=None, actor=officer
        )
    await session.refresh(market)
    assert market.status == "requested"

    await services.valuations.update_status(session, valuation_id=market.id, status="in_progress", actor=officer)
    _, final = await services.valuations.complete_market(
        session, valuation_id=market.id, estimated_market_value=Decimal("1000"), comments=None, actor=officer
    )
    with pytest.raises(InvalidStateError):
        await services.valuations.complete_final(
            session,
            valuation_id=final.id,
            data=CompleteFinal(final_value=Decimal("950"), desired_loan_amount=Decimal("250"), comments="Good order"),
            actor=officer,
        )
    await session.refresh(final)
    await session.refresh(asset)
    assert final.status == "requested"
    assert asset.status == "valuating"
