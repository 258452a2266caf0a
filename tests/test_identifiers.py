import re

import pytest

from pawnbroker import identifiers
from pawnbroker.errors import DuplicateError
from pawnbroker.models import Asset
from tests.conftest import T0
from tests.factories import make_asset, make_user


def test_identifier_formats():
    assert re.fullmatch(r"AST2501\d{4}", identifiers.asset_no(T0))
    assert re.fullmatch(r"APP2501\d{3}", identifiers.application_no(T0))
    assert re.fullmatch(r"LON2501\d{4}", identifiers.loan_no(T0))
    assert re.fullmatch(r"AUCTION-2501-\d{4}", identifiers.auction_no(T0))
    assert re.fullmatch(r"BIDPAY-250115-\d{4}", identifiers.receipt_no(T0))


@pytest.mark.anyio
async def test_generate_unique_retries_then_gives_up(session):
    owner = await make_user(session)
    taken = await make_asset(session, owner)

    with pytest.raises(DuplicateError):
        await identifiers.generate_unique(session, Asset.asset_no, lambda now: taken.asset_no, attempts=3)

    candidates = iter([taken.asset_no, "AST25019999"])
    value = await identifiers.generate_unique(session, Asset.asset_no, lambda now: next(candidates))
    assert value == "AST25019999"
