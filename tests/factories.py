"""Row builders for tests that need an entity in a given state without walking its workflow."""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
import itertools
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.models import Asset, Auction, Bid, BidPayment, Loan, LoanApplication, LoanTerm, User
from pawnbroker.security import Actor, create_access_token, hash_password

_seq = itertools.count(1)

PASSWORD = "Secret123!"


def _n() -> int:
    return next(_seq)


async def make_user(
    session: AsyncSession,
    *roles: str,
    email: str | None = None,
    status: str = "active",
    password: str = PASSWORD,
    first_name: str = "Test",
    last_name: str | None = None,
) -> User:
    n = _n()
    user = User(
        email=email or f"user{n}@example.test",
        first_name=first_name,
        last_name=last_name or f"User{n}",
        password_hash=hash_password(password),
        roles=list(roles or ("customer",)),
        status=status,
        email_verified=status == "active",
        kyc_docs=[],
        auth_providers=["password"],
    )
    session.add(user)
    await session.commit()
    return user


def actor_of(user: User, **extra) -> Actor:
    return Actor(id=user.id, roles=frozenset(user.roles), email=user.email, name=user.full_name, **extra)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id=user.id, roles=user.roles)}"}


async def make_asset(
    session: AsyncSession,
    owner: User,
    *,
    status: str = "active",
    evaluated_value: Decimal | None = Decimal("1000.00"),
    category: str = "jewellery",
    title: str = "18ct gold chain",
) -> Asset:
    asset = Asset(
        asset_no=f"AST2501{_n():04d}",
        category=category,
        title=title,
        owner_id=owner.id,
        submitted_by=owner.id,
        evaluated_value=evaluated_value,
        details={},
        attachments=[],
        status=status,
    )
    session.add(asset)
    await session.commit()
    return asset


async def make_application(
    session: AsyncSession,
    customer: User,
    *,
    status: str = "approved",
    full_name: str = "Tendai Moyo",
    national_id_number: str = "63-123456-A-42",
    amount: Decimal = Decimal("800.00"),
) -> LoanApplication:
    application = LoanApplication(
        application_no=f"APP2501{_n():03d}",
        customer_id=customer.id,
        full_name=full_name,
        national_id_number=national_id_number,
        requested_loan_amount=amount,
        collateral_category="jewellery",
        employment={},
        status=status,
        debtor_check={},
        attachments=[],
        internal_notes=[],
    )
    session.add(application)
    await session.commit()
    return application


async def make_loan(
    session: AsyncSession,
    asset: Asset,
    *,
    start: datetime,
    status: str = "active",
    principal: Decimal = Decimal("1000.00"),
    balance: Decimal | None = None,
    rate: Decimal = Decimal("4"),
    storage: Decimal = Decimal("21"),
    penalty: Decimal = Decimal("10"),
    period_days: int = 30,
) -> Loan:
    loan = Loan(
        loan_no=f"LON2501{_n():04d}",
        customer_id=asset.owner_id,
        asset_id=asset.id,
        collateral_category="jewellery",
        principal=principal,
        current_balance=principal if balance is None else balance,
        currency="USD",
        interest_rate_percent=rate,
        interest_period_days=period_days,
        storage_charge_percent=storage,
        penalty_percent=penalty,
        grace_days=7,
        start_date=start,
        due_date=start + timedelta(days=period_days),
        status=status,
        meta={"payment_history": []},
    )
    session.add(loan)
    await session.flush()
    session.add(
        LoanTerm(
            loan_id=loan.id,
            term_no=1,
            start_date=loan.start_date,
            due_date=loan.due_date,
            opening_balance=loan.current_balance,
            closing_balance=loan.current_balance,
            interest_rate_percent=rate,
            interest_period_days=period_days,
            storage_charge_percent=storage,
            renewal_type="initial",
            approved_at=start if status != "draft" else None,
        )
    )
    if status not in ("draft", "cancelled", "redeemed", "sold", "closed"):
        asset.active_loan_id = loan.id
    await session.commit()
    return loan


async def make_closed_auction(
    session: AsyncSession,
    asset: Asset,
    winner: User,
    *,
    at: datetime,
    amount: Decimal = Decimal("700.00"),
    dispute_status: str = "none",
) -> tuple[Auction, Bid]:
    """A closed auction whose single bid won; the bid is awaiting payment."""

    auction = Auction(
        auction_no=f"AUCTION-2501-{_n():04d}",
        asset_id=asset.id,
        starting_bid=Decimal("500.00"),
        currency="USD",
        auction_type="online",
        starts_at=at - timedelta(hours=2),
        ends_at=at - timedelta(hours=1),
        status="closed",
        closed_at=at - timedelta(hours=1),
        meta={},
    )
    session.add(auction)
    await session.flush()
    bid = Bid(
        auction_id=auction.id,
        bidder_id=winner.id,
        amount=amount,
        currency="USD",
        placed_at=at - timedelta(hours=1, minutes=30),
        dispute_status=dispute_status,
        payment_status="pending",
        paid_amount=Decimal("0.00"),
        meta={},
    )
    session.add(bid)
    await session.flush()
    auction.winner_id = winner.id
    auction.winning_bid_id = bid.id
    auction.winning_bid_amount = amount
    await session.commit()
    return auction, bid


async def make_payment(
    session: AsyncSession,
    bid: Bid,
    *,
    status: str = "pending",
    method: str = "cash",
    provider_txn_id: str | None = None,
    poll_url: str | None = None,
    receipt_no: str | None = None,
) -> BidPayment:
    payment = BidPayment(
        receipt_no=receipt_no or f"BIDPAY-250115-{_n():04d}",
        bid_id=bid.id,
        auction_id=bid.auction_id,
        payer_id=bid.bidder_id,
        amount=bid.amount,
        currency=bid.currency,
        status=status,
        method=method,
        provider="paynow" if provider_txn_id or poll_url else None,
        provider_txn_id=provider_txn_id,
        poll_url=poll_url,
        meta={},
    )
    session.add(payment)
    await session.commit()
    return payment


def new_id() -> uuid.UUID:
    return uuid.uuid4()
