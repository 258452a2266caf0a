from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pawnbroker.database import get_db
from pawnbroker.gateways.base import (
    GatewayCallback,
    InitiateRequest,
    InitiateResult,
    PollResult,
    RefundResult,
    callback_from_payload,
)
from pawnbroker.locks import KeyedLocks
from pawnbroker.main import create_app
from pawnbroker.models import Base
from pawnbroker.services import build_services
from pawnbroker.services.notifications import Notification
from tests._client import get_async_client

T0 = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind for n in self.sent]


class FakeGateway:
    """In-memory stand-in for the PayNow adapter."""

    name = "paynow"

    def __init__(self) -> None:
        self.initiate_result: InitiateResult | Exception = InitiateResult(
            success=True,
            poll_url="https://gateway.test/poll/1",
            redirect_url="https://gateway.test/pay/1",
            reference="PN-0001",
            instructions="Dial *151# to approve",
        )
        self.poll_status = "Awaiting Delivery"
        self.poll_amount: Decimal | None = None
        self.poll_error: Exception | None = None
        self.poll_timed_out = False
        self.refund_result = RefundResult(success=True, manual=True, message="Refund queued for manual processing")
        self.initiated: list[InitiateRequest] = []
        self.polled: list[str] = []
        self.refunded: list[str] = []

    async def initiate(self, request: InitiateRequest) -> InitiateResult:
        self.initiated.append(request)
        if isinstance(self.initiate_result, Exception):
            raise self.initiate_result
        return self.initiate_result

    async def poll(self, poll_url: str) -> PollResult:
        self.polled.append(poll_url)
        if self.poll_error is not None:
            raise self.poll_error
        if self.poll_timed_out:
            return PollResult(status="", timed_out=True)
        return PollResult(status=self.poll_status, amount=self.poll_amount)

    async def refund(self, reference: str) -> RefundResult:
        self.refunded.append(reference)
        return self.refund_result

    def parse_callback(self, payload: dict[str, Any]) -> GatewayCallback:
        return callback_from_payload(payload)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pawnbroker.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(gateway, notifier, clock):
    return build_services(gateway=gateway, notifier=notifier, clock=clock, locks=KeyedLocks())


@pytest.fixture
def app(services, session_factory):
    app = create_app(services=services)

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    return app


@pytest.fixture
async def client(app):
    async with get_async_client(app) as client:
        yield client
