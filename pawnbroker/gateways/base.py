"""Payment gateway port.

Bid settlement talks to the outside world only through
:class:`PaymentGateway`. The production adapter lives in
``pawnbroker.gateways.paynow``; tests use an in-memory double.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


@dataclass(frozen=True)
class InitiateRequest:
    receipt_no: str
    amount: Decimal
    payer_email: str
    description: str
    method: str
    phone: str | None = None


@dataclass(frozen=True)
class InitiateResult:
    success: bool
    redirect_url: str | None = None
    poll_url: str | None = None
    reference: str | None = None
    instructions: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PollResult:
    status: str
    amount: Decimal | None = None
    method: str | None = None
    reference: str | None = None
    timed_out: bool = False


@dataclass(frozen=True)
class RefundResult:
    success: bool
    manual: bool = False
    message: str | None = None


@dataclass(frozen=True)
class GatewayCallback:
    reference: str | None
    status: str
    poll_url: str | None = None
    amount: Decimal | None = None
    method: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    name: str

    async def initiate(self, request: InitiateRequest) -> InitiateResult: ...

    async def poll(self, poll_url: str) -> PollResult: ...

    async def refund(self, reference: str) -> RefundResult: ...

    def parse_callback(self, payload: dict[str, Any]) -> GatewayCallback: ...


def map_gateway_status(text: str | None) -> str:
    """Translate gateway status text to a payment status; first hit wins."""

    s = (text or "").lower()
    if "paid" in s or "completed" in s:
        return "success"
    if "awaiting" in s or "pending" in s:
        return "pending"
    if "cancel" in s:
        return "cancelled"
    if "fail" in s:
        return "failed"
    return "pending"


def _decimal_or_none(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return None


def callback_from_payload(payload: dict[str, Any]) -> GatewayCallback:
    """Normalise a callback body (JSON camelCase or the form fields PayNow posts)."""

    lowered = {str(k).lower(): v for k, v in payload.items()}
    return GatewayCallback(
        reference=lowered.get("reference") or lowered.get("paynowreference"),
        status=str(lowered.get("status") or ""),
        poll_url=lowered.get("pollurl") or lowered.get("poll_url"),
        amount=_decimal_or_none(lowered.get("amount")),
        method=lowered.get("method"),
        raw=dict(payload),
    )
