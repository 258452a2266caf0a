from __future__ import annotations

import asyncio
from decimal import Decimal
import logging
from typing import Any

from paynow import Paynow

from pawnbroker.config import Settings
from pawnbroker.gateways.base import (
    GatewayCallback,
    InitiateRequest,
    InitiateResult,
    PollResult,
    RefundResult,
    callback_from_payload,
)

logger = logging.getLogger("pawnbroker.payments.paynow")

MOBILE_METHODS = ("ecocash", "onemoney", "telecash")


def _local_msisdn(phone: str) -> str:
    """``+263771234567`` -> ``0771234567`` as PayNow expects."""
    digits = "".join(ch for ch in phone if ch.isdigit())
    if digits.startswith("263"):
        return "0" + digits[3:]
    return digits


class PaynowGateway:
    """Adapter over the ``paynow`` SDK.

    The SDK is blocking, so every call runs in a worker thread bounded by
    ``timeout`` seconds. A timed-out poll reports ``timed_out=True`` and the
    caller keeps the last known status.
    """

    name = "paynow"

    def __init__(
        self,
        *,
        integration_id: str,
        integration_key: str,
        return_url: str,
        result_url: str,
        timeout: float = 15.0,
    ) -> None:
        self._client = Paynow(integration_id, integration_key, return_url, result_url)
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaynowGateway | None":
        if not (settings.paynow_integration_id and settings.paynow_integration_key):
            logger.warning("PayNow credentials not configured; online bid payments will not be handed off")
            return None
        return cls(
            integration_id=settings.paynow_integration_id,
            integration_key=settings.paynow_integration_key,
            return_url=settings.paynow_return_url,
            result_url=settings.paynow_result_url,
            timeout=settings.gateway_timeout_seconds,
        )

    async def _call(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.timeout)

    def _send(self, request: InitiateRequest):
        payment = self._client.create_payment(request.receipt_no, request.payer_email)
        payment.add(request.description, float(request.amount))
        if request.method in MOBILE_METHODS:
            return self._client.send_mobile(payment, _local_msisdn(request.phone or ""), request.method)
        return self._client.send(payment)

    async def initiate(self, request: InitiateRequest) -> InitiateResult:
        try:
            response = await self._call(self._send, request)
        except asyncio.TimeoutError:
            logger.warning("paynow initiate timed out receipt_no=%s", request.receipt_no)
            return InitiateResult(success=False, error="Payment gateway timed out")
        except Exception as exc:
            logger.exception("paynow initiate failed receipt_no=%s", request.receipt_no)
            return InitiateResult(success=False, error=str(exc) or type(exc).__name__)

        if not getattr(response, "success", False):
            return InitiateResult(success=False, error=str(getattr(response, "error", None) or "Payment initiation failed"))

        poll_url = getattr(response, "poll_url", None)
        reference = getattr(response, "paynow_reference", None)
        if not reference and poll_url:
            reference = poll_url.rstrip("/").split("=")[-1].split("/")[-1]
        return InitiateResult(
            success=True,
            redirect_url=getattr(response, "redirect_url", None),
            poll_url=poll_url,
            reference=reference,
            instructions=getattr(response, "instructions", None),
        )

    async def poll(self, poll_url: str) -> PollResult:
        try:
            status = await self._call(self._client.check_transaction_status, poll_url)
        except asyncio.TimeoutError:
            logger.warning("paynow poll timed out poll_url=%s", poll_url)
            return PollResult(status="", timed_out=True)

        amount = getattr(status, "amount", None)
        return PollResult(
            status=str(getattr(status, "status", "") or ""),
            amount=Decimal(str(amount)) if amount not in (None, "") else None,
            reference=getattr(status, "paynow_reference", None) or getattr(status, "reference", None),
        )

    async def refund(self, reference: str) -> RefundResult:
        # PayNow exposes no refund call; finance reverses the money by hand.
        logger.warning("paynow refund requested reference=%s; manual refund required", reference)
        return RefundResult(success=True, manual=True, message="Manual refund required")

    def parse_callback(self, payload: dict[str, Any]) -> GatewayCallback:
        return callback_from_payload(payload)
