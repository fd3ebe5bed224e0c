# backend/servicebook/services/payment_gateway.py
"""
Payment gateway abstraction.

charge(amount, booking_id) / refund(amount, booking_id, original_reference)
return a GatewayResult(transaction_reference, status). An optional
reference names what is paid for when there is no booking (consultation fees).

- HttpPaymentGateway    JSON over HTTP (httpx), POST {base}/charges, /refunds
- ManualPaymentGateway  cash / bank transfer recorded by staff, always succeeds
"""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import settings
from ..constants import GatewayStatus
from ..errors import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    transaction_reference: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == GatewayStatus.SUCCEEDED


class PaymentGateway:
    name = "base"

    def charge(self, amount: int, booking_id: Optional[int], reference: Optional[str] = None) -> GatewayResult:
        raise NotImplementedError

    def refund(
        self,
        amount: int,
        booking_id: Optional[int],
        original_reference: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> GatewayResult:
        raise NotImplementedError


class ManualPaymentGateway(PaymentGateway):
    name = "manual"

    def charge(self, amount, booking_id, reference=None) -> GatewayResult:
        return GatewayResult(f"MAN-{secrets.token_hex(6).upper()}", GatewayStatus.SUCCEEDED)

    def refund(self, amount, booking_id, original_reference=None, reference=None) -> GatewayResult:
        return GatewayResult(f"MAN-R-{secrets.token_hex(6).upper()}", GatewayStatus.SUCCEEDED)


class HttpPaymentGateway(PaymentGateway):
    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _post(self, path: str, payload: dict) -> GatewayResult:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        url = f"{self.base_url}{path}"

        try:
            if self._client is not None:
                resp = self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Payment gateway call {path} failed for booking={payload.get('booking_id')}: {e}")
            raise PaymentGatewayError(str(e)) from e

        reference = data.get("transaction_reference")
        status = data.get("status")
        if not reference or status not in GatewayStatus.ALL:
            raise PaymentGatewayError(f"Malformed gateway response: {data}")

        return GatewayResult(reference, status)

    def charge(self, amount, booking_id, reference=None) -> GatewayResult:
        payload = {"amount": amount, "booking_id": booking_id}
        if reference:
            payload["reference"] = reference
        return self._post("/charges", payload)

    def refund(self, amount, booking_id, original_reference=None, reference=None) -> GatewayResult:
        payload = {"amount": amount, "booking_id": booking_id, "original_reference": original_reference}
        if reference:
            payload["reference"] = reference
        return self._post("/refunds", payload)


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency: HTTP gateway when configured, manual otherwise."""
    if settings.payment_gateway_url:
        return HttpPaymentGateway(
            settings.payment_gateway_url,
            api_key=settings.payment_gateway_api_key,
            timeout=settings.payment_gateway_timeout,
        )
    return ManualPaymentGateway()
