"""
Payment gateway adapters.

The gateway is an external collaborator: it receives a payout and answers
with success or failure plus an external payment reference. Transport
problems raise PaymentGatewayError (retryable); a definitive rejection is
a PaymentResult with success=False.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from distro.core.config import settings
from distro.core.errors import PaymentGatewayError
from distro.models import Payout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None


class PaymentGateway(Protocol):
    async def execute(self, payout: Payout) -> PaymentResult:
        ...


class ManualPaymentGateway:
    """
    Gateway for payments made outside the platform (cheque, manual wire).

    Always succeeds with a generated reference; the admin confirms the
    transfer separately.
    """

    async def execute(self, payout: Payout) -> PaymentResult:
        reference = f"MANUAL-{payout.reference}-{secrets.token_hex(3).upper()}"
        logger.info(f"Manual payment recorded for {payout.reference}: {reference}")
        return PaymentResult(success=True, reference=reference)


class HttpPaymentGateway:
    """Payment gateway reached over HTTP."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_URL).rstrip("/")
        self.token = token or settings.PAYMENT_GATEWAY_TOKEN
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT
        self._client = client

    def _payload(self, payout: Payout) -> dict:
        return {
            "reference": payout.reference,
            "recipient_id": str(payout.recipient_id),
            "amount": str(payout.net_amount),
            "currency": payout.currency.value,
            "method": payout.payment_method.value,
        }

    async def execute(self, payout: Payout) -> PaymentResult:
        if not self.base_url:
            raise PaymentGatewayError("PAYMENT_GATEWAY_URL is not configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await client.post(
                f"{self.base_url}/payments",
                json=self._payload(payout),
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Payment gateway unreachable: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code >= 500:
            raise PaymentGatewayError(
                f"Payment gateway error: {response.status_code} - {response.text}"
            )

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if response.status_code < 400:
                # Outcome unknown; the payout stays in processing until retried
                raise PaymentGatewayError(
                    f"Payment gateway sent an unreadable reply for {payout.reference}: "
                    f"{response.text[:200]}"
                )
            data = {}

        if response.status_code >= 400 or data.get("status") == "rejected":
            error = data.get("error") or f"HTTP {response.status_code}"
            logger.warning(f"Payment for {payout.reference} rejected: {error}")
            return PaymentResult(success=False, error=error)

        return PaymentResult(success=True, reference=data.get("payment_reference"))
