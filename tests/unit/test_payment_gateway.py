"""Tests for payment gateways and payout execution."""

import uuid
from decimal import Decimal

import httpx
import pytest

from distro.core.errors import InvalidTransition, PaymentGatewayError
from distro.models import Payout, PayoutCurrency, PayoutMethod, PayoutStatus
from distro.services import payouts as payout_service
from distro.services.payment_gateway import (
    HttpPaymentGateway,
    ManualPaymentGateway,
    PaymentResult,
)


def _payout() -> Payout:
    return Payout(
        id=uuid.uuid4(),
        recipient_id=uuid.uuid4(),
        reference="PO-20240401-ABCD1234",
        amount=Decimal("25.75"),
        net_amount=Decimal("25.75"),
        currency=PayoutCurrency.USD,
        payment_method=PayoutMethod.BANK_TRANSFER,
    )


def _gateway(handler) -> HttpPaymentGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpPaymentGateway(base_url="https://pay.example.com/", token="secret", client=client)


async def test_http_gateway_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"status": "accepted", "payment_reference": "TX-1"})

    result = await _gateway(handler).execute(_payout())

    assert result == PaymentResult(success=True, reference="TX-1")
    assert seen["url"] == "https://pay.example.com/payments"
    assert seen["auth"] == "Bearer secret"


async def test_http_gateway_server_error_is_retryable():
    gateway = _gateway(lambda request: httpx.Response(503, text="maintenance"))

    with pytest.raises(PaymentGatewayError):
        await gateway.execute(_payout())


async def test_http_gateway_transport_error_is_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentGatewayError):
        await _gateway(handler).execute(_payout())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(422, json={"error": "invalid IBAN"}),
        httpx.Response(200, json={"status": "rejected", "error": "invalid IBAN"}),
    ],
)
async def test_http_gateway_rejection(response):
    result = await _gateway(lambda request: response).execute(_payout())

    assert result.success is False
    assert result.error == "invalid IBAN"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>OK</html>"),
        httpx.Response(200, json=["accepted"]),
    ],
)
async def test_http_gateway_unreadable_success_reply_is_retryable(response):
    with pytest.raises(PaymentGatewayError):
        await _gateway(lambda request: response).execute(_payout())


async def test_http_gateway_unreadable_client_error_is_a_rejection():
    gateway = _gateway(lambda request: httpx.Response(403, text="<html>Forbidden</html>"))

    result = await gateway.execute(_payout())

    assert result == PaymentResult(success=False, error="HTTP 403")


async def test_http_gateway_requires_url():
    with pytest.raises(PaymentGatewayError):
        await HttpPaymentGateway(base_url="").execute(_payout())


async def test_manual_gateway_generates_reference():
    result = await ManualPaymentGateway().execute(_payout())

    assert result.success is True
    assert result.reference.startswith("MANUAL-PO-20240401-ABCD1234-")


class ScriptedGateway:
    """Raises the scripted errors in order, then returns the result."""

    def __init__(self, result: PaymentResult, errors: int = 0):
        self.result = result
        self.errors = errors
        self.calls = 0

    async def execute(self, payout):
        self.calls += 1
        if self.calls <= self.errors:
            raise PaymentGatewayError("gateway timeout")
        return self.result


async def _pending_payout(db, fx, make_recipient, make_processed_royalty):
    artist = await make_recipient()
    await make_processed_royalty(artist.id, "40")
    payout = await payout_service.aggregate_payout(db, artist.id, fx)
    await payout_service.submit_payout(db, payout.id)
    return artist, payout


async def test_execute_payout_pays_after_transient_errors(db, fx, make_recipient, make_processed_royalty):
    artist, payout = await _pending_payout(db, fx, make_recipient, make_processed_royalty)
    gateway = ScriptedGateway(PaymentResult(success=True, reference="TX-9"), errors=2)

    paid = await payout_service.execute_payout(db, payout.id, gateway)

    assert gateway.calls == 3
    assert paid.status == PayoutStatus.PAID
    assert paid.payment_reference == "TX-9"
    assert artist.pending_payouts == Decimal("0")


async def test_execute_payout_rejection_marks_failed(db, fx, make_recipient, make_processed_royalty):
    artist, payout = await _pending_payout(db, fx, make_recipient, make_processed_royalty)
    gateway = ScriptedGateway(PaymentResult(success=False, error="account closed"))

    failed = await payout_service.execute_payout(db, payout.id, gateway)

    assert failed.status == PayoutStatus.FAILED
    assert failed.failure_reason == "account closed"
    assert await payout_service.attached_split_count(db, payout.id) == 0
    assert artist.available_balance == Decimal("40")


async def test_execute_payout_leaves_processing_when_retries_run_out(
    db, fx, make_recipient, make_processed_royalty
):
    _, payout = await _pending_payout(db, fx, make_recipient, make_processed_royalty)
    gateway = ScriptedGateway(PaymentResult(success=True, reference="never"), errors=10)

    with pytest.raises(PaymentGatewayError):
        await payout_service.execute_payout(db, payout.id, gateway)

    assert payout.status == PayoutStatus.PROCESSING
    assert await payout_service.attached_split_count(db, payout.id) == 1


async def test_execute_requires_submitted_payout(db, fx, make_recipient, make_processed_royalty):
    artist = await make_recipient()
    await make_processed_royalty(artist.id, "40")
    draft = await payout_service.aggregate_payout(db, artist.id, fx)

    with pytest.raises(InvalidTransition):
        await payout_service.execute_payout(db, draft.id, ManualPaymentGateway())
