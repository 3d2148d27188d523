import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from telecare.errors import AuthorizationFailed, CaptureFailed, GatewayTimeout
from telecare.services.payment_gateway import StripePaymentGateway


def run(coro):
    return asyncio.run(coro)


def make_gateway(handler, api_key="sk_test_123"):
    return StripePaymentGateway(
        api_key=api_key,
        base_url="https://gateway.test/v1",
        currency="brl",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


def test_create_authorization_uses_manual_capture():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(
            200, json={"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"}
        )

    result = run(
        make_gateway(handler).create_authorization(7000, "cus_9", {"appointment_id": 12, "is_emergency": "false"})
    )

    assert result == {"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"}
    assert seen["path"] == "/v1/payment_intents"
    assert seen["auth"] == "Bearer sk_test_123"
    assert seen["form"]["capture_method"] == ["manual"]
    assert seen["form"]["amount"] == ["7000"]
    assert seen["form"]["customer"] == ["cus_9"]
    assert seen["form"]["metadata[appointment_id]"] == ["12"]


def test_declined_authorization_raises_with_gateway_code():
    def handler(request):
        return httpx.Response(
            402, json={"error": {"message": "Your card was declined.", "code": "card_declined"}}
        )

    with pytest.raises(AuthorizationFailed) as exc_info:
        run(make_gateway(handler).create_authorization(7000, "cus_9", {}))
    assert exc_info.value.gateway_code == "card_declined"
    assert exc_info.value.detail == "Your card was declined."


def test_timeout_maps_to_gateway_timeout():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(GatewayTimeout):
        run(make_gateway(handler).capture("pi_1"))


def test_network_error_maps_to_operation_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CaptureFailed):
        run(make_gateway(handler).capture("pi_1"))


def test_capture_of_already_captured_intent_succeeds():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(
                400,
                json={"error": {"message": "already captured", "code": "payment_intent_unexpected_state"}},
            )
        return httpx.Response(200, json={"id": "pi_1", "status": "succeeded"})

    assert run(make_gateway(handler).capture("pi_1")) == {"id": "pi_1", "status": "succeeded"}


def test_capture_of_cancelled_intent_fails():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(
                400,
                json={"error": {"message": "canceled", "code": "payment_intent_unexpected_state"}},
            )
        return httpx.Response(200, json={"id": "pi_1", "status": "canceled"})

    with pytest.raises(CaptureFailed):
        run(make_gateway(handler).capture("pi_1"))


def test_cancel_is_idempotent():
    def handler(request):
        if request.url.path.endswith("/cancel"):
            return httpx.Response(
                400,
                json={"error": {"message": "already canceled", "code": "payment_intent_unexpected_state"}},
            )
        return httpx.Response(200, json={"id": "pi_1", "status": "canceled"})

    assert run(make_gateway(handler).cancel("pi_1"))["status"] == "canceled"


def test_unconfigured_gateway_refuses_calls():
    gateway = make_gateway(lambda request: httpx.Response(200, json={}), api_key=None)
    assert not gateway.is_available()
    with pytest.raises(AuthorizationFailed):
        run(gateway.create_authorization(100, "cus_1", {}))
