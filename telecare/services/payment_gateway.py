"""
Payment Authorization Gateway
Two-phase card payments: a manual-capture PaymentIntent holds the funds at
booking, and is later captured or cancelled when the consultation settles.
"""

import logging
from typing import Optional

import httpx

from ..config import (
    PAYMENT_CURRENCY,
    PAYMENT_GATEWAY_API_KEY,
    PAYMENT_GATEWAY_TIMEOUT,
    PAYMENT_GATEWAY_URL,
)
from ..errors import AuthorizationFailed, CancelFailed, CaptureFailed, GatewayError, GatewayTimeout

logger = logging.getLogger(__name__)

# Gateway error code returned when capture/cancel hits an intent that already moved on
UNEXPECTED_STATE_CODE = "payment_intent_unexpected_state"


class PaymentGateway:
    """Interface of the external payment processor used by settlement"""

    async def create_authorization(self, amount: int, customer_ref: str, metadata: dict) -> dict:
        """Hold `amount` cents on the customer's payment method. Returns {id, client_secret, status}"""
        raise NotImplementedError

    async def capture(self, authorization_id: str) -> dict:
        """Capture a held authorization. Returns {id, status}"""
        raise NotImplementedError

    async def cancel(self, authorization_id: str) -> dict:
        """Release a held authorization. Returns {id, status}"""
        raise NotImplementedError


class StripePaymentGateway(PaymentGateway):
    """Stripe-compatible PaymentIntents client over httpx"""

    def __init__(
        self,
        api_key: Optional[str] = PAYMENT_GATEWAY_API_KEY,
        base_url: str = PAYMENT_GATEWAY_URL,
        currency: str = PAYMENT_CURRENCY,
        timeout: float = PAYMENT_GATEWAY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.transport = transport

        if not self.api_key:
            logger.warning("PAYMENT_GATEWAY_API_KEY not set; paid consultations will fail until configured")

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: type[GatewayError],
        data: Optional[dict] = None,
    ) -> dict:
        if not self.api_key:
            raise error_cls("Payment gateway not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as http_client:
                response = await http_client.request(
                    method,
                    path,
                    data=data,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.TimeoutException as e:
            logger.error(f"⏱️ Payment gateway timeout on {method} {path}: {e}")
            raise GatewayTimeout(f"Gateway timed out on {method} {path}") from e
        except httpx.RequestError as e:
            logger.error(f"❌ Payment gateway network error on {method} {path}: {e}")
            raise error_cls(f"Gateway network error: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            error = payload.get("error", {}) if isinstance(payload, dict) else {}
            message = error.get("message") or f"Gateway returned HTTP {response.status_code}"
            logger.error(f"❌ Payment gateway rejected {method} {path}: {message}")
            raise error_cls(message, gateway_code=error.get("code") or error.get("decline_code"))

        return payload

    async def create_authorization(self, amount: int, customer_ref: str, metadata: dict) -> dict:
        data = {
            "amount": amount,
            "currency": self.currency,
            "customer": customer_ref,
            "capture_method": "manual",
            "setup_future_usage": "off_session",
            "metadata[type]": "consultation_payment",
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = str(value)
        if "appointment_id" in metadata:
            data["description"] = f"Consultation #{metadata['appointment_id']}"

        intent = await self._request("POST", "/payment_intents", AuthorizationFailed, data=data)
        logger.info(f"✅ Authorization {intent.get('id')} created for {amount} {self.currency}")
        return {
            "id": intent["id"],
            "client_secret": intent.get("client_secret"),
            "status": intent.get("status"),
        }

    async def retrieve(self, authorization_id: str) -> dict:
        return await self._request("GET", f"/payment_intents/{authorization_id}", GatewayError)

    async def capture(self, authorization_id: str) -> dict:
        try:
            intent = await self._request(
                "POST", f"/payment_intents/{authorization_id}/capture", CaptureFailed
            )
        except CaptureFailed as e:
            if e.gateway_code != UNEXPECTED_STATE_CODE:
                raise
            # Capture is idempotent: an already captured intent counts as success
            intent = await self.retrieve(authorization_id)
            if intent.get("status") != "succeeded":
                raise
            logger.info(f"ℹ️ Authorization {authorization_id} was already captured")
        return {"id": intent["id"], "status": intent.get("status")}

    async def cancel(self, authorization_id: str) -> dict:
        try:
            intent = await self._request(
                "POST",
                f"/payment_intents/{authorization_id}/cancel",
                CancelFailed,
                data={"cancellation_reason": "requested_by_customer"},
            )
        except CancelFailed as e:
            if e.gateway_code != UNEXPECTED_STATE_CODE:
                raise
            intent = await self.retrieve(authorization_id)
            if intent.get("status") != "canceled":
                raise
            logger.info(f"ℹ️ Authorization {authorization_id} was already cancelled")
        return {"id": intent["id"], "status": intent.get("status")}


payment_gateway = StripePaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """Dependency injection for the payment gateway"""
    return payment_gateway
