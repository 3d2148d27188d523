"""
Settlement error taxonomy and the FastAPI handler that renders it
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

PAYMENT_RETRY_MESSAGE = "Payment could not be processed, please try again"
INVALID_STATE_MESSAGE = "This consultation cannot be modified in its current state"


class SettlementError(Exception):
    """Base class for consultation lifecycle and settlement errors"""

    status_code = 400
    code = "settlement_error"
    public_message = "Request could not be completed"

    def __init__(self, detail: str = None, appointment_id: int = None):
        self.detail = detail or self.public_message
        self.appointment_id = appointment_id
        super().__init__(self.detail)


class AppointmentNotFound(SettlementError):
    status_code = 404
    code = "appointment_not_found"
    public_message = "Consultation not found"


class SettlementPermissionDenied(SettlementError):
    status_code = 403
    code = "permission_denied"
    public_message = "You do not have permission to perform this action on this consultation"


class PaymentMethodMissing(SettlementError):
    status_code = 400
    code = "payment_method_missing"
    public_message = "A payment method is required before booking paid consultations"


class AlreadyAuthorized(SettlementError):
    status_code = 409
    code = "already_authorized"
    public_message = "This consultation already has a payment authorization"


class InvalidPaymentState(SettlementError):
    """Illegal payment transition; the caller invoked operations out of order"""

    status_code = 409
    code = "invalid_payment_state"
    public_message = INVALID_STATE_MESSAGE


class InvalidAppointmentState(SettlementError):
    """Illegal consultation status transition"""

    status_code = 409
    code = "invalid_appointment_state"
    public_message = INVALID_STATE_MESSAGE


class QuotaExceededButNotChargeable(SettlementError):
    """Quota decrement attempted on an exhausted quota entry"""

    status_code = 409
    code = "quota_exhausted"
    public_message = "No emergency consultations left in the current cycle"


class GatewayError(SettlementError):
    """Gateway reported a failure; the operation is safe to retry"""

    status_code = 502
    code = "gateway_error"
    public_message = PAYMENT_RETRY_MESSAGE

    def __init__(self, detail: str = None, appointment_id: int = None, gateway_code: str = None):
        super().__init__(detail, appointment_id)
        self.gateway_code = gateway_code


class AuthorizationFailed(GatewayError):
    status_code = 402
    code = "authorization_failed"


class CaptureFailed(GatewayError):
    code = "capture_failed"


class CancelFailed(GatewayError):
    code = "cancel_failed"


class GatewayTimeout(GatewayError):
    """Gateway call timed out: outcome unknown, local state was not advanced"""

    status_code = 504
    code = "gateway_timeout"


async def settlement_exception_handler(request: Request, exc: SettlementError):
    """Render settlement errors with a user-facing message and a machine code"""
    if isinstance(exc, GatewayError):
        # Internal detail is logged, users see the generic retry message
        logger.error(
            f"❌ Gateway error on {request.url.path} (appointment={exc.appointment_id}): {exc.detail}"
        )
        message = PAYMENT_RETRY_MESSAGE
    elif isinstance(exc, (InvalidPaymentState, InvalidAppointmentState)):
        logger.warning(f"⚠️ Illegal transition on {request.url.path}: {exc.detail}")
        message = INVALID_STATE_MESSAGE
    else:
        logger.info(f"Settlement request rejected on {request.url.path}: {exc.code}")
        message = exc.detail
    return JSONResponse(status_code=exc.status_code, content={"detail": message, "code": exc.code})


def register_exception_handlers(app):
    app.add_exception_handler(SettlementError, settlement_exception_handler)
