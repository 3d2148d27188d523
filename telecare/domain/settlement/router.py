"""Settlement router - Preauthorize, capture and cancel consultation payments"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...services.payment_gateway import PaymentGateway, get_payment_gateway
from .schemas import PreauthorizationRequest, PreauthorizationResponse, SettlementStateResponse
from .service import SettlementService

router = APIRouter(prefix="/appointments", tags=["Settlement"])


def get_settlement_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> SettlementService:
    """Dependency injection for SettlementService"""
    return SettlementService(db, gateway)


@router.post("/{appointment_id}/payment/preauthorize", response_model=PreauthorizationResponse)
async def preauthorize_payment(
    appointment_id: int,
    body: PreauthorizationRequest,
    current_user: User = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    """Cover the consultation with the plan or place an authorization hold"""
    return await service.request_preauthorization(
        appointment_id,
        current_user,
        amount=body.amount,
        doctor_id=body.doctor_id,
        is_emergency=body.is_emergency,
    )


@router.post("/{appointment_id}/payment/capture", response_model=SettlementStateResponse)
async def capture_payment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    """Charge the held amount and complete the consultation (assigned doctor or admin)"""
    return await service.capture_payment(appointment_id, current_user)


@router.post("/{appointment_id}/payment/cancel", response_model=SettlementStateResponse)
async def cancel_payment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    """Release the held amount and cancel the consultation"""
    return await service.cancel_payment(appointment_id, current_user)
