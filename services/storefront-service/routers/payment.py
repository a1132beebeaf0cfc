"""Payment API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import get_current_user
from config import DEFAULT_CURRENCY
from database import get_db
from dependencies import get_payment_service
from models import User
from schemas import (
    PaymentIntentRequest,
    PaymentIntentResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from services.payment_service import PaymentService

router = APIRouter(prefix="/payment", tags=["payment"])


@router.post("/order", response_model=PaymentIntentResponse)
async def create_payment_order(
    request: PaymentIntentRequest,
    user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Register a payment intent with the gateway - requires authentication."""
    return await payment_service.create_payment_intent(
        request.amount,
        request.currency or DEFAULT_CURRENCY
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Verify the gateway's payment signature and mark the order paid."""
    payment_service.verify_payment(
        db,
        gateway_order_id=request.gateway_order_id,
        payment_id=request.payment_id,
        signature=request.signature,
        order_id=request.local_order_id,
        requester=user
    )
    return {"success": True, "message": "Payment verified successfully"}
