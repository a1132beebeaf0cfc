"""Orders API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from dependencies import get_order_service
from models import User
from schemas import CreateOrderRequest, CreateOrderResponse, OrderResponse, OrdersListResponse
from services.order_service import OrderService

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=CreateOrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order from the cart snapshot - requires authentication."""
    order = order_service.create_order(db, user, request)
    return {
        "success": True,
        "order_id": order.id,
        "message": "Order placed successfully"
    }


@router.get("", response_model=OrdersListResponse)
async def get_orders(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    return {"orders": order_service.list_orders_for_user(db, user.id)}


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get one order; only its owner or an admin may read it."""
    return order_service.get_order(db, order_id, user)
