"""Dependency injection for services."""
from typing import Any
import redis
from fastapi import Depends, Request

from config import (
    PAYMENT_GATEWAY_URL,
    PAYMENT_GATEWAY_KEY_ID,
    PAYMENT_GATEWAY_KEY_SECRET,
    PAYMENT_GATEWAY_TIMEOUT,
)
from services.admin_service import AdminService
from services.cart_service import CartService
from services.catalog_service import CatalogService
from services.order_service import OrderService
from services.payment_service import PaymentService
from services.user_service import UserService


def get_redis(request: Request) -> redis.Redis:
    """Get Redis client from app state."""
    return request.app.state.redis_client


def get_http_client(request: Request) -> Any:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_cart_service(redis_client: redis.Redis = Depends(get_redis)) -> CartService:
    """Get cart service instance."""
    return CartService(redis_client)


def get_order_service(cart_service: CartService = Depends(get_cart_service)) -> OrderService:
    """Get order service instance."""
    return OrderService(cart_service)


def get_payment_service(http_client: Any = Depends(get_http_client)) -> PaymentService:
    """Get payment gateway client."""
    return PaymentService(
        http_client,
        key_id=PAYMENT_GATEWAY_KEY_ID,
        key_secret=PAYMENT_GATEWAY_KEY_SECRET,
        base_url=PAYMENT_GATEWAY_URL,
        timeout=PAYMENT_GATEWAY_TIMEOUT
    )


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_user_service() -> UserService:
    return UserService()


def get_admin_service() -> AdminService:
    return AdminService()
