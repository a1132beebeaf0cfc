"""Cart and wishlist API router."""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from dependencies import get_cart_service
from models import User
from schemas import CartItemRequest, CartResponse, WishlistRequest, WishlistResponse
from services.cart_service import CartService

router = APIRouter(tags=["cart"])


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_service.get_cart(user.id)


@router.post("/cart/items", response_model=CartResponse)
async def add_to_cart(
    request: CartItemRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    return cart_service.add_item(
        db,
        user_id=user.id,
        product_id=request.product_id,
        quantity=request.quantity,
        variant=request.variant
    )


@router.patch("/cart/items", response_model=CartResponse)
async def update_cart_item(
    request: CartItemRequest,
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Change a line's quantity; zero removes it."""
    return cart_service.update_quantity(
        user_id=user.id,
        product_id=request.product_id,
        quantity=request.quantity,
        variant=request.variant
    )


@router.delete("/cart/items", response_model=CartResponse)
async def remove_cart_item(
    product_id: int = Query(..., alias="productId"),
    variant: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Remove a line from the cart."""
    return cart_service.remove_item(user.id, product_id, variant)


@router.delete("/cart", status_code=204)
async def clear_cart(
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Empty the cart."""
    cart_service.clear_cart(user.id)


@router.get("/wishlist", response_model=WishlistResponse)
async def get_wishlist(
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    return cart_service.get_wishlist(user.id)


@router.post("/wishlist", response_model=WishlistResponse)
async def add_to_wishlist(
    request: WishlistRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    return cart_service.add_to_wishlist(db, user.id, request.product_id)


@router.delete("/wishlist/{product_id}", response_model=WishlistResponse)
async def remove_from_wishlist(
    product_id: int,
    user: User = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    return cart_service.remove_from_wishlist(user.id, product_id)
