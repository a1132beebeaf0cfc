"""Back-office API router. Every route requires the ADMIN role."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import require_admin
from database import get_db
from dependencies import get_admin_service, get_catalog_service, get_order_service
from models import OrderStatus
from schemas import (
    CategoryCreate,
    CategoryUpdate,
    CategoryResponse,
    CustomersListResponse,
    DashboardResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrdersListResponse,
    ProductCreate,
    ProductUpdate,
    ProductResponse,
)
from services.admin_service import AdminService
from services.catalog_service import CatalogService
from services.order_service import OrderService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# --- Orders ---

@router.get("/orders", response_model=OrdersListResponse)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    return {"orders": order_service.list_all_orders(db, status)}


@router.patch("/orders/{order_id}", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    request: OrderStatusUpdate,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    """Change an order's status; cancelling or refunding restocks its items."""
    return order_service.set_order_status(db, order_id, request.status)


# --- Categories ---

@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.list_categories(db)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(
    request: CategoryCreate,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.create_category(db, request)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    request: CategoryUpdate,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.update_category(db, category_id, request)


@router.delete("/categories/{category_id}")
async def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Delete an empty category; categories with products are rejected."""
    catalog.delete_category(db, category_id)
    return {"success": True}


# --- Products ---

@router.get("/products", response_model=List[ProductResponse])
async def list_products(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.list_all_products(db)


@router.post("/products", response_model=ProductResponse, status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.create_product(db, request)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    request: ProductUpdate,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    return catalog.update_product(db, product_id, request)


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    catalog.delete_product(db, product_id)
    return {"success": True}


# --- Reporting ---

@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    db: Session = Depends(get_db),
    admin_service: AdminService = Depends(get_admin_service)
):
    return admin_service.dashboard(db)


@router.get("/customers", response_model=CustomersListResponse)
async def customers(
    db: Session = Depends(get_db),
    admin_service: AdminService = Depends(get_admin_service)
):
    return {"customers": admin_service.list_customers(db)}
