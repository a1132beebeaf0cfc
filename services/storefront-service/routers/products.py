"""Catalog API router."""
from decimal import Decimal
from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from opentelemetry import trace

from database import get_db
from dependencies import get_catalog_service
from schemas import ProductResponse, ProductListResponse, CategoryResponse
from services.catalog_service import CatalogService
from monitoring import product_views_counter

router = APIRouter(tags=["catalog"])


@router.get("/products", response_model=ProductListResponse)
async def get_products(
    category: Optional[str] = Query(None, description="Category slug"),
    search: Optional[str] = Query(None, description="Matches title, description or category name"),
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    sort: Literal["newest", "price-asc", "price-desc", "popular"] = Query("newest"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    Browse the catalog.

    Examples:
    - GET /products?category=textiles&sort=price-asc
    - GET /products?search=brass&minPrice=500&maxPrice=2000
    """
    result = catalog.list_products(
        db,
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        sort=sort,
        page=page,
        limit=limit
    )

    span = trace.get_current_span()
    span.set_attribute("product.count", len(result["products"]))
    span.set_attribute("catalog.sort", sort)
    product_views_counter.add(1, {"filtered": str(bool(category or search))})

    return result


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Get product details."""
    trace.get_current_span().set_attribute("product.id", product_id)
    return catalog.get_product(db, product_id)


@router.get("/categories", response_model=List[CategoryResponse])
async def get_categories(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """List categories with product counts."""
    return catalog.list_categories(db)
