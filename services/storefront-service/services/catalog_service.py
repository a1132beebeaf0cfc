"""Catalog queries and back-office category/product maintenance."""
import logging
import math
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from opentelemetry import trace

from errors import NotFoundError, ValidationError, ConflictError
from models import Category, Product, OrderItem
from schemas import CategoryCreate, CategoryUpdate, ProductCreate, ProductUpdate
from monitoring import category_delete_rejected_counter

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "price-asc": (Product.price.asc(), Product.id.asc()),
    "price-desc": (Product.price.desc(), Product.id.asc()),
    # No sales ranking yet; oldest listings first
    "popular": (Product.id.asc(),),
}


class CatalogService:
    """Service for products and categories."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    # --- Storefront reads ---

    def list_products(
        self,
        db: Session,
        category: Optional[str] = None,
        search: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        sort: str = "newest",
        page: int = 1,
        limit: int = 12
    ) -> Dict[str, Any]:
        """
        Get one page of products.

        Args:
            db: Database session
            category: Category slug; an unknown slug applies no filter
            search: Substring matched against title, description and category name
            min_price: Lowest price, inclusive
            max_price: Highest price, inclusive
            sort: One of ``SORT_ORDERS``
            page: 1-based page number
            limit: Page size

        Returns:
            Products and pagination details
        """
        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            query = db.query(Product)

            if category:
                found = db.query(Category).filter(Category.slug == category).first()
                if found:
                    query = query.filter(Product.category_id == found.id)

            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(
                    Product.title.ilike(pattern),
                    Product.description.ilike(pattern),
                    Product.category.has(Category.name.ilike(pattern))
                ))

            if min_price is not None:
                query = query.filter(Product.price >= min_price)
            if max_price is not None:
                query = query.filter(Product.price <= max_price)

            total = query.count()
            products = (
                query.options(selectinload(Product.category))
                .order_by(*SORT_ORDERS.get(sort, SORT_ORDERS["newest"]))
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )
            db_span.set_attribute("db.rows_returned", len(products))

        return {
            "products": products,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if limit else 0
            }
        }

    def get_product(self, db: Session, product_id: int) -> Product:
        product = (
            db.query(Product)
            .options(selectinload(Product.category))
            .filter(Product.id == product_id)
            .first()
        )
        if product is None:
            raise NotFoundError("Product not found")
        return product

    def list_categories(self, db: Session) -> List[Dict[str, Any]]:
        """Categories, newest first, each with its product count."""
        rows: List[Tuple[Category, int]] = (
            db.query(Category, func.count(Product.id))
            .outerjoin(Product, Product.category_id == Category.id)
            .group_by(Category.id)
            .order_by(Category.created_at.desc(), Category.id.desc())
            .all()
        )
        return [
            {
                "id": category.id,
                "name": category.name,
                "slug": category.slug,
                "description": category.description,
                "image": category.image,
                "created_at": category.created_at,
                "product_count": count
            }
            for category, count in rows
        ]

    # --- Category administration ---

    def _get_category(self, db: Session, category_id: int) -> Category:
        category = db.query(Category).filter(Category.id == category_id).first()
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def _ensure_slug_free(self, db: Session, slug: str, exclude_id: Optional[int] = None) -> None:
        query = db.query(Category.id).filter(Category.slug == slug)
        if exclude_id is not None:
            query = query.filter(Category.id != exclude_id)
        if query.first() is not None:
            raise ConflictError("Category with this slug already exists", code="duplicate_slug")

    def _commit(self, db: Session) -> None:
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning("Catalog write violated a constraint", extra={"error": str(e.orig)})
            raise ConflictError("Category with this slug already exists", code="duplicate_slug")

    def create_category(self, db: Session, data: CategoryCreate) -> Category:
        """
        Create a category.

        Raises:
            ValidationError: If name or slug is missing
            ConflictError: If the slug is taken
        """
        name = (data.name or "").strip()
        slug = (data.slug or "").strip()
        if not name or not slug:
            raise ValidationError("Name and slug are required")

        self._ensure_slug_free(db, slug)
        category = Category(name=name, slug=slug, description=data.description, image=data.image)
        db.add(category)
        self._commit(db)

        logger.info("Category created", extra={"category_id": category.id, "slug": slug})
        return category

    def update_category(self, db: Session, category_id: int, data: CategoryUpdate) -> Category:
        category = self._get_category(db, category_id)
        changes = data.model_dump(exclude_unset=True)

        for field in ("name", "slug"):
            if field in changes:
                value = (changes[field] or "").strip()
                if not value:
                    raise ValidationError(f"{field.capitalize()} cannot be empty")
                changes[field] = value

        if "slug" in changes and changes["slug"] != category.slug:
            self._ensure_slug_free(db, changes["slug"], exclude_id=category.id)

        for field, value in changes.items():
            setattr(category, field, value)
        self._commit(db)

        logger.info("Category updated", extra={"category_id": category.id, "fields": sorted(changes)})
        return category

    def delete_category(self, db: Session, category_id: int) -> None:
        """
        Delete a category that no product references.

        Raises:
            NotFoundError: If the category does not exist
            ValidationError: If products still belong to it
        """
        category = self._get_category(db, category_id)
        product_count = db.query(Product).filter(Product.category_id == category.id).count()
        if product_count > 0:
            category_delete_rejected_counter.add(1)
            logger.info("Category deletion rejected", extra={
                "category_id": category.id,
                "product_count": product_count
            })
            raise ValidationError(
                f"Cannot delete category with {product_count} products. "
                "Please move or delete products first.",
                code="category_not_empty"
            )

        db.delete(category)
        db.commit()
        logger.info("Category deleted", extra={"category_id": category_id})

    # --- Product administration ---

    def list_all_products(self, db: Session) -> List[Product]:
        return (
            db.query(Product)
            .options(selectinload(Product.category))
            .order_by(Product.created_at.desc(), Product.id.desc())
            .all()
        )

    def create_product(self, db: Session, data: ProductCreate) -> Product:
        """
        Create a product in an existing category.

        Raises:
            NotFoundError: If the category does not exist
        """
        self._get_category(db, data.category_id)

        product = Product(
            title=data.title,
            description=data.description,
            price=data.price,
            stock=data.stock,
            images=list(data.images),
            category_id=data.category_id,
            featured=data.featured,
            variants=[v.model_dump() for v in data.variants] if data.variants else None
        )
        db.add(product)
        db.commit()

        logger.info("Product created", extra={
            "product_id": product.id,
            "category_id": product.category_id
        })
        return product

    def update_product(self, db: Session, product_id: int, data: ProductUpdate) -> Product:
        product = self.get_product(db, product_id)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("category_id") is not None:
            self._get_category(db, changes["category_id"])

        for field in ("title", "price", "stock", "category_id", "featured", "images"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be null")

        for field, value in changes.items():
            setattr(product, field, value)
        db.commit()

        logger.info("Product updated", extra={"product_id": product.id, "fields": sorted(changes)})
        return product

    def delete_product(self, db: Session, product_id: int) -> None:
        """
        Delete a product that no order references.

        Raises:
            NotFoundError: If the product does not exist
            ConflictError: If order lines reference the product
        """
        product = self.get_product(db, product_id)
        if db.query(OrderItem.id).filter(OrderItem.product_id == product.id).first() is not None:
            raise ConflictError(
                "Product appears in existing orders and cannot be deleted",
                code="product_in_use"
            )
        db.delete(product)
        db.commit()
        logger.info("Product deleted", extra={"product_id": product_id})
