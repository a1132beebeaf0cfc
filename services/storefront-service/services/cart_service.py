"""Cart and wishlist management.

Both are client-scoped documents kept in Redis rather than in the relational
store. They are never authoritative for pricing: checkout re-prices every
line from the catalog. Each operation follows the same lifecycle, load the
document, mutate it in memory, save it back.
"""
import json
import logging
from decimal import Decimal
from typing import List, Dict, Any, Optional
from sqlalchemy.orm import Session
import redis
from opentelemetry import trace

from errors import NotFoundError, ValidationError
from models import Product
from monitoring import cart_mutations_counter

logger = logging.getLogger(__name__)

# Idle carts expire after 30 days
CART_TTL_SECONDS = 30 * 24 * 3600


class LocalStore:
    """A JSON list persisted under one Redis key."""

    def __init__(self, redis_client: redis.Redis, key: str, ttl: int = CART_TTL_SECONDS):
        """
        Initialize store.

        Args:
            redis_client: Redis client
            key: Key holding the document
            ttl: Expiry applied on every save
        """
        self.redis_client = redis_client
        self.key = key
        self.ttl = ttl

    def load(self) -> List[Dict[str, Any]]:
        """Read the stored list; a missing or unreadable document is empty."""
        raw = self.redis_client.get(self.key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except ValueError:
            logger.error("Discarding unreadable stored document", extra={"key": self.key})
            return []
        if not isinstance(items, list):
            logger.error("Discarding malformed stored document", extra={"key": self.key})
            return []
        return items

    def save(self, items: List[Dict[str, Any]]) -> None:
        """Persist the list, replacing whatever was stored."""
        self.redis_client.set(self.key, json.dumps(items), ex=self.ttl)

    def clear(self) -> None:
        self.redis_client.delete(self.key)


def _same_line(line: Dict[str, Any], product_id: int, variant: Optional[str]) -> bool:
    return line["product_id"] == product_id and line.get("variant") == variant


class CartService:
    """Service for managing shopping carts and wishlists."""

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize cart service.

        Args:
            redis_client: Redis client holding cart documents
        """
        self.redis_client = redis_client
        self.tracer = trace.get_tracer(__name__)

    def _cart(self, user_id: int) -> LocalStore:
        return LocalStore(self.redis_client, f"cart:{user_id}")

    def _wishlist(self, user_id: int) -> LocalStore:
        return LocalStore(self.redis_client, f"wishlist:{user_id}")

    def _get_product(self, db: Session, product_id: int) -> Product:
        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.query(Product).filter(Product.id == product_id).first()
            db_span.set_attribute("db.rows_returned", 1 if product else 0)

        if product is None:
            raise NotFoundError("Product not found")
        return product

    @staticmethod
    def summarize(items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Cart contents with item count and total at the captured prices."""
        total_items = sum(line["quantity"] for line in items)
        total_price = sum(
            (Decimal(line["price"]) * line["quantity"] for line in items),
            Decimal("0")
        )
        return {
            "items": items,
            "total_items": total_items,
            "total_price": total_price
        }

    def get_cart(self, user_id: int) -> Dict[str, Any]:
        """
        Get user's cart contents.

        Args:
            user_id: User identifier

        Returns:
            Cart contents with items and totals
        """
        return self.summarize(self._cart(user_id).load())

    def add_item(
        self,
        db: Session,
        user_id: int,
        product_id: int,
        quantity: int,
        variant: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Add a product to the cart, merging with an existing line.

        The line remembers the product's price and stock at the time it was
        added; quantities are capped at that stock.

        Raises:
            NotFoundError: If the product does not exist
            ValidationError: If quantity is not positive or the product is out of stock
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1")

        product = self._get_product(db, product_id)
        if product.stock <= 0:
            raise ValidationError("Product is out of stock", code="out_of_stock")

        store = self._cart(user_id)
        items = store.load()

        existing = next((line for line in items if _same_line(line, product_id, variant)), None)
        if existing is not None:
            existing["quantity"] = min(existing["quantity"] + quantity, product.stock)
            existing["stock"] = product.stock
        else:
            items.append({
                "product_id": product.id,
                "title": product.title,
                "price": str(product.price),
                "quantity": min(quantity, product.stock),
                "image": product.images[0] if product.images else None,
                "variant": variant,
                "stock": product.stock
            })

        store.save(items)
        cart_mutations_counter.add(1, {"operation": "add"})

        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product_id,
            "quantity": quantity,
            "variant": variant
        })
        return self.summarize(items)

    def update_quantity(
        self,
        user_id: int,
        product_id: int,
        quantity: int,
        variant: Optional[str] = None
    ) -> Dict[str, Any]:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            return self.remove_item(user_id, product_id, variant)

        store = self._cart(user_id)
        items = store.load()
        line = next((line for line in items if _same_line(line, product_id, variant)), None)
        if line is None:
            raise NotFoundError("Item not in cart")

        line["quantity"] = min(quantity, line["stock"])
        store.save(items)
        cart_mutations_counter.add(1, {"operation": "update"})
        return self.summarize(items)

    def remove_item(
        self,
        user_id: int,
        product_id: int,
        variant: Optional[str] = None
    ) -> Dict[str, Any]:
        """Drop the line matching product and variant, if any."""
        store = self._cart(user_id)
        items = [line for line in store.load() if not _same_line(line, product_id, variant)]
        store.save(items)
        cart_mutations_counter.add(1, {"operation": "remove"})
        return self.summarize(items)

    def clear_cart(self, user_id: int) -> None:
        """
        Clear user's cart.

        Args:
            user_id: User identifier
        """
        with self.tracer.start_as_current_span("cache.delete") as cache_span:
            cache_span.set_attribute("cache.system", "redis")
            cache_span.set_attribute("cache.operation", "DELETE")
            cache_span.set_attribute("cache.key", f"cart:{user_id}")

            self._cart(user_id).clear()
        cart_mutations_counter.add(1, {"operation": "clear"})

    # Wishlist

    def get_wishlist(self, user_id: int) -> Dict[str, Any]:
        items = self._wishlist(user_id).load()
        return {"items": items, "total_items": len(items)}

    def add_to_wishlist(self, db: Session, user_id: int, product_id: int) -> Dict[str, Any]:
        """Add a product to the wishlist; adding it twice is a no-op."""
        product = self._get_product(db, product_id)

        store = self._wishlist(user_id)
        items = store.load()
        if not any(item["product_id"] == product_id for item in items):
            items.append({
                "product_id": product.id,
                "title": product.title,
                "price": str(product.price),
                "image": product.images[0] if product.images else None
            })
            store.save(items)
        return {"items": items, "total_items": len(items)}

    def remove_from_wishlist(self, user_id: int, product_id: int) -> Dict[str, Any]:
        store = self._wishlist(user_id)
        items = [item for item in store.load() if item["product_id"] != product_id]
        store.save(items)
        return {"items": items, "total_items": len(items)}
