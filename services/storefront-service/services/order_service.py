"""Order management service."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session, selectinload
import redis
from opentelemetry import trace

from auth import ensure_owner_or_admin
from config import FREE_SHIPPING_THRESHOLD, SHIPPING_FEE
from errors import StoreError, NotFoundError, ValidationError, ConflictError
from models import (
    Address,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    User,
    RELEASED_STATUSES,
)
from schemas import CreateOrderRequest
from services.cart_service import CartService
from monitoring import (
    orders_created_counter,
    orders_failed_counter,
    order_amount_histogram,
    order_status_transitions_counter,
    inventory_restock_counter,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Round an amount to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def shipping_for(subtotal: Decimal) -> Decimal:
    """Flat shipping fee, waived above the free-shipping threshold."""
    return Decimal("0.00") if subtotal > FREE_SHIPPING_THRESHOLD else to_money(SHIPPING_FEE)


def _order_query(db: Session):
    return db.query(Order).options(
        selectinload(Order.address),
        selectinload(Order.order_items).selectinload(OrderItem.product)
    )


class OrderService:
    """Service for placing orders and moving them through their lifecycle."""

    def __init__(self, cart_service: Optional[CartService] = None):
        """
        Initialize order service.

        Args:
            cart_service: Cart service used to empty the cart after checkout
        """
        self.cart_service = cart_service
        self.tracer = trace.get_tracer(__name__)

    def _price_items(self, db: Session, request: CreateOrderRequest) -> List[Dict[str, Any]]:
        """Re-price every line from the catalog and check what the client saw."""
        product_ids = {item.product_id for item in request.items}
        products = {
            product.id: product
            for product in db.query(Product).filter(Product.id.in_(product_ids)).all()
        }

        lines = []
        for item in request.items:
            product = products.get(item.product_id)
            if product is None:
                raise NotFoundError(f"Product {item.product_id} not found")

            unit_price = to_money(product.price)
            if item.price is not None and to_money(item.price) != unit_price:
                raise ValidationError(
                    f"Price of '{product.title}' has changed to {unit_price}",
                    code="price_mismatch"
                )

            lines.append({
                "product_id": product.id,
                "title": product.title,
                "quantity": item.quantity,
                "price": unit_price,
                "variant": item.variant
            })
        return lines

    @staticmethod
    def _check_client_totals(request: CreateOrderRequest, subtotal: Decimal, shipping: Decimal, total: Decimal) -> None:
        for name, claimed, actual in (
            ("subtotal", request.subtotal, subtotal),
            ("shipping", request.shipping, shipping),
            ("total", request.total, total),
        ):
            if claimed is not None and to_money(claimed) != actual:
                raise ValidationError(
                    f"Order {name} {to_money(claimed)} does not match {actual}",
                    code="price_mismatch"
                )

    def _decrement_stock(self, db: Session, product_id: int, quantity: int) -> None:
        """Take ``quantity`` units out of stock, refusing to go below zero."""
        with self.tracer.start_as_current_span("db.query.update_product_stock") as update_span:
            update_span.set_attribute("db.operation", "UPDATE")
            update_span.set_attribute("db.table", "products")
            update_span.set_attribute("product.id", product_id)

            result = db.execute(
                update(Product)
                .where(Product.id == product_id, Product.stock >= quantity)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )
            update_span.set_attribute("db.rows_affected", result.rowcount)

        if result.rowcount == 0:
            exists = db.query(Product.id).filter(Product.id == product_id).first()
            if exists is None:
                raise NotFoundError(f"Product {product_id} not found")
            raise ConflictError(
                f"Insufficient stock for product {product_id}",
                code="insufficient_stock"
            )

    def _restock(self, db: Session, product_id: int, quantity: int) -> None:
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )

    def create_order(self, db: Session, user: User, request: CreateOrderRequest) -> Order:
        """
        Place an order from a cart snapshot.

        Address, order, order items and stock decrements are written in one
        transaction; any failure rolls all of them back.

        Args:
            db: Database session
            user: Ordering user
            request: Checkout payload

        Returns:
            The PENDING order

        Raises:
            NotFoundError: If a product does not exist
            ValidationError: If client prices or totals disagree with the catalog
            ConflictError: If a product does not have enough stock
        """
        span = trace.get_current_span()
        span.set_attribute("user.id", user.id)
        span.set_attribute("order.item_count", len(request.items))

        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")

                lines = self._price_items(db, request)
                subtotal = sum((line["price"] * line["quantity"] for line in lines), Decimal("0.00"))
                shipping = shipping_for(subtotal)
                total = subtotal + shipping
                self._check_client_totals(request, subtotal, shipping, total)

                address = Address(user_id=user.id, **request.address.model_dump())
                db.add(address)
                db.flush()

                order = Order(
                    user_id=user.id,
                    address_id=address.id,
                    items=[{**line, "price": str(line["price"])} for line in lines],
                    subtotal=subtotal,
                    shipping=shipping,
                    total=total,
                    status=OrderStatus.PENDING,
                    gateway_order_id=request.gateway_order_id
                )
                db.add(order)
                db.flush()

                for line in lines:
                    db.add(OrderItem(
                        order_id=order.id,
                        product_id=line["product_id"],
                        quantity=line["quantity"],
                        price=line["price"],
                        variant=line["variant"]
                    ))
                    self._decrement_stock(db, line["product_id"], line["quantity"])

                db.commit()
                db_span.set_attribute("order.id", order.id)
        except StoreError as e:
            db.rollback()
            orders_failed_counter.add(1, {"reason": e.code})
            logger.warning("Order placement rejected", extra={
                "user_id": user.id,
                "error_code": e.code,
                "error": e.message
            })
            raise
        except Exception as e:
            db.rollback()
            orders_failed_counter.add(1, {"reason": "internal_error"})
            logger.error("Failed to create order", extra={
                "user_id": user.id,
                "error": str(e)
            })
            raise

        if self.cart_service is not None:
            try:
                self.cart_service.clear_cart(user.id)
            except redis.RedisError as e:
                # The order stands; a stale cart is only cosmetic
                logger.warning("Failed to clear cart after checkout", extra={
                    "user_id": user.id,
                    "order_id": order.id,
                    "error": str(e)
                })

        orders_created_counter.add(1)
        order_amount_histogram.record(float(total))

        logger.info("Order placed", extra={
            "user_id": user.id,
            "order_id": order.id,
            "subtotal": str(subtotal),
            "shipping": str(shipping),
            "total": str(total),
            "item_count": len(lines)
        })
        return order

    def list_orders_for_user(self, db: Session, user_id: int) -> List[Order]:
        """
        Get all orders for a user, newest first.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            List of orders with address and items loaded
        """
        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", user_id)

            orders = (
                _order_query(db)
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(orders))
            return orders

    def list_all_orders(self, db: Session, status: Optional[OrderStatus] = None) -> List[Order]:
        """All orders for the back office, optionally narrowed to one status."""
        query = _order_query(db)
        if status is not None:
            query = query.filter(Order.status == status)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    def get_order(self, db: Session, order_id: int, requester: User) -> Order:
        """
        Fetch one order on behalf of ``requester``.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the requester is neither the owner nor an admin
        """
        order = _order_query(db).filter(Order.id == order_id).first()
        if order is None:
            raise NotFoundError("Order not found")
        ensure_owner_or_admin(requester, order.user_id)
        return order

    def set_order_status(self, db: Session, order_id: int, new_status: OrderStatus) -> Order:
        """
        Change an order's status.

        Moving into CANCELLED or REFUNDED from any other status puts every
        line's quantity back into stock, in the same transaction as the
        status write. Moving between two released statuses does not restock
        again.

        Raises:
            NotFoundError: If the order does not exist
        """
        try:
            with self.tracer.start_as_current_span("db.transaction.set_order_status") as db_span:
                db_span.set_attribute("order.id", order_id)
                db_span.set_attribute("order.status.new", new_status.value)

                order = (
                    db.query(Order)
                    .options(selectinload(Order.order_items))
                    .filter(Order.id == order_id)
                    .with_for_update()
                    .first()
                )
                if order is None:
                    raise NotFoundError("Order not found")

                previous = order.status
                db_span.set_attribute("order.status.previous", previous.value)

                restocked_units = 0
                if new_status in RELEASED_STATUSES and previous not in RELEASED_STATUSES:
                    for item in order.order_items:
                        self._restock(db, item.product_id, item.quantity)
                        restocked_units += item.quantity

                order.status = new_status
                db.commit()
        except StoreError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error("Failed to update order status", extra={
                "order_id": order_id,
                "status": new_status.value,
                "error": str(e)
            })
            raise

        order_status_transitions_counter.add(1, {
            "from": previous.value,
            "to": new_status.value
        })
        if restocked_units:
            inventory_restock_counter.add(restocked_units, {"reason": new_status.value.lower()})

        logger.info("Order status updated", extra={
            "order_id": order_id,
            "previous_status": previous.value,
            "status": new_status.value,
            "restocked_units": restocked_units
        })
        return order
