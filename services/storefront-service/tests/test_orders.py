"""Order placement, stock reservation and order reads."""
from decimal import Decimal

import pytest

from conftest import ADDRESS, auth_headers, stock_of
from errors import ConflictError
from models import Address, Order, OrderItem, OrderStatus, Product
from schemas import CreateOrderRequest
from services.order_service import OrderService, shipping_for


def place(client, user, items, **extra):
    body = {"items": items, "address": ADDRESS, **extra}
    return client.post("/orders", json=body, headers=auth_headers(user))


def test_order_totals_match_lines_and_stock_is_decremented(client, db, customer, lamp, towel):
    response = place(
        client, customer,
        [
            {"productId": lamp.id, "quantity": 2, "price": 1299.0},
            {"productId": towel.id, "quantity": 1, "price": 349.0},
        ],
        subtotal=2947.0, shipping=0, total=2947.0
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    order_id = body["orderId"]

    order = client.get(f"/orders/{order_id}", headers=auth_headers(customer)).json()
    assert order["status"] == "PENDING"
    assert order["paymentStatus"] == "UNPAID"
    assert order["subtotal"] == 2947.0
    assert order["shipping"] == 0.0
    assert order["total"] == order["subtotal"] + order["shipping"]
    assert sum(item["price"] * item["quantity"] for item in order["orderItems"]) == order["subtotal"]
    assert order["address"]["city"] == "Chennai"

    assert stock_of(db, lamp.id) == 8
    assert stock_of(db, towel.id) == 4


def test_shipping_fee_applies_below_threshold(client, customer, towel):
    response = place(client, customer, [{"productId": towel.id, "quantity": 1}])
    assert response.status_code == 201

    order = client.get(f"/orders/{response.json()['orderId']}", headers=auth_headers(customer)).json()
    assert order["subtotal"] == 349.0
    assert order["shipping"] == 100.0
    assert order["total"] == 449.0


def test_shipping_is_free_only_above_threshold():
    assert shipping_for(Decimal("2000.00")) == Decimal("100.00")
    assert shipping_for(Decimal("2000.01")) == Decimal("0.00")


def test_insufficient_stock_mid_order_rolls_back_everything(client, db, customer, lamp, towel):
    response = place(client, customer, [
        {"productId": lamp.id, "quantity": 2},
        {"productId": towel.id, "quantity": 6},
    ])

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "insufficient_stock"
    assert stock_of(db, lamp.id) == 10
    assert stock_of(db, towel.id) == 5
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert db.query(Address).count() == 0


def test_stock_never_goes_negative(client, db, customer, towel):
    first = place(client, customer, [{"productId": towel.id, "quantity": 5}])
    second = place(client, customer, [{"productId": towel.id, "quantity": 1}])

    assert first.status_code == 201
    assert second.status_code == 409
    assert stock_of(db, towel.id) == 0


def test_unknown_product_is_not_found_and_writes_nothing(client, db, customer, lamp):
    response = place(client, customer, [
        {"productId": lamp.id, "quantity": 1},
        {"productId": 9999, "quantity": 1},
    ])

    assert response.status_code == 404
    assert stock_of(db, lamp.id) == 10
    assert db.query(Order).count() == 0


def test_stale_client_price_is_rejected(client, db, customer, lamp):
    response = place(client, customer, [{"productId": lamp.id, "quantity": 1, "price": 999.0}])

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "price_mismatch"
    assert stock_of(db, lamp.id) == 10


def test_client_total_must_match_server_total(client, db, customer, lamp):
    response = place(
        client, customer,
        [{"productId": lamp.id, "quantity": 1}],
        subtotal=1299.0, shipping=100.0, total=1.0
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "price_mismatch"
    assert db.query(Order).count() == 0


def test_empty_or_invalid_items_fail_validation(client, customer, lamp):
    assert place(client, customer, []).status_code == 422
    assert place(client, customer, [{"productId": lamp.id, "quantity": 0}]).status_code == 422


def test_order_requires_authentication(client, lamp):
    response = client.post("/orders", json={"items": [{"productId": lamp.id, "quantity": 1}], "address": ADDRESS})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


def test_item_price_is_a_snapshot(client, db, customer, lamp):
    order_id = place(client, customer, [{"productId": lamp.id, "quantity": 1}]).json()["orderId"]

    product = db.get(Product, lamp.id)
    product.price = Decimal("1999.00")
    db.commit()

    order = client.get(f"/orders/{order_id}", headers=auth_headers(customer)).json()
    assert order["orderItems"][0]["price"] == 1299.0
    assert order["total"] == 1399.0


def test_gateway_order_id_is_recorded(client, db, customer, lamp):
    response = place(client, customer, [{"productId": lamp.id, "quantity": 1}], gatewayOrderId="order_abc")
    order = db.get(Order, response.json()["orderId"])
    assert order.gateway_order_id == "order_abc"


def test_placing_an_order_clears_the_cart(client, customer, lamp):
    headers = auth_headers(customer)
    client.post("/cart/items", json={"productId": lamp.id, "quantity": 1}, headers=headers)
    assert client.get("/cart", headers=headers).json()["totalItems"] == 1

    place(client, customer, [{"productId": lamp.id, "quantity": 1}])

    assert client.get("/cart", headers=headers).json()["items"] == []


def test_list_orders_returns_only_callers_orders_newest_first(client, customer, other_customer, lamp, towel):
    first = place(client, customer, [{"productId": lamp.id, "quantity": 1}]).json()["orderId"]
    second = place(client, customer, [{"productId": towel.id, "quantity": 1}]).json()["orderId"]
    place(client, other_customer, [{"productId": towel.id, "quantity": 1}])

    orders = client.get("/orders", headers=auth_headers(customer)).json()["orders"]
    assert [order["id"] for order in orders] == [second, first]


def test_other_customer_is_forbidden_from_reading_an_order(client, customer, other_customer, lamp):
    order_id = place(client, customer, [{"productId": lamp.id, "quantity": 1}]).json()["orderId"]

    response = client.get(f"/orders/{order_id}", headers=auth_headers(other_customer))

    assert response.status_code == 403
    assert response.json() == {"error": {"code": "forbidden", "message": "Forbidden"}}


def test_admin_can_read_any_order(client, customer, admin, lamp):
    order_id = place(client, customer, [{"productId": lamp.id, "quantity": 1}]).json()["orderId"]

    response = client.get(f"/orders/{order_id}", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["userId"] == customer.id


def test_missing_order_is_not_found(client, customer):
    response = client.get("/orders/12345", headers=auth_headers(customer))
    assert response.status_code == 404


def test_service_rolls_back_when_a_later_line_fails(db, customer, lamp, towel):
    service = OrderService()
    request = CreateOrderRequest(
        items=[
            {"productId": lamp.id, "quantity": 3},
            {"productId": towel.id, "quantity": 50},
        ],
        address=ADDRESS
    )

    with pytest.raises(ConflictError):
        service.create_order(db, customer, request)

    assert stock_of(db, lamp.id) == 10
    assert db.query(Order).count() == 0


def test_service_creates_pending_order(db, customer, lamp):
    order = OrderService().create_order(
        db, customer,
        CreateOrderRequest(items=[{"productId": lamp.id, "quantity": 1, "variant": "Large"}], address=ADDRESS)
    )

    assert order.status == OrderStatus.PENDING
    assert order.total == Decimal("1399.00")
    assert order.order_items[0].variant == "Large"
    assert order.items[0]["title"] == "Brass Lamp"
