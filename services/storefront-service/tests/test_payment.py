"""Payment intent creation and signature verification."""
import base64
import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest

from conftest import ADDRESS, auth_headers, stock_of
from database import SessionLocal
from errors import ExternalServiceError
from models import Order, OrderStatus, PaymentStatus
from schemas import CreateOrderRequest
from services.order_service import OrderService
from services.payment_service import PaymentService, sign, to_minor_units


@pytest.fixture
def order_id(client, customer, lamp):
    response = client.post("/orders", json={
        "items": [{"productId": lamp.id, "quantity": 1}],
        "address": ADDRESS
    }, headers=auth_headers(customer))
    return response.json()["orderId"]


def verify(client, user, order_id, signature, gateway_order_id="order_123", payment_id="pay_456"):
    return client.post("/payment/verify", json={
        "gatewayOrderId": gateway_order_id,
        "paymentId": payment_id,
        "signature": signature,
        "localOrderId": order_id
    }, headers=auth_headers(user))


def test_signature_is_hmac_sha256_of_order_and_payment_ids():
    expected = hmac.new(b"testsecret", b"order_123|pay_456", hashlib.sha256).hexdigest()
    assert sign("testsecret", "order_123", "pay_456") == expected


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("1299.00")) == 129900
    assert to_minor_units(Decimal("10.005")) == 1001
    assert to_minor_units(Decimal("0.1")) == 10


def test_valid_signature_marks_order_paid(client, db, customer, order_id):
    signature = sign("testsecret", "order_123", "pay_456")

    response = verify(client, customer, order_id, signature)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Payment verified successfully"}

    db.expire_all()
    order = db.get(Order, order_id)
    assert order.payment_status == PaymentStatus.PAID
    assert order.status == OrderStatus.PROCESSING
    assert order.payment_id == "pay_456"
    assert order.gateway_order_id == "order_123"


def test_bad_signature_leaves_order_untouched(client, db, customer, order_id, lamp):
    response = verify(client, customer, order_id, "0" * 64)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "signature_mismatch"

    db.expire_all()
    order = db.get(Order, order_id)
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.UNPAID
    assert order.payment_id is None
    assert stock_of(db, lamp.id) == 9


def test_customer_can_retry_after_a_bad_signature(client, db, customer, order_id):
    verify(client, customer, order_id, "forged")
    response = verify(client, customer, order_id, sign("testsecret", "order_123", "pay_456"))

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Order, order_id).payment_status == PaymentStatus.PAID


def test_verifying_someone_elses_order_is_forbidden(client, other_customer, order_id):
    response = verify(client, other_customer, order_id, sign("testsecret", "order_123", "pay_456"))
    assert response.status_code == 403


def test_verifying_a_missing_order_is_not_found(client, customer):
    response = verify(client, customer, 777, sign("testsecret", "order_123", "pay_456"))
    assert response.status_code == 404


def test_payment_for_a_different_gateway_order_is_rejected(client, db, customer, lamp):
    order_id = client.post("/orders", json={
        "items": [{"productId": lamp.id, "quantity": 1}],
        "address": ADDRESS,
        "gatewayOrderId": "order_A"
    }, headers=auth_headers(customer)).json()["orderId"]

    response = verify(
        client, customer, order_id,
        sign("testsecret", "order_B", "pay_1"),
        gateway_order_id="order_B", payment_id="pay_1"
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "gateway_order_mismatch"
    db.expire_all()
    assert db.get(Order, order_id).payment_status == PaymentStatus.UNPAID


def test_verification_keeps_a_later_status(client, db, admin, customer, order_id):
    client.patch(f"/admin/orders/{order_id}", json={"status": "SHIPPED"}, headers=auth_headers(admin))

    verify(client, customer, order_id, sign("testsecret", "order_123", "pay_456"))

    db.expire_all()
    order = db.get(Order, order_id)
    assert order.status == OrderStatus.SHIPPED
    assert order.payment_status == PaymentStatus.PAID


def test_verify_requires_authentication(client, order_id):
    response = client.post("/payment/verify", json={
        "gatewayOrderId": "order_123",
        "paymentId": "pay_456",
        "signature": sign("testsecret", "order_123", "pay_456"),
        "localOrderId": order_id
    })
    assert response.status_code == 401


def test_payment_intent_posts_minor_units_with_basic_auth(client, customer, gateway):
    response = client.post("/payment/order", json={"amount": 1299.5}, headers=auth_headers(customer))

    assert response.status_code == 200
    assert response.json() == {"gatewayOrderId": "order_test123", "amount": 129950, "currency": "INR"}

    request = gateway.requests[0]
    assert str(request.url) == "https://gateway.test/v1/orders"
    assert request.headers["authorization"] == "Basic " + base64.b64encode(b"key_test:testsecret").decode()
    body = json.loads(request.content)
    assert body["amount"] == 129950
    assert body["currency"] == "INR"
    assert body["receipt"].startswith("receipt_")


def test_payment_intent_passes_through_currency(client, customer):
    response = client.post("/payment/order", json={"amount": 10, "currency": "USD"}, headers=auth_headers(customer))
    assert response.json()["currency"] == "USD"


def test_gateway_error_status_is_a_bad_gateway(client, customer, gateway):
    gateway.status_code = 500

    response = client.post("/payment/order", json={"amount": 100}, headers=auth_headers(customer))

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "external_service_failure"


def test_unreachable_gateway_is_a_bad_gateway(client, customer, gateway):
    gateway.fail_with = httpx.ConnectError("connection refused")

    response = client.post("/payment/order", json={"amount": 100}, headers=auth_headers(customer))

    assert response.status_code == 502


def test_non_positive_amount_is_rejected(client, customer, gateway):
    response = client.post("/payment/order", json={"amount": 0}, headers=auth_headers(customer))

    assert response.status_code == 422
    assert gateway.requests == []


@pytest.mark.anyio
async def test_unconfigured_gateway_refuses_to_create_intents(http_client, gateway):
    service = PaymentService(http_client, key_id="", key_secret="", base_url="https://gateway.test")

    with pytest.raises(ExternalServiceError):
        await service.create_payment_intent(Decimal("10.00"), "INR")
    assert gateway.requests == []


def test_signature_comparison_rejects_near_misses(http_client):
    service = PaymentService(http_client, key_id="key_test", key_secret="testsecret", base_url="https://gateway.test")
    good = sign("testsecret", "order_1", "pay_1")

    assert service.signature_matches("order_1", "pay_1", good)
    assert not service.signature_matches("order_1", "pay_1", good[:-1] + ("0" if good[-1] != "0" else "1"))
    assert not service.signature_matches("order_1", "pay_2", good)


def test_cancellation_during_verification_is_not_undone(db, customer, lamp, http_client, monkeypatch):
    order = OrderService().create_order(
        db, customer,
        CreateOrderRequest(items=[{"productId": lamp.id, "quantity": 2}], address=ADDRESS)
    )
    order_id = order.id
    service = PaymentService(http_client, key_id="key_test", key_secret="testsecret", base_url="https://gateway.test")
    matches = service.signature_matches

    def cancel_then_match(*args):
        other = SessionLocal()
        try:
            OrderService().set_order_status(other, order_id, OrderStatus.CANCELLED)
        finally:
            other.close()
        return matches(*args)

    monkeypatch.setattr(service, "signature_matches", cancel_then_match)

    verified = service.verify_payment(
        db, "order_123", "pay_456", sign("testsecret", "order_123", "pay_456"), order_id, customer
    )

    assert verified.status == OrderStatus.CANCELLED
    assert verified.payment_status == PaymentStatus.PAID
    assert stock_of(db, lamp.id) == 10
