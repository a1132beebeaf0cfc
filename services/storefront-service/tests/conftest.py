"""Shared fixtures: in-memory SQLite, fakeredis and a mocked payment gateway."""
import json
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SEED_DEMO_DATA"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYMENT_GATEWAY_URL"] = "https://gateway.test"
os.environ["PAYMENT_GATEWAY_KEY_ID"] = "key_test"
os.environ["PAYMENT_GATEWAY_KEY_SECRET"] = "testsecret"

from decimal import Decimal  # noqa: E402

import fakeredis  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import engine, SessionLocal  # noqa: E402
from dependencies import get_redis, get_http_client  # noqa: E402
from main import app  # noqa: E402
from models import Base, Category, Product, User, Role  # noqa: E402
from security import hash_password, create_access_token  # noqa: E402


class GatewayStub:
    """Stands in for the payment gateway's order endpoint."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"description": "bad request"}})
        payload = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "order_test123",
            "entity": "order",
            "amount": payload["amount"],
            "currency": payload["currency"],
            "receipt": payload["receipt"],
            "status": "created"
        })


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
def http_client(gateway):
    return httpx.AsyncClient(transport=httpx.MockTransport(gateway))


@pytest.fixture
def client(redis_client, http_client):
    app.dependency_overrides[get_redis] = lambda: redis_client
    app.dependency_overrides[get_http_client] = lambda: http_client
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _make_user(db, email, role=Role.CUSTOMER, name="Test User"):
    user = User(name=name, email=email, password_hash=hash_password("secret123"), role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def customer(db):
    return _make_user(db, "customer@example.com", name="Priya")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "other@example.com", name="Karthik")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin@example.com", role=Role.ADMIN, name="Admin")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}


@pytest.fixture
def category(db):
    category = Category(name="Handicrafts", slug="handicrafts")
    db.add(category)
    db.commit()
    return category


@pytest.fixture
def lamp(db, category):
    product = Product(title="Brass Lamp", description="Oil lamp", price=Decimal("1299.00"),
                      stock=10, category_id=category.id, images=["lamp.jpg"])
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def towel(db, category):
    product = Product(title="Cotton Towel", description="Handloom towel", price=Decimal("349.00"),
                      stock=5, category_id=category.id, images=[])
    db.add(product)
    db.commit()
    return product


def stock_of(db, product_id):
    db.expire_all()
    return db.get(Product, product_id).stock


ADDRESS = {
    "fullName": "Priya Raman",
    "phone": "9876543210",
    "addressLine": "12 Temple Street, Mylapore",
    "city": "Chennai",
    "state": "Tamil Nadu",
    "pincode": "600004"
}
