"""Sliding-window rate limiting in Redis."""
import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from conftest import auth_headers
from redis_rate_limiter import RedisRateLimiter


def make_app(redis_client, per_ip=100, per_user=100):
    app = FastAPI()
    app.add_middleware(
        RedisRateLimiter,
        redis_client=redis_client,
        requests_per_minute_ip=per_ip,
        requests_per_minute_user=per_user
    )

    @app.get("/ping")
    async def ping():
        return {"ok": True}

    return app


def test_ip_limit_returns_429_with_retry_after(redis_client):
    client = TestClient(make_app(redis_client, per_ip=3))

    statuses = [client.get("/ping").status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]
    response = client.get("/ping")
    assert response.headers["retry-after"] == "60"
    assert response.json()["error"]["code"] == "rate_limited"


def test_user_limit_applies_per_token(redis_client, customer, other_customer):
    client = TestClient(make_app(redis_client, per_user=2))
    first, second = auth_headers(customer), auth_headers(other_customer)

    assert [client.get("/ping", headers=first).status_code for _ in range(3)] == [200, 200, 429]
    assert client.get("/ping", headers=second).status_code == 200


def test_forwarded_for_header_identifies_the_client(redis_client):
    client = TestClient(make_app(redis_client, per_ip=1))

    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}).status_code == 200


def test_requests_pass_when_redis_is_down():
    server = fakeredis.FakeServer()
    server.connected = False
    client = TestClient(make_app(fakeredis.FakeRedis(server=server), per_ip=1))

    assert [client.get("/ping").status_code for _ in range(3)] == [200, 200, 200]


@pytest.mark.parametrize("status_code, path, key", [
    (401, "/ping", "suspicious:401:10.1.1.1"),
    (400, "/payment/verify", "suspicious:verify:10.1.1.1"),
])
def test_failures_are_tracked_for_abuse_detection(redis_client, status_code, path, key):
    app = FastAPI()
    app.add_middleware(RedisRateLimiter, redis_client=redis_client)

    @app.api_route(path, methods=["GET", "POST"])
    async def failing():
        return JSONResponse({"error": {}}, status_code=status_code)

    client = TestClient(app)
    for _ in range(3):
        client.post(path, headers={"X-Forwarded-For": "10.1.1.1"})

    assert redis_client.zcard(key) == 3
