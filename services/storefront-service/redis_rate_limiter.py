"""Redis-backed rate limiter."""
import logging
import time
import uuid
from typing import Optional, Tuple
import jwt
import redis
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from errors import error_response
from monitoring import rate_limit_exceeded_counter, suspicious_activity_counter
from security import decode_access_token

logger = logging.getLogger(__name__)


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Distributed rate limiter using Redis sorted sets.

    Implements dual-tier sliding window rate limiting:
    - Per IP: Higher limit - handles shared IPs (offices, carrier NAT)
    - Per user: Lower limit - prevents individual abuse, most importantly
      repeated checkout and payment verification attempts

    Limits are shared across service instances and survive restarts. If
    Redis is unavailable requests are let through.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        requests_per_minute_ip: int = 1000,
        requests_per_minute_user: int = 120,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            requests_per_minute_ip: Max requests per IP per window
            requests_per_minute_user: Max requests per user per window
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds

    def _check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Algorithm:
        1. Remove timestamps older than window
        2. Count requests in window
        3. Add current request
        4. Set TTL

        Args:
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - window

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {f"{current_time:.6f}:{uuid.uuid4().hex}": current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            # Count BEFORE adding current request
            count = results[1]

            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error(f"Redis rate limit error: {e}")
            # Fail open: allow request if Redis is unavailable
            return True, 0

    @staticmethod
    def _user_id(request: Request) -> Optional[str]:
        auth_header = request.headers.get("authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None
        try:
            return decode_access_token(auth_header.split(" ", 1)[1]).get("sub")
        except jwt.InvalidTokenError:
            return None

    def _too_many(self, limit_type: str, limit: int):
        return error_response(
            429,
            "rate_limited",
            f"Rate limit exceeded for {limit_type}. Maximum {limit} requests per {self.window_seconds} seconds.",
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        """
        Process request with Redis-backed dual-tier rate limiting.

        Args:
            request: Incoming request
            call_next: Next middleware in chain

        Returns:
            Response or 429 if rate limited
        """
        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        user_id = self._user_id(request)

        # --- IP-based rate limiting ---
        ip_allowed, ip_count = self._check_rate_limit(
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            rate_limit_exceeded_counter.add(1, {"limit_type": "ip"})
            logger.warning("IP rate limit exceeded", extra={
                "client_ip": client_ip,
                "endpoint": request.url.path,
                "requests_in_window": ip_count,
                "limit": self.requests_per_minute_ip
            })
            return self._too_many("IP", self.requests_per_minute_ip)

        # --- User-based rate limiting ---
        if user_id:
            user_allowed, user_count = self._check_rate_limit(
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                rate_limit_exceeded_counter.add(1, {"limit_type": "user"})
                logger.warning("User rate limit exceeded", extra={
                    "user_id": user_id,
                    "client_ip": client_ip,
                    "endpoint": request.url.path,
                    "requests_in_window": user_count,
                    "limit": self.requests_per_minute_user
                })
                return self._too_many("user", self.requests_per_minute_user)

        response = await call_next(request)

        self._detect_suspicious_activity(request, response.status_code, client_ip)

        return response

    def _detect_suspicious_activity(
        self,
        request: Request,
        status_code: int,
        client_ip: str
    ) -> None:
        """
        Detect suspicious activity patterns using Redis.

        Patterns:
        - Credential stuffing: 5+ failed auths in 5 minutes
        - Payment forgery: 3+ rejected payment signatures in 5 minutes
        """
        patterns = []
        if status_code == 401:
            patterns.append(("credential_stuffing", f"suspicious:401:{client_ip}", 5))
        if status_code == 400 and request.url.path == "/payment/verify":
            patterns.append(("payment_forgery", f"suspicious:verify:{client_ip}", 3))
        if not patterns:
            return

        try:
            current_time = time.time()
            window = 300  # 5 minutes

            for kind, key, threshold in patterns:
                self.redis.zadd(key, {f"{current_time:.6f}:{uuid.uuid4().hex}": current_time})
                self.redis.expire(key, window + 1)

                count = self.redis.zcount(key, current_time - window, current_time)
                if count >= threshold:
                    suspicious_activity_counter.add(1, {"type": kind})
                    logger.warning("Suspicious activity detected", extra={
                        "type": kind,
                        "client_ip": client_ip,
                        "endpoint": request.url.path,
                        "count": count
                    })
        except redis.RedisError as e:
            logger.error(f"Error detecting suspicious activity: {e}")
