"""Payment gateway communication layer."""
import hashlib
import hmac
import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict
import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from auth import ensure_owner_or_admin
from errors import (
    ExternalServiceError,
    NotFoundError,
    StoreError,
    SignatureMismatchError,
    ValidationError,
)
from models import Order, OrderStatus, PaymentStatus, User, RELEASED_STATUSES
from monitoring import (
    payment_intents_counter,
    payment_verifications_counter,
    payment_gateway_duration_histogram,
)

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (rupees) to minor units (paise)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def sign(secret: str, gateway_order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex digest the gateway attaches to a completed payment."""
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentService:
    """Client for the external payment gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        key_id: str,
        key_secret: str,
        base_url: str,
        timeout: float = 10.0
    ):
        """
        Initialize payment service.

        Args:
            http_client: Async HTTP client
            key_id: Gateway API key id
            key_secret: Gateway API secret, also the signature key
            base_url: Gateway base URL
            timeout: Per-request timeout in seconds
        """
        self.http_client = http_client
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def create_payment_intent(self, amount: Decimal, currency: str) -> Dict[str, Any]:
        """
        Register a payment intent with the gateway.

        Args:
            amount: Amount in major currency units
            currency: ISO currency code

        Returns:
            Gateway order id, amount in minor units and currency

        Raises:
            ExternalServiceError: If the gateway is unreachable, not configured
                or rejects the request
        """
        if not self.key_id or not self.key_secret:
            payment_intents_counter.add(1, {"status": "not_configured"})
            raise ExternalServiceError("Payment gateway is not configured")

        minor_amount = to_minor_units(amount)
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.post(
                f"{self.base_url}/v1/orders",
                json={
                    "amount": minor_amount,
                    "currency": currency,
                    "receipt": f"receipt_{int(time.time() * 1000)}"
                },
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout
            )
            status_code = response.status_code
            response.raise_for_status()
            data = response.json()
            return {
                "gateway_order_id": data["id"],
                "amount": int(data.get("amount", minor_amount)),
                "currency": data.get("currency", currency)
            }
        except httpx.HTTPError as e:
            status = "error"
            logger.error("Failed to create payment intent", extra={
                "amount": minor_amount,
                "currency": currency,
                "status_code": status_code,
                "error": str(e)
            })
            raise ExternalServiceError("Failed to create payment order") from e
        except (ValueError, KeyError) as e:
            status = "error"
            logger.error("Payment gateway returned an unexpected body", extra={
                "amount": minor_amount,
                "currency": currency,
                "status_code": status_code,
                "error": str(e)
            })
            raise ExternalServiceError("Failed to create payment order") from e
        finally:
            duration = time.time() - start_time
            payment_gateway_duration_histogram.record(
                duration,
                {
                    "operation": "create_order",
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )
            payment_intents_counter.add(1, {"status": status})

    def signature_matches(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        """Constant-time comparison of the supplied signature with the expected one."""
        expected = sign(self.key_secret, gateway_order_id, payment_id)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    def verify_payment(
        self,
        db: Session,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        order_id: int,
        requester: User
    ) -> Order:
        """
        Confirm a completed payment and record it on the local order.

        On a valid signature the order is marked PAID and, if still PENDING,
        moved to PROCESSING. The move is conditional on the stored status, so a
        cancellation committed first is kept. On an invalid signature nothing
        is written: the order stays PENDING and unpaid so the customer can retry.

        Raises:
            NotFoundError: If the local order does not exist
            ForbiddenError: If the requester does not own the order
            ValidationError: If the order was created for another gateway order
            SignatureMismatchError: If the signature does not verify
        """
        if not self.key_secret:
            payment_verifications_counter.add(1, {"status": "not_configured"})
            raise ExternalServiceError("Payment gateway is not configured")

        try:
            order = (
                db.query(Order)
                .filter(Order.id == order_id)
                .with_for_update()
                .first()
            )
            if order is None:
                raise NotFoundError("Order not found")
            ensure_owner_or_admin(requester, order.user_id)

            if order.gateway_order_id and order.gateway_order_id != gateway_order_id:
                payment_verifications_counter.add(1, {"status": "order_mismatch"})
                raise ValidationError(
                    "Payment does not belong to this order",
                    code="gateway_order_mismatch"
                )

            if not self.signature_matches(gateway_order_id, payment_id, signature):
                payment_verifications_counter.add(1, {"status": "signature_mismatch"})
                logger.warning("Payment signature mismatch", extra={
                    "order_id": order_id,
                    "gateway_order_id": gateway_order_id,
                    "payment_id": payment_id
                })
                raise SignatureMismatchError("Invalid signature")

            db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(
                    payment_id=payment_id,
                    gateway_order_id=gateway_order_id,
                    payment_status=PaymentStatus.PAID
                )
                .execution_options(synchronize_session=False)
            )
            # Only a still-pending order advances; a concurrent cancellation wins
            advanced = db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING)
                .values(status=OrderStatus.PROCESSING)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        except StoreError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error("Failed to record payment", extra={
                "order_id": order_id,
                "payment_id": payment_id,
                "error": str(e)
            })
            raise

        db.refresh(order)
        if not advanced and order.status in RELEASED_STATUSES:
            logger.warning("Payment received for a released order", extra={
                "order_id": order_id,
                "payment_id": payment_id,
                "status": order.status.value
            })

        payment_verifications_counter.add(1, {"status": "verified"})
        logger.info("Payment verified", extra={
            "order_id": order_id,
            "gateway_order_id": gateway_order_id,
            "payment_id": payment_id,
            "status": order.status.value
        })
        return order
