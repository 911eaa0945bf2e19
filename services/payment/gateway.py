"""
services/payment/gateway.py
Thin Razorpay wrapper. Built once in the app lifespan, stored on app.state
and injected into routes with get_payment_gateway (tests swap in a fake).
"""

import logging
from typing import Optional

import razorpay
from fastapi import Request
from pybreaker import CircuitBreaker, CircuitBreakerError
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from shared.utils.security import verify_razorpay_signature

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the gateway rejects or fails an order request."""


class RazorpayGateway:
    def __init__(
        self,
        key_id: str = settings.RAZORPAY_KEY_ID,
        key_secret: str = settings.RAZORPAY_KEY_SECRET,
        currency: str = settings.PAYMENT_CURRENCY,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.currency = currency
        self.client = razorpay.Client(auth=(key_id, key_secret))
        # Open after 5 consecutive failures, try again after 60s
        self.breaker = breaker or CircuitBreaker(fail_max=5, reset_timeout=60, name="razorpay")

    async def create_order(self, amount_subunits: int, receipt: str, notes: Optional[dict] = None) -> dict:
        """Create a gateway order for `amount_subunits` paise. Raises PaymentGatewayError."""
        payload = {
            "amount": int(amount_subunits),
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        try:
            order = await run_in_threadpool(self.breaker.call, self.client.order.create, payload)
        except CircuitBreakerError:
            logger.error(f"Razorpay circuit open, refusing order for {receipt}")
            raise
        except Exception as e:
            logger.error(f"Razorpay order creation failed for {receipt}: {e}")
            raise PaymentGatewayError(str(e)) from e
        logger.info(f"Razorpay order {order.get('id')} created for {receipt} ({amount_subunits} paise)")
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_razorpay_signature(order_id, payment_id, signature, self.key_secret)


def get_payment_gateway(request: Request) -> RazorpayGateway:
    """FastAPI dependency; overridden in tests."""
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        gateway = RazorpayGateway()
        request.app.state.payment_gateway = gateway
    return gateway
