"""
Checkout runs strictly in order and never retries a step:

1. estimate the total from the cart
2. create the order (guests send the cart inline)
3. confirm the payment with the processor
4. mark the order paid with the payment id
5. clear the cart
6. hand back the confirmation page path

The charged amount comes from the payment intent the server builds from the
stored order, never from the client estimate.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from stickershop.client.cart import CartStore
from stickershop.client.errors import ApiError, OrderSyncError, PaymentError
from stickershop.client.models import Order
from stickershop.client.notify import Notifier
from stickershop.config import settings
from stickershop.constants import ORDER_PROCESSING
from stickershop.utils.validators import require_text

logger = logging.getLogger(__name__)

TEST_PAYMENT_METHOD = "pm_card_visa"


class PaymentProcessor(abc.ABC):
    """Confirms a payment intent; returns the confirmed intent id or raises PaymentError."""

    @abc.abstractmethod
    async def confirm(self, client_secret: str, payment_intent_id: str) -> str:
        ...


class StripePaymentProcessor(PaymentProcessor):
    """Client-side confirmation with the publishable key, the way Stripe.js does it."""

    def __init__(self, payment_method: str = TEST_PAYMENT_METHOD, publishable_key: Optional[str] = None) -> None:
        self.payment_method = payment_method
        self.publishable_key = publishable_key or settings.stripe_publishable_key

    def _confirm(self, client_secret: str, payment_intent_id: str) -> str:
        if not self.publishable_key:
            raise PaymentError("STRIPE_PUBLISHABLE_KEY is empty. Set it in .env")
        try:
            intent = stripe.PaymentIntent.confirm(
                payment_intent_id,
                client_secret=client_secret,
                payment_method=self.payment_method,
                api_key=self.publishable_key,
            )
        except stripe.StripeError as exc:
            raise PaymentError(exc.user_message or str(exc)) from exc

        if intent.status != "succeeded":
            error = getattr(intent, "last_payment_error", None)
            message = getattr(error, "message", None) if error else None
            raise PaymentError(message or f"Payment not completed (status: {intent.status})")
        return intent.id

    async def confirm(self, client_secret: str, payment_intent_id: str) -> str:
        return await asyncio.to_thread(self._confirm, client_secret, payment_intent_id)


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    payment_intent_id: str
    estimated_total: int

    @property
    def confirmation_path(self) -> str:
        return f"/orders/{self.order.id}/confirmation"


class CheckoutFlow:
    def __init__(self, api: Any, cart: CartStore, processor: PaymentProcessor, notifier: Notifier) -> None:
        self.api = api
        self.cart = cart
        self.processor = processor
        self.notifier = notifier
        self.processing = False

    async def run(self, shipping_address: str) -> CheckoutResult:
        shipping_address = require_text(shipping_address, "shipping address")
        if not self.cart.items:
            raise ValueError("Cart is empty")
        if self.processing:
            raise RuntimeError("Checkout already in progress")

        self.processing = True
        try:
            return await self._run(shipping_address)
        finally:
            self.processing = False

    async def _run(self, shipping_address: str) -> CheckoutResult:
        estimate = self.cart.summary()
        guest_cart = None if self.cart.authenticated else self.cart.payload()

        try:
            order = Order.from_api(await self.api.create_order(shipping_address, estimate.total, guest_cart))
            intent = await self.api.create_payment_intent(order.id)
        except ApiError as exc:
            self.notifier.error(f"Checkout failed: {exc.message}")
            raise

        if order.total != estimate.total:
            logger.warning("Order %s total %s differs from cart estimate %s", order.id, order.total, estimate.total)
        if int(intent.get("amount", order.total)) != order.total:
            logger.warning("Order %s intent amount %s differs from order total %s", order.id, intent.get("amount"), order.total)

        try:
            payment_intent_id = await self.processor.confirm(intent["clientSecret"], intent["paymentIntentId"])
        except PaymentError as exc:
            # order stays in "created" for manual reconciliation
            self.notifier.error(str(exc))
            raise

        try:
            order = Order.from_api(await self.api.update_order_status(order.id, ORDER_PROCESSING, payment_intent_id))
        except ApiError as exc:
            message = (
                f"Your payment was successful but we could not update order #{order.id}. "
                f"Please contact support with payment reference {payment_intent_id}."
            )
            logger.error("Order %s sync failed after payment %s: %s", order.id, payment_intent_id, exc)
            self.notifier.error(message)
            raise OrderSyncError(order.id, payment_intent_id, message) from exc

        try:
            await self.cart.clear()
        except ApiError as exc:
            # order is paid at this point
            logger.warning("Cart clear after order %s failed: %s", order.id, exc)

        self.notifier.info(f"Order #{order.id} placed")
        return CheckoutResult(order=order, payment_intent_id=payment_intent_id, estimated_total=estimate.total)
